"""Serialized read-validate-write on a single session.

Mutations for one PIN run one at a time in this process (a per-PIN lock) and,
on databases that support it, hold a row lock on the session for the
duration. Different PINs never wait on each other. The bus is notified only
after a successful commit, outside the lock.
"""
import threading
import weakref
from contextlib import contextmanager

from hitline import db, bus
from hitline.errors import NotFound
from hitline.models import GameSession

# Entries vanish once no transaction holds the lock
_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(pin: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(pin)
        if lock is None:
            lock = _locks[pin] = threading.Lock()
        return lock


class SessionTransaction:
    def __init__(self, pin: str):
        self.pin = pin
        self.game = None
        # Operations that change nothing visible may opt out of the notification
        self.publish = True


@contextmanager
def session_transaction(pin: str):
    pin = (pin or '').upper()
    tx = SessionTransaction(pin)
    with _lock_for(pin):
        try:
            tx.game = (
                GameSession.query.filter_by(pin=pin)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if tx.game is None:
                raise NotFound('Game not found')
            yield tx
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    if tx.publish:
        bus.publish(pin)
