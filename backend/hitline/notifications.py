"""Per-session change notifications.

Publishers only say "session PIN changed"; subscribers re-fetch the snapshot.
This bus lives in process memory, so a multi-instance deployment needs a
broker behind the same interface.
"""
import queue
import threading
from typing import Callable, Dict, Iterator, List, Set

from hitline import utils

Listener = Callable[[str, dict], None]


class Subscription:
    """One viewer's stream: ``connected`` first, then ``update`` or ``ping``."""

    def __init__(self, bus: "NotificationBus", pin: str, keepalive_sec: float):
        self.pin = pin
        self._bus = bus
        self._queue: "queue.Queue[dict]" = queue.Queue()
        self._keepalive_sec = keepalive_sec
        self.closed = False

    def _deliver(self, event: dict) -> None:
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> dict:
        """Block until the next signal; a keep-alive ping after ``timeout`` of silence."""
        wait = self._keepalive_sec if timeout is None else timeout
        try:
            return self._queue.get(timeout=wait)
        except queue.Empty:
            return {'type': 'ping', 'pin': self.pin, 'timestamp': utils.now_ts()}

    def __iter__(self) -> Iterator[dict]:
        yield {'type': 'connected', 'pin': self.pin, 'timestamp': utils.now_ts()}
        while not self.closed:
            yield self.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class NotificationBus:
    def __init__(self, keepalive_sec: float = 30.0):
        self.keepalive_sec = keepalive_sec
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._listeners: List[Listener] = []

    def init_app(self, app) -> None:
        self.keepalive_sec = float(app.config.get('KEEPALIVE_SEC', self.keepalive_sec))
        app.extensions['hitline_bus'] = self

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def subscribe(self, pin: str) -> Subscription:
        sub = Subscription(self, pin.upper(), self.keepalive_sec)
        with self._lock:
            self._subscribers.setdefault(sub.pin, set()).add(sub)
        return sub

    def subscriber_count(self, pin: str) -> int:
        with self._lock:
            return len(self._subscribers.get(pin.upper(), ()))

    def publish(self, pin: str) -> dict:
        event = {'type': 'update', 'pin': pin.upper(), 'timestamp': utils.now_ts()}
        with self._lock:
            targets = list(self._subscribers.get(event['pin'], ()))
            listeners = list(self._listeners)
        for sub in targets:
            sub._deliver(event)
        for listener in listeners:
            listener(event['pin'], event)
        return event

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.pin)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.pin]
