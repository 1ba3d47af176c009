import os
import sys
from types import SimpleNamespace

import pytest

# Ensure the backend root (containing the `hitline` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from hitline import create_app, db, socketio


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4


class FrozenClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock(monkeypatch):
    frozen = FrozenClock()
    monkeypatch.setattr('hitline.utils.now_ts', frozen)
    return frozen


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import hitline.models  # noqa: F401
        db.create_all()
    # Requests must each push their own context, as they do in production
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_context(flask_app):
    """Direct engine and model access outside a request."""
    with flask_app.app_context():
        yield flask_app


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


def _register(flask_app, username):
    test_client = flask_app.test_client()
    res = test_client.post('/register', json={'username': username, 'password': 'password'})
    assert res.status_code == 201
    return test_client


@pytest.fixture()
def host_client(flask_app):
    """A test client logged in as the user 'host'."""
    return _register(flask_app, 'host')


@pytest.fixture()
def other_host_client(flask_app):
    return _register(flask_app, 'someone')


@pytest.fixture()
def host_user(app_context):
    from hitline.models import User
    user = User(username='host')
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    return user


def make_song(song_id, year, name=None, artist='Test Artist'):
    return {
        'song_id': song_id,
        'name': name or f'Song {song_id}',
        'artist': artist,
        'year': year,
        'uri': f'spotify:track:{song_id}',
    }


def timeline_of(*years, prefix='t'):
    return [dict(make_song(f'{prefix}{i}-{year}', year), added_at=0.0) for i, year in enumerate(years)]


@pytest.fixture()
def make_lobby(host_user, clock):
    """Factory: a lobby hosted by ``host_user`` with ``extra`` joined players."""
    from hitline.services.games import engine

    def _make(extra=2, **settings):
        game, host = engine.create_session(host_user)
        ids = [host.id]
        for i in range(extra):
            ids.append(engine.join_session(game.pin, f'Player{i + 1}', '🎸').id)
        if settings:
            engine.update_settings(game.pin, host_user.id, settings)
        return SimpleNamespace(pin=game.pin, user_id=host_user.id, player_ids=ids)

    return _make


@pytest.fixture()
def started(make_lobby):
    """Factory: a started game plus a ``rig`` helper to pin down timelines and the mystery song."""
    from hitline.models import GameSession
    from hitline.services.games import engine

    def _start(extra=2, songs=None, using_fallback=False, **settings):
        lobby = make_lobby(extra, **settings)
        if songs is None:
            songs = [make_song(f's{i}', 1950 + i) for i in range(60)]
        engine.start_game(lobby.pin, lobby.user_id, songs, using_fallback=using_fallback)
        game = GameSession.query.filter_by(pin=lobby.pin).first()

        def rig(timelines=None, song=None, tokens=None, used=None):
            g = GameSession.query.filter_by(pin=lobby.pin).first()
            for pid, entries in (timelines or {}).items():
                g.player(pid).timeline = entries
            for pid, balance in (tokens or {}).items():
                g.player(pid).tokens = balance
            if song is not None:
                g.current_song = song
            if used is not None:
                g.used_song_ids = used
            db.session.commit()
            return g

        def session():
            return GameSession.query.filter_by(pin=lobby.pin).first()

        return SimpleNamespace(
            pin=lobby.pin,
            user_id=lobby.user_id,
            player_ids=lobby.player_ids,
            order=list(game.turn_order),
            active=game.turn_order[0],
            others=list(game.turn_order[1:]),
            rig=rig,
            session=session,
        )

    return _start
