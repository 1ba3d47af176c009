import pytest

from hitline.errors import Conflict
from hitline.notifications import NotificationBus


def test_subscriber_gets_connected_then_updates():
    bus = NotificationBus(keepalive_sec=0.01)
    with bus.subscribe('abcd') as sub:
        stream = iter(sub)
        assert next(stream)['type'] == 'connected'
        bus.publish('ABCD')
        event = next(stream)
        assert event['type'] == 'update'
        assert event['pin'] == 'ABCD'
        assert set(event) == {'type', 'pin', 'timestamp'}
    assert bus.subscriber_count('ABCD') == 0


def test_keepalive_after_silence():
    bus = NotificationBus(keepalive_sec=0.01)
    with bus.subscribe('ABCD') as sub:
        assert sub.get()['type'] == 'ping'


def test_publish_is_scoped_to_pin():
    bus = NotificationBus()
    with bus.subscribe('AAAA') as a, bus.subscribe('BBBB') as b:
        bus.publish('AAAA')
        assert a.get(timeout=0.01)['type'] == 'update'
        assert b.get(timeout=0.01)['type'] == 'ping'


def test_listeners_are_called_once_each():
    bus = NotificationBus()
    seen = []

    def listener(pin, event):
        seen.append((pin, event['type']))

    bus.add_listener(listener)
    bus.add_listener(listener)
    bus.publish('abcd')
    assert seen == [('ABCD', 'update')]


def test_engine_publishes_after_commit(make_lobby):
    from hitline import bus
    from hitline.services.games import engine

    lobby = make_lobby(0)
    with bus.subscribe(lobby.pin) as sub:
        engine.join_session(lobby.pin, 'Dana', '🎻')
        assert sub.get(timeout=0.01)['type'] == 'update'
        with pytest.raises(Conflict):
            engine.join_session(lobby.pin, 'dana', '🎻')
        # rejected actions publish nothing
        assert sub.get(timeout=0.01)['type'] == 'ping'


def test_heartbeat_only_publishes_on_reconnect(make_lobby, clock):
    from hitline import bus
    from hitline.services.games import engine

    lobby = make_lobby(1)
    player_id = lobby.player_ids[1]
    with bus.subscribe(lobby.pin) as sub:
        engine.heartbeat(lobby.pin, player_id)
        assert sub.get(timeout=0.01)['type'] == 'ping'
        clock.advance(6)
        engine.heartbeat(lobby.pin, player_id)
        assert sub.get(timeout=0.01)['type'] == 'update'
