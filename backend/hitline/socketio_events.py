from flask import current_app
from flask_socketio import join_room, leave_room, emit
from hitline import socketio, bus
from hitline.errors import GameError
from hitline.services.games import engine


def _room(pin: str) -> str:
    return f"game:{pin.upper()}"


def _pin_from(data):
    return (data or {}).get('game_code') or (data or {}).get('pin')


def _touch(pin, player_id) -> None:
    """Socket traffic from a known player counts as a heartbeat."""
    if not pin or player_id is None:
        return
    try:
        engine.heartbeat(pin, int(player_id))
    except (GameError, TypeError, ValueError) as exc:
        message = exc.message if isinstance(exc, GameError) else 'player_id must be an integer'
        current_app.logger.info(f"[ws-heartbeat] game={pin} player={player_id} rejected: {message}")
        emit('error', {'message': message})


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_game(data):
    pin = _pin_from(data)
    if not pin:
        emit('error', {'message': 'game_code is required'})
        return
    room = _room(pin)
    join_room(room)
    emit('joined', {'room': room})
    _touch(pin, (data or {}).get('player_id'))


def handle_leave_game(data):
    pin = _pin_from(data)
    if not pin:
        emit('error', {'message': 'game_code is required'})
        return
    room = _room(pin)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    _touch(_pin_from(data), (data or {}).get('player_id'))
    emit('pong', data or {})


def _emit_state_update(pin: str, event: dict) -> None:
    # Clients re-fetch /state on this signal; the payload stays minimal
    socketio.emit('state_update', {'game_code': pin, 'timestamp': event['timestamp']},
                  to=_room(pin), namespace='/ws')


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers and the bus bridge.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for namespace in ('/ws', '/') if testing else ('/ws',):
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('join_game', handle_join_game, namespace=namespace)
        socketio.on_event('leave_game', handle_leave_game, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)

    bus.add_listener(_emit_state_update)
