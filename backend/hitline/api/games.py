from flask import Blueprint, Response, jsonify, request, current_app, stream_with_context
from flask_login import current_user, login_required
from hitline import bus
from hitline.errors import Forbidden, GameError, InvalidInput
from hitline.services.games import engine
from hitline.services.games.catalog import load_song_pool
from hitline.services.games.snapshot import project_session
import json


games = Blueprint('games', __name__)


@games.errorhandler(GameError)
def handle_game_error(exc: GameError):
    return jsonify(exc.to_dict()), exc.status_code


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _int_field(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        raise InvalidInput(f'{key} is required')
    if isinstance(value, bool):
        raise InvalidInput(f'{key} must be an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value)
    raise InvalidInput(f'{key} must be an integer')


def _snapshot(pin: str, **extra):
    payload = project_session(engine.get_session(pin))
    payload.update(extra)
    return jsonify(payload)


@games.route('/create', methods=['POST'])
@login_required
def create_game():
    game, host = engine.create_session(current_user)
    return jsonify({
        'message': 'New game created!',
        'pin': game.pin,
        'player': host.to_dict(),
    }), 201


@games.route('/active', methods=['GET'])
@login_required
def get_active_games():
    return jsonify([
        {'pin': g.pin, 'state': g.state, 'player_count': len(g.players), 'created_at': g.created_at}
        for g in engine.active_games(current_user.id)
    ])


@games.route('/<string:pin>/validate', methods=['GET'])
def validate_pin(pin):
    return jsonify(engine.validate_pin(pin))


@games.route('/<string:pin>/name-available', methods=['GET'])
def name_available(pin):
    name = request.args.get('name', '')
    return jsonify({'available': engine.check_name_available(pin, name)})


@games.route('/join', methods=['POST'])
def join_game():
    data = _body()
    pin = data.get('pin')
    if not pin:
        raise InvalidInput('Game PIN is required')
    player = engine.join_session(pin, data.get('name'), data.get('avatar'))
    return jsonify(player.to_dict()), 201


@games.route('/<string:pin>/heartbeat', methods=['POST'])
def heartbeat(pin):
    player = engine.heartbeat(pin, _int_field(_body(), 'player_id'))
    return jsonify({'success': True, 'last_seen_at': player.last_seen_at})


@games.route('/<string:pin>/state', methods=['GET'])
def get_game_state(pin):
    return _snapshot(pin)


@games.route('/<string:pin>/events', methods=['GET'])
def game_events(pin):
    game = engine.get_session(pin)
    subscription = bus.subscribe(game.pin)

    def stream():
        with subscription:
            for event in subscription:
                yield f"data: {json.dumps(event)}\n\n"

    return Response(
        stream_with_context(stream()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


@games.route('/<string:pin>/history', methods=['GET'])
def game_history(pin):
    return jsonify(engine.history(pin))


@games.route('/<string:pin>/settings', methods=['PATCH'])
@login_required
def update_settings(pin):
    engine.update_settings(pin, current_user.id, _body())
    return _snapshot(pin)


@games.route('/<string:pin>/start', methods=['POST'])
@login_required
def start_game(pin):
    game = engine.get_session(pin)
    # Cheap host check before any network call to the catalog
    if game.host_user_id != current_user.id:
        raise Forbidden('Only the host can do that')
    access_token = request.headers.get('X-Spotify-Token') or _body().get('access_token')
    songs, warning, is_fallback = load_song_pool(
        game.playlist_url, access_token, year_lookup=current_app.config.get('YEAR_LOOKUP'))
    if warning:
        current_app.logger.info(f"[catalog] game={game.pin} warning={warning}")
    engine.start_game(pin, current_user.id, songs, using_fallback=is_fallback)
    return _snapshot(pin, warning=warning)


@games.route('/<string:pin>/turn/confirm', methods=['POST'])
def confirm_turn(pin):
    data = _body()
    engine.confirm_turn(
        pin,
        _int_field(data, 'player_id'),
        _int_field(data, 'placement_index'),
        guess_name=data.get('guess_name'),
        guess_artist=data.get('guess_artist'),
    )
    return _snapshot(pin)


@games.route('/<string:pin>/steal/decide', methods=['POST'])
def decide_to_steal(pin):
    engine.decide_to_steal(pin, _int_field(_body(), 'player_id'))
    return _snapshot(pin)


@games.route('/<string:pin>/steal/skip', methods=['POST'])
def skip_steal(pin):
    engine.skip_steal(pin, _int_field(_body(), 'player_id'))
    return _snapshot(pin)


@games.route('/<string:pin>/steal/place-phase', methods=['POST'])
def transition_to_place_phase(pin):
    outcome = engine.transition_to_place_phase(pin)
    return _snapshot(pin, result=outcome)


@games.route('/<string:pin>/steal/submit', methods=['POST'])
def submit_steal(pin):
    data = _body()
    engine.submit_steal(pin, _int_field(data, 'player_id'), _int_field(data, 'placement_index'))
    return _snapshot(pin)


@games.route('/<string:pin>/steal/resolve', methods=['POST'])
def resolve_steal_phase(pin):
    outcome = engine.resolve_steal_phase(pin)
    return _snapshot(pin, result=outcome)


@games.route('/<string:pin>/song/skip', methods=['POST'])
def skip_song(pin):
    engine.skip_song(pin, _int_field(_body(), 'player_id'))
    return _snapshot(pin)


@games.route('/<string:pin>/song/free', methods=['POST'])
def get_free_song(pin):
    engine.get_free_song(pin, _int_field(_body(), 'player_id'))
    return _snapshot(pin)


@games.route('/<string:pin>/rematch', methods=['POST'])
@login_required
def start_rematch(pin):
    engine.start_rematch(pin, current_user.id)
    return _snapshot(pin)
