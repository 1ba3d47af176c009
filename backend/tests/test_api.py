from unittest.mock import MagicMock, patch


def _create(host_client):
    res = host_client.post('/api/games/create')
    assert res.status_code == 201
    return res.get_json()


def test_create_requires_login(client):
    res = client.post('/api/games/create')
    assert res.status_code == 401


def test_create_join_and_state(host_client, client):
    created = _create(host_client)
    pin = created['pin']
    assert len(pin) == 4
    assert created['player']['is_host'] is True
    assert created['player']['name'] == 'host'

    res = client.post('/api/games/join', json={'pin': pin.lower(), 'name': 'Alice', 'avatar': '🎤'})
    assert res.status_code == 201
    alice = res.get_json()
    assert alice['tokens'] == 2

    state = client.get(f'/api/games/{pin}/state').get_json()
    assert state['state'] == 'lobby'
    assert [p['name'] for p in state['players']] == ['host', 'Alice']


def test_errors_are_json_with_status(host_client, client):
    pin = _create(host_client)['pin']
    client.post('/api/games/join', json={'pin': pin, 'name': 'Alice'})

    res = client.post('/api/games/join', json={'pin': pin, 'name': 'ALICE'})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'conflict'

    res = client.get('/api/games/ZZZZ/state')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Game not found', 'code': 'not_found'}

    res = client.post(f'/api/games/{pin}/heartbeat', json={'player_id': 'abc'})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'invalid_input'


def test_validate_and_name_available(host_client, client):
    pin = _create(host_client)['pin']
    assert client.get(f'/api/games/{pin}/validate').get_json()['valid'] is True
    assert client.get('/api/games/ZZZZ/validate').get_json()['reason'] == 'not_found'
    assert client.get(f'/api/games/{pin}/name-available?name=Host').get_json() == {'available': False}
    assert client.get(f'/api/games/{pin}/name-available?name=Bob').get_json() == {'available': True}


def test_settings_are_host_only(host_client, other_host_client):
    pin = _create(host_client)['pin']
    res = other_host_client.patch(f'/api/games/{pin}/settings', json={'songs_to_win': 6})
    assert res.status_code == 403
    res = host_client.patch(f'/api/games/{pin}/settings', json={'songs_to_win': 99})
    assert res.status_code == 400
    res = host_client.patch(f'/api/games/{pin}/settings', json={'songs_to_win': 6, 'shuffle_turns_each_round': False})
    assert res.status_code == 200
    assert res.get_json()['settings']['songs_to_win'] == 6


def test_full_turn_over_http(host_client, client):
    pin = _create(host_client)['pin']
    client.post('/api/games/join', json={'pin': pin, 'name': 'Alice'})

    started = host_client.post(f'/api/games/{pin}/start').get_json()
    assert started['state'] == 'playing'
    assert started['warning'] == 'Using offline song library'
    assert set(started['current_song']) == {'song_id', 'uri'}

    active = started['current_player_id']
    other = next(pid for pid in started['turn_order'] if pid != active)

    res = client.post(f'/api/games/{pin}/turn/confirm', json={'player_id': other, 'placement_index': 0})
    assert res.status_code == 403

    res = client.post(f'/api/games/{pin}/turn/confirm', json={'player_id': active, 'placement_index': 0})
    assert res.get_json()['steal_phase'] == 'decide'

    res = client.post(f'/api/games/{pin}/steal/decide', json={'player_id': other})
    assert res.status_code == 200
    res = client.post(f'/api/games/{pin}/steal/place-phase')
    assert res.get_json()['steal_phase'] == 'place'
    assert res.get_json()['result'] is None

    res = client.post(f'/api/games/{pin}/steal/submit', json={'player_id': other, 'placement_index': 1})
    assert res.status_code == 200

    res = client.post(f'/api/games/{pin}/steal/resolve')
    body = res.get_json()
    assert res.status_code == 200
    assert body['steal_phase'] is None
    assert body['result']['active_player_id'] == active
    assert body['last_turn']['song']['year'] == body['result']['song']['year']

    history = client.get(f'/api/games/{pin}/history').get_json()
    assert len(history['turns']) == 1
    assert history['turns'][0]['steal_attempts'][0]['player_id'] == other


def test_start_is_host_only(host_client, other_host_client):
    pin = _create(host_client)['pin']
    res = other_host_client.post(f'/api/games/{pin}/start')
    assert res.status_code == 403


def test_start_applies_configured_year_lookup(flask_app, host_client):
    flask_app.config['YEAR_LOOKUP'] = lambda song_id: 1970
    pin = _create(host_client)['pin']
    tracks = [
        {'track': {
            'id': f'sp{i}',
            'name': f'Track {i}',
            'uri': f'spotify:track:sp{i}',
            'artists': [{'name': 'Band'}],
            'album': {'release_date': f'{1990 + i}-05-01'},
        }}
        for i in range(3)
    ]
    page = MagicMock(status_code=200, ok=True)
    page.json.return_value = {'items': tracks, 'next': None}
    with patch('hitline.services.games.catalog.requests.get', return_value=page):
        res = host_client.post(f'/api/games/{pin}/start', headers={'X-Spotify-Token': 'token'})
    assert res.status_code == 200
    state = res.get_json()
    assert state['using_fallback_pool'] is False
    assert [e['year'] for e in state['players'][0]['timeline']] == [1970]


def test_song_routes_reject_insufficient_tokens(host_client, client):
    pin = _create(host_client)['pin']
    started = host_client.post(f'/api/games/{pin}/start').get_json()
    active = started['current_player_id']
    res = client.post(f'/api/games/{pin}/song/free', json={'player_id': active})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'insufficient_tokens'
    res = client.post(f'/api/games/{pin}/song/skip', json={'player_id': active})
    assert res.status_code == 200
    assert res.get_json()['players'][0]['tokens'] == 1


def test_active_games_and_rematch_guard(host_client):
    pin = _create(host_client)['pin']
    games = host_client.get('/api/games/active').get_json()
    assert [g['pin'] for g in games] == [pin]
    res = host_client.post(f'/api/games/{pin}/rematch')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'bad_state'


def test_events_stream_starts_with_connected(host_client, client):
    pin = _create(host_client)['pin']
    assert client.get('/api/games/ZZZZ/events').status_code == 404

    res = client.get(f'/api/games/{pin}/events')
    assert res.status_code == 200
    assert res.mimetype == 'text/event-stream'
    first = next(iter(res.response))
    assert b'"type": "connected"' in first
    res.close()
