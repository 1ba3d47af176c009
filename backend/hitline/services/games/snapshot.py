"""What viewers are allowed to see of a session.

While a game is running the mystery song is reduced to its id and playback
URI, and the active player's guess to a flag, so the payload cannot be used
to cheat. Resolved turns carry full metadata.
"""
from typing import Optional

from flask import current_app

from hitline import utils
from hitline.services.games import engine
from hitline.services.games.catalog import FALLBACK_SONGS
from hitline.services.games.phases import DecidePhase, NoSteal, PlacePhase
from hitline.services.games.song_pool import SongPool


def _project_song(song: Optional[dict], playing: bool) -> Optional[dict]:
    if not song:
        return None
    if playing:
        return {'song_id': song['song_id'], 'uri': song.get('uri')}
    return dict(song)


def _project_steal(phase) -> Optional[dict]:
    if isinstance(phase, NoSteal):
        return None
    data = {
        'phase': phase.tag,
        'ends_at': phase.ends_at,
        'active_placement': phase.active_placement,
        'has_guess': phase.guess is not None,
        'stealers': list(phase.stealers),
    }
    if isinstance(phase, DecidePhase):
        data['eligible'] = list(phase.eligible)
        data['skippers'] = list(phase.skippers)
    elif isinstance(phase, PlacePhase):
        data['attempts'] = [a.to_dict() for a in phase.attempts]
    return data


def project_session(game, now: Optional[float] = None) -> dict:
    cfg = current_app.config
    now = utils.now_ts() if now is None else now
    timeout = float(cfg['HEARTBEAT_TIMEOUT_SEC'])
    playing = game.state == 'playing'

    players = list(game.players)
    order = game.turn_order
    if playing and order:
        rank = {pid: i for i, pid in enumerate(order)}
        players.sort(key=lambda p: rank.get(p.id, len(order)))
    host = next((p for p in players if p.is_host), None)

    phase = game.steal
    remaining = None
    if playing:
        remaining = len(SongPool.for_session(game, FALLBACK_SONGS).available())
    last = engine.last_turn(game)

    return {
        'pin': game.pin,
        'state': game.state,
        'host_user_id': game.host_user_id,
        'host_connected': bool(host and host.is_connected(now, timeout)),
        'settings': {
            'songs_to_win': game.songs_to_win,
            'song_play_duration': game.song_play_duration,
            'turn_duration': game.turn_duration,
            'steal_window_duration': game.steal_window_duration,
            'max_players': game.max_players,
            'playlist_url': game.playlist_url,
            'shuffle_turns_each_round': game.shuffle_turns_each_round,
        },
        'players': [p.to_dict(now, timeout) for p in players],
        'turn_order': order,
        'current_turn_index': game.current_turn_index,
        'current_player_id': game.current_player_id,
        'round_number': game.round_number,
        'games_played': game.games_played,
        'turn_started_at': game.turn_started_at,
        'current_song': _project_song(game.current_song, playing),
        'using_fallback_pool': game.using_fallback_pool,
        'songs_remaining': remaining,
        'steal_phase': phase.tag,
        'steal': _project_steal(phase),
        'is_steal_phase': not isinstance(phase, NoSteal),
        'steal_phase_end_at': getattr(phase, 'ends_at', None),
        'last_turn': last.to_dict() if last else None,
        'durations': {
            'turn': game.turn_duration,
            'steal_window': game.steal_window_duration,
            'place_phase': int(cfg['PLACE_PHASE_SEC']),
            'song_play': game.song_play_duration,
        },
        'server_time': now,
    }
