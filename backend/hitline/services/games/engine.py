"""Session lifecycle and the turn/steal state machine.

Every mutating operation runs inside ``session_transaction``: it reads the
session, validates, and only then changes anything, so a rejected action
leaves the session exactly as it was. Deadlines stored on the session are
data for clients; nothing here fires on a timer. Clients call the phase
transitions once a deadline has passed.
"""
import random
from dataclasses import replace
from typing import Optional

from flask import current_app

from hitline import db, bus, utils
from hitline.errors import BadState, Conflict, Forbidden, InvalidInput, NotFound, ResourceExhausted
from hitline.models import GameHistory, GameSession, Player, Turn, generate_pin
from hitline.services.games import tokens
from hitline.services.games.catalog import FALLBACK_SONGS
from hitline.services.games.matching import guess_matches
from hitline.services.games.phases import (
    NO_STEAL, DecidePhase, Guess, NoSteal, PlacePhase, StealAttempt,
)
from hitline.services.games.placement import is_placement_correct, sort_timeline
from hitline.services.games.song_pool import SongPool
from hitline.services.games.transaction import session_transaction

HOST_AVATAR = '🎵'
MAX_NAME_LENGTH = 50

SETTING_RANGES = {
    'songs_to_win': (5, 20),
    'song_play_duration': (15, 60),
    'turn_duration': (30, 90),
    'steal_window_duration': (5, 20),
    'max_players': (1, 20),
}


def _cfg(key):
    return current_app.config[key]


def _timeout() -> float:
    return float(_cfg('HEARTBEAT_TIMEOUT_SEC'))


def _log(message: str) -> None:
    current_app.logger.info(message)


def get_session(pin: str) -> GameSession:
    game = GameSession.query.filter_by(pin=(pin or '').upper()).first()
    if not game:
        raise NotFound('Game not found')
    return game


def _require_player(game: GameSession, player_id) -> Player:
    player = game.player(player_id)
    if player is None:
        raise NotFound('Player not found in this game')
    return player


def _require_host(game: GameSession, user_id) -> None:
    if user_id is None or game.host_user_id != user_id:
        raise Forbidden('Only the host can do that')


def _require_playing(game: GameSession) -> None:
    if game.state != 'playing':
        raise BadState('Game is not in progress')


def _require_active(game: GameSession, player: Player) -> None:
    if game.current_player_id != player.id:
        raise Forbidden("It's not your turn")


def _require_no_steal(game: GameSession, action: str) -> None:
    if not isinstance(game.steal, NoSteal):
        raise BadState(f'Cannot {action} during a steal phase')


def _require_index(placement_index) -> int:
    if isinstance(placement_index, bool) or not isinstance(placement_index, int) or placement_index < 0:
        raise InvalidInput('placement_index must be a non-negative integer')
    return placement_index


def _timeline_entry(song: dict, now: float) -> dict:
    return {
        'song_id': song['song_id'],
        'name': song['name'],
        'artist': song['artist'],
        'year': song['year'],
        'uri': song.get('uri'),
        'added_at': now,
    }


def _connected(game: GameSession, now: float):
    timeout = _timeout()
    return [p for p in game.players if p.is_connected(now, timeout)]


# ---- Lobby ----

def create_session(user):
    """New lobby hosted by ``user``; the host is also the first player."""
    pin = generate_pin()
    if pin is None:
        raise Conflict('Could not allocate a game PIN, please try again')
    now = utils.now_ts()
    game = GameSession(
        pin=pin,
        host_user_id=user.id,
        state='lobby',
        songs_to_win=_cfg('SONGS_TO_WIN'),
        song_play_duration=_cfg('SONG_PLAY_DURATION_SEC'),
        turn_duration=_cfg('TURN_DURATION_SEC'),
        steal_window_duration=_cfg('STEAL_WINDOW_SEC'),
        max_players=_cfg('MAX_PLAYERS'),
        shuffle_turns_each_round=True,
        round_number=1,
        created_at=now,
        updated_at=now,
    )
    host = Player(
        user_id=user.id,
        name=user.username,
        avatar=HOST_AVATAR,
        tokens=_cfg('STARTING_TOKENS'),
        is_host=True,
        last_seen_at=now,
        created_at=now,
    )
    game.players.append(host)
    db.session.add(game)
    db.session.commit()
    _log(f"[create] game={pin} host_user={user.id}")
    bus.publish(pin)
    return game, host


def validate_pin(pin: str) -> dict:
    game = GameSession.query.filter_by(pin=(pin or '').upper()).first()
    if not game:
        return {'valid': False, 'reason': 'not_found'}
    count = len(_connected(game, utils.now_ts()))
    result = {'valid': True, 'reason': None, 'state': game.state,
              'player_count': count, 'max_players': game.max_players}
    if game.state == 'playing':
        result.update(valid=False, reason='in_progress')
    elif count >= game.max_players:
        result.update(valid=False, reason='full')
    return result


def check_name_available(pin: str, name: str) -> bool:
    """Names only clash with connected players; a disconnected name can be reclaimed."""
    name = (name or '').strip()
    if not name:
        raise InvalidInput('Name is required')
    game = get_session(pin)
    return all(p.name.lower() != name.lower() for p in _connected(game, utils.now_ts()))


def join_session(pin: str, name: str, avatar: Optional[str] = None) -> Player:
    name = (name or '').strip()
    if not name:
        raise InvalidInput('Player name is required')
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidInput(f'Player name must be at most {MAX_NAME_LENGTH} characters')

    with session_transaction(pin) as tx:
        game = tx.game
        if game.state == 'playing':
            raise BadState('Game is already in progress')
        now = utils.now_ts()
        timeout = _timeout()
        existing = next((p for p in game.players if p.name.lower() == name.lower()), None)
        if existing is not None and existing.is_connected(now, timeout):
            raise Conflict('That name is already taken')

        if existing is not None:
            player = existing
            player.avatar = avatar or player.avatar
            player.last_seen_at = now
            _log(f"[rejoin] game={game.pin} player={player.id} name={name}")
        else:
            if len(_connected(game, now)) >= game.max_players:
                raise BadState('Game is full')
            player = Player(
                name=name,
                avatar=avatar or HOST_AVATAR,
                tokens=_cfg('STARTING_TOKENS'),
                is_host=False,
                last_seen_at=now,
                created_at=now,
            )
            game.players.append(player)
            db.session.flush()
            _log(f"[join] game={game.pin} player={player.id} name={name}")
        game.updated_at = now
    return player


def heartbeat(pin: str, player_id) -> Player:
    with session_transaction(pin) as tx:
        player = _require_player(tx.game, player_id)
        now = utils.now_ts()
        was_connected = player.is_connected(now, _timeout())
        player.last_seen_at = now
        # Routine heartbeats do not change what viewers see
        tx.publish = not was_connected
    return player


def _validate_settings(changes: dict) -> dict:
    clean = {}
    for key, value in changes.items():
        if key in SETTING_RANGES:
            low, high = SETTING_RANGES[key]
            if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
                raise InvalidInput(f'{key} must be an integer between {low} and {high}')
            clean[key] = value
        elif key == 'playlist_url':
            if value is not None and not isinstance(value, str):
                raise InvalidInput('playlist_url must be a string or null')
            clean[key] = (value or '').strip() or None
        elif key == 'shuffle_turns_each_round':
            if not isinstance(value, bool):
                raise InvalidInput('shuffle_turns_each_round must be a boolean')
            clean[key] = value
        else:
            raise InvalidInput(f'Unknown setting: {key}')
    return clean


def update_settings(pin: str, user_id, changes: dict) -> GameSession:
    with session_transaction(pin) as tx:
        game = tx.game
        _require_host(game, user_id)
        if game.state != 'lobby':
            raise BadState('Settings can only be changed in the lobby')
        for key, value in _validate_settings(changes or {}).items():
            setattr(game, key, value)
        game.updated_at = utils.now_ts()
        _log(f"[settings] game={game.pin} changed={sorted(changes or {})}")
    return game


# ---- Playing ----

def start_game(pin: str, user_id, songs=None, using_fallback: bool = False) -> GameSession:
    """Deal starting songs and open the first turn.

    ``songs`` is the primary pool for this playthrough; without one the
    offline catalog is used and counts as the fallback from the start.
    """
    with session_transaction(pin) as tx:
        game = tx.game
        _require_host(game, user_id)
        if game.state != 'lobby':
            raise BadState('Game can only be started from the lobby')
        now = utils.now_ts()
        connected = _connected(game, now)
        if not connected:
            raise BadState('At least one connected player is needed to start')

        if songs is None:
            songs, using_fallback = FALLBACK_SONGS, True
        pool = SongPool(songs, FALLBACK_SONGS, fallback_engaged=using_fallback)
        dealt = pool.deal(len(connected))
        if dealt is None:
            raise ResourceExhausted('Not enough songs to start the game')
        hands, first_song = dealt

        order = [p.id for p in connected]
        random.shuffle(order)
        by_id = {p.id: p for p in connected}
        for pid, song in zip(order, hands):
            by_id[pid].timeline = [_timeline_entry(song, now)]

        game.state = 'playing'
        game.turn_order = order
        game.current_turn_index = 0
        game.round_number = 1
        game.song_pool = pool.songs
        game.used_song_ids = sorted(pool.used)
        game.using_fallback_pool = pool.fallback_engaged
        game.current_song = first_song
        game.turn_started_at = now
        game.steal = NO_STEAL
        game.updated_at = now
        _log(f"[start] game={game.pin} players={len(order)} pool={len(pool.songs)} fallback={pool.fallback_engaged}")
    return game


def confirm_turn(pin: str, player_id, placement_index, guess_name: Optional[str] = None,
                 guess_artist: Optional[str] = None) -> GameSession:
    _require_index(placement_index)
    with session_transaction(pin) as tx:
        game = tx.game
        _require_playing(game)
        player = _require_player(game, player_id)
        _require_active(game, player)
        if not isinstance(game.steal, NoSteal):
            raise BadState('This turn has already been confirmed')
        now = utils.now_ts()
        player.last_seen_at = now
        timeout = _timeout()
        eligible = tuple(
            p.id for p in game.players
            if p.id != player.id and p.id in game.turn_order and p.is_connected(now, timeout)
        )
        guess = None
        if (guess_name or '').strip() or (guess_artist or '').strip():
            guess = Guess(name=(guess_name or '').strip() or None, artist=(guess_artist or '').strip() or None)
        game.steal = DecidePhase(
            ends_at=now + game.steal_window_duration,
            active_placement=placement_index,
            guess=guess,
            eligible=eligible,
        )
        game.updated_at = now
        _log(f"[confirm] game={game.pin} player={player.id} index={placement_index} eligible={len(eligible)}")
    return game


def _decide(pin: str, player_id, stealing: bool) -> GameSession:
    with session_transaction(pin) as tx:
        game = tx.game
        _require_playing(game)
        player = _require_player(game, player_id)
        phase = game.steal
        if not isinstance(phase, DecidePhase):
            raise BadState('Not in the steal decision phase')
        if player.id == game.current_player_id:
            raise BadState('The active player cannot steal their own turn')
        if player.id not in phase.eligible:
            raise Forbidden('You were not connected when the steal window opened')
        if phase.has_decided(player.id):
            raise Conflict('You have already decided')
        now = utils.now_ts()
        if now > phase.ends_at:
            raise BadState('The steal decision window has closed')
        if stealing:
            tokens.spend(player, _cfg('STEAL_TOKEN_COST'), 'Stealing')
            game.steal = replace(phase, stealers=phase.stealers + (player.id,))
        else:
            game.steal = replace(phase, skippers=phase.skippers + (player.id,))
        player.last_seen_at = now
        game.updated_at = now
        _log(f"[decide] game={game.pin} player={player.id} steal={stealing}")
    return game


def decide_to_steal(pin: str, player_id) -> GameSession:
    return _decide(pin, player_id, stealing=True)


def skip_steal(pin: str, player_id) -> GameSession:
    return _decide(pin, player_id, stealing=False)


def transition_to_place_phase(pin: str) -> Optional[dict]:
    """Open the place phase, or resolve straight away if nobody is stealing.

    Returns the turn outcome when the turn was resolved, else ``None``.
    """
    with session_transaction(pin) as tx:
        game = tx.game
        phase = game.steal
        if not isinstance(phase, DecidePhase):
            raise BadState('Not in the steal decision phase')
        now = utils.now_ts()
        if not phase.all_decided() and now < phase.ends_at:
            raise BadState('Still waiting for players to decide')
        if not phase.stealers:
            return _resolve(game, phase, now)
        game.steal = PlacePhase(
            ends_at=now + _cfg('PLACE_PHASE_SEC'),
            active_placement=phase.active_placement,
            guess=phase.guess,
            stealers=phase.stealers,
        )
        game.updated_at = now
        _log(f"[place-phase] game={game.pin} stealers={list(phase.stealers)}")
    return None


def submit_steal(pin: str, player_id, placement_index) -> GameSession:
    """Claim a slot in the place phase.

    Committed stealers already paid in the decide phase. Anyone else still
    holding a token may pay now and join late.
    """
    _require_index(placement_index)
    with session_transaction(pin) as tx:
        game = tx.game
        _require_playing(game)
        player = _require_player(game, player_id)
        phase = game.steal
        if not isinstance(phase, PlacePhase):
            raise BadState('Not in the steal placement phase')
        if player.id == game.current_player_id:
            raise BadState('The active player cannot steal their own turn')
        if player.id not in game.turn_order:
            raise Forbidden('You are not playing in this game')
        if phase.attempt_by(player.id) is not None:
            raise Conflict('You have already submitted a steal')
        now = utils.now_ts()
        if now > phase.ends_at:
            raise BadState('The steal placement window has closed')
        if phase.slot_taken(placement_index):
            raise Conflict('That position has already been claimed')
        if player.id not in phase.stealers:
            tokens.spend(player, _cfg('STEAL_TOKEN_COST'), 'Stealing')
        attempt = StealAttempt(player.id, player.name, placement_index, now)
        game.steal = replace(phase, attempts=phase.attempts + (attempt,))
        player.last_seen_at = now
        game.updated_at = now
        _log(f"[steal] game={game.pin} player={player.id} index={placement_index}")
    return game


def resolve_steal_phase(pin: str) -> dict:
    with session_transaction(pin) as tx:
        game = tx.game
        phase = game.steal
        if isinstance(phase, NoSteal):
            raise BadState('There is no steal phase to resolve')
        return _resolve(game, phase, utils.now_ts())


def _resolve(game: GameSession, phase, now: float) -> dict:
    active = game.player(game.current_player_id)
    song = game.current_song
    year = song['year']
    correct = is_placement_correct(sort_timeline(active.timeline), year, phase.active_placement)

    guess_correct = None
    if phase.guess is not None:
        guess_correct = guess_matches(phase.guess, song)
        if guess_correct:
            tokens.earn(active, _cfg('GUESS_BONUS_TOKENS'))

    recipient = active if correct else None
    attempts = phase.attempts if isinstance(phase, PlacePhase) else ()
    records = []
    if correct:
        records = [dict(a.to_dict(), was_correct=None, won=False) for a in attempts]
    else:
        # Stable sort: equal timestamps keep commit order
        for attempt in sorted(attempts, key=lambda a: a.timestamp):
            stealer = game.player(attempt.player_id)
            ok = stealer is not None and is_placement_correct(
                sort_timeline(stealer.timeline), year, attempt.placement_index)
            won = ok and recipient is None
            if won:
                recipient = stealer
            records.append(dict(attempt.to_dict(), was_correct=ok, won=won))

    db.session.add(Turn(
        game_session_id=game.id,
        player_id=active.id,
        game_number=game.games_played + 1,
        round_number=game.round_number,
        song_id=song['song_id'],
        song_name=song['name'],
        song_artist=song['artist'],
        song_year=year,
        placement_index=phase.active_placement,
        was_correct=correct,
        guessed_name=phase.guess.name if phase.guess else None,
        guessed_artist=phase.guess.artist if phase.guess else None,
        guess_was_correct=guess_correct,
        steal_attempts_json=utils.dump_json(records),
        recipient_id=recipient.id if recipient else None,
        completed_at=now,
    ))
    outcome = {
        'song': song,
        'active_player_id': active.id,
        'was_correct': correct,
        'guess_was_correct': guess_correct,
        'recipient_id': recipient.id if recipient else None,
        'steal_attempts': records,
        'finished': False,
    }
    _log(f"[resolve] game={game.pin} player={active.id} correct={correct} "
         f"recipient={outcome['recipient_id']} attempts={len(records)}")

    if recipient is not None:
        recipient.timeline = recipient.timeline + [_timeline_entry(song, now)]
        if len(recipient.timeline) >= game.songs_to_win:
            _finish(game, recipient, 'songs_to_win', now)
            outcome['finished'] = True
            return outcome

    _advance_turn(game, now)
    outcome['finished'] = game.state == 'finished'
    return outcome


def _advance_turn(game: GameSession, now: float) -> None:
    """Hand the turn on, unless the pool is empty; then the game ends on the current round."""
    game.steal = NO_STEAL
    game.updated_at = now
    if not _draw_next(game, now):
        return
    order = game.turn_order
    index = (game.current_turn_index + 1) % len(order)
    if index == 0:
        game.round_number += 1
        if game.shuffle_turns_each_round and len(order) > 1:
            game.turn_order = random.sample(order, len(order))
    game.current_turn_index = index
    game.turn_started_at = now


def _draw(game: GameSession) -> Optional[dict]:
    """Draw from the session pool and write the used set back."""
    pool = SongPool.for_session(game, FALLBACK_SONGS)
    song = pool.draw()
    if pool.fallback_engaged and not game.using_fallback_pool:
        game.using_fallback_pool = True
        current_app.logger.warning(f"[pool-fallback] game={game.pin} primary pool exhausted")
    game.used_song_ids = sorted(pool.used)
    return song


def _draw_next(game: GameSession, now: float) -> bool:
    """Next mystery song; pool exhaustion ends the game instead."""
    song = _draw(game)
    if song is None:
        _finish(game, _longest_timeline(game), 'pool_exhausted', now)
        return False
    game.current_song = song
    return True


def _longest_timeline(game: GameSession) -> Optional[Player]:
    players = [game.player(pid) for pid in game.turn_order]
    players = [p for p in players if p is not None]
    if not players:
        return None
    # max() keeps the first of equals, i.e. earliest in turn order
    return max(players, key=lambda p: len(p.timeline))


def _finish(game: GameSession, winner: Optional[Player], reason: str, now: float) -> None:
    number = game.games_played + 1
    game.state = 'finished'
    game.current_song = None
    game.steal = NO_STEAL
    game.turn_started_at = None
    game.games_played = number
    game.updated_at = now
    if winner is not None:
        winner.wins += 1

    turns = Turn.query.filter_by(game_session_id=game.id, game_number=number).all()
    standings = []
    for player in game.players:
        own = [t for t in turns if t.player_id == player.id]
        standings.append({
            'player_id': player.id,
            'name': player.name,
            'timeline_count': len(player.timeline),
            'tokens_remaining': player.tokens,
            'correct_placements': sum(1 for t in own if t.was_correct),
            'total_placements': len(own),
        })
    standings.sort(key=lambda s: s['timeline_count'], reverse=True)
    db.session.add(GameHistory(
        game_session_id=game.id,
        host_user_id=game.host_user_id,
        game_number=number,
        winner_id=winner.id if winner else None,
        reason=reason,
        rounds_played=game.round_number,
        final_standings_json=utils.dump_json(standings),
        completed_at=now,
    ))
    _log(f"[finish] game={game.pin} winner={winner.id if winner else None} reason={reason} round={game.round_number}")


def skip_song(pin: str, player_id) -> GameSession:
    """Swap the mystery song for a new one; running out of songs ends the game free of charge."""
    with session_transaction(pin) as tx:
        game = tx.game
        _require_playing(game)
        player = _require_player(game, player_id)
        _require_active(game, player)
        _require_no_steal(game, 'skip a song')
        cost = _cfg('SKIP_SONG_COST')
        tokens.require(player, cost, 'Skipping a song')
        now = utils.now_ts()
        player.last_seen_at = now
        game.updated_at = now
        if not _draw_next(game, now):
            return game
        tokens.spend(player, cost, 'Skipping a song')
        game.turn_started_at = now
        _log(f"[skip-song] game={game.pin} player={player.id}")
    return game


def get_free_song(pin: str, player_id) -> GameSession:
    with session_transaction(pin) as tx:
        game = tx.game
        _require_playing(game)
        player = _require_player(game, player_id)
        _require_active(game, player)
        _require_no_steal(game, 'buy a song')
        cost = _cfg('FREE_SONG_COST')
        tokens.require(player, cost, 'A free song')
        song = _draw(game)
        if song is None:
            raise ResourceExhausted('No songs left in the pool')
        now = utils.now_ts()
        tokens.spend(player, cost, 'A free song')
        player.timeline = player.timeline + [_timeline_entry(song, now)]
        player.last_seen_at = now
        game.updated_at = now
        _log(f"[free-song] game={game.pin} player={player.id} timeline={len(player.timeline)}")
        if len(player.timeline) >= game.songs_to_win:
            _finish(game, player, 'songs_to_win', now)
    return game


# ---- After the game ----

def start_rematch(pin: str, user_id) -> GameSession:
    """Back to the lobby under the same PIN. Win counters carry over."""
    with session_transaction(pin) as tx:
        game = tx.game
        _require_host(game, user_id)
        if game.state != 'finished':
            raise BadState('A rematch can only start after the game has finished')
        for player in game.players:
            player.tokens = _cfg('STARTING_TOKENS')
            player.timeline = []
        game.state = 'lobby'
        game.turn_order = []
        game.current_turn_index = None
        game.round_number = 1
        game.current_song = None
        game.turn_started_at = None
        game.steal = NO_STEAL
        game.used_song_ids = []
        game.song_pool = None
        game.using_fallback_pool = False
        game.updated_at = utils.now_ts()
        _log(f"[rematch] game={game.pin} games_played={game.games_played}")
    return game


def history(pin: str) -> dict:
    game = get_session(pin)
    return {
        'pin': game.pin,
        'games_played': game.games_played,
        'turns': [t.to_dict() for t in game.turns],
        'games': [h.to_dict() for h in game.histories],
    }


def last_turn(game: GameSession) -> Optional[Turn]:
    return Turn.query.filter_by(game_session_id=game.id).order_by(Turn.id.desc()).first()


def active_games(user_id):
    return (
        GameSession.query
        .filter(GameSession.host_user_id == user_id, GameSession.state != 'finished')
        .order_by(GameSession.created_at.desc())
        .all()
    )
