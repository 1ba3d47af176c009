from hitline import db, bcrypt
from hitline.utils import now_ts, load_json, dump_json
from hitline.services.games import phases
from flask_login import UserMixin
import random

PIN_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'  # no 0/O or 1/I

class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }

def generate_pin(length=4, max_attempts=10):
    """Generate a unique, short session PIN."""
    for _ in range(max_attempts):
        pin = ''.join(random.choices(PIN_ALPHABET, k=length))
        if not GameSession.query.filter_by(pin=pin).first():
            return pin
    return None

class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    pin = db.Column(db.String(4), unique=True, nullable=False, index=True)
    host_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    state = db.Column(db.String(16), nullable=False, default='lobby') # lobby, playing, finished
    # Rules
    songs_to_win = db.Column(db.Integer, nullable=False, default=10)
    song_play_duration = db.Column(db.Integer, nullable=False, default=30)
    turn_duration = db.Column(db.Integer, nullable=False, default=45)
    steal_window_duration = db.Column(db.Integer, nullable=False, default=10)
    max_players = db.Column(db.Integer, nullable=False, default=10)
    playlist_url = db.Column(db.Text, nullable=True)
    shuffle_turns_each_round = db.Column(db.Boolean, nullable=False, default=True)
    # Turn bookkeeping
    turn_order_json = db.Column('turn_order', db.Text, nullable=True)  # JSON list of player ids
    current_turn_index = db.Column(db.Integer, nullable=True)
    round_number = db.Column(db.Integer, nullable=False, default=1)
    current_song_json = db.Column('current_song', db.Text, nullable=True)
    turn_started_at = db.Column(db.Float, nullable=True)
    steal_phase_json = db.Column('steal_phase', db.Text, nullable=True)
    # Song pool snapshot for this playthrough
    used_song_ids_json = db.Column('used_song_ids', db.Text, nullable=True)
    song_pool_json = db.Column('song_pool', db.Text, nullable=True)
    using_fallback_pool = db.Column(db.Boolean, nullable=False, default=False)
    games_played = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False, default=now_ts)
    updated_at = db.Column(db.Float, nullable=False, default=now_ts)

    players = db.relationship('Player', back_populates='game_session', cascade='all, delete-orphan',
                              order_by='Player.id')
    turns = db.relationship('Turn', back_populates='game_session', cascade='all, delete-orphan',
                            order_by='Turn.id')
    histories = db.relationship('GameHistory', back_populates='game_session', cascade='all, delete-orphan',
                                order_by='GameHistory.id')

    @property
    def turn_order(self):
        return load_json(self.turn_order_json, [])

    @turn_order.setter
    def turn_order(self, value):
        self.turn_order_json = dump_json(list(value)) if value else None

    @property
    def current_song(self):
        return load_json(self.current_song_json, None)

    @current_song.setter
    def current_song(self, value):
        self.current_song_json = dump_json(value)

    @property
    def used_song_ids(self):
        return load_json(self.used_song_ids_json, [])

    @used_song_ids.setter
    def used_song_ids(self, value):
        self.used_song_ids_json = dump_json(list(value))

    @property
    def song_pool(self):
        return load_json(self.song_pool_json, [])

    @song_pool.setter
    def song_pool(self, value):
        self.song_pool_json = dump_json(list(value)) if value is not None else None

    @property
    def steal(self):
        return phases.from_dict(load_json(self.steal_phase_json, None))

    @steal.setter
    def steal(self, value):
        self.steal_phase_json = dump_json(phases.to_dict(value))

    @property
    def current_player_id(self):
        order = self.turn_order
        idx = self.current_turn_index
        if idx is None or not 0 <= idx < len(order):
            return None
        return order[idx]

    def player(self, player_id):
        return next((p for p in self.players if p.id == player_id), None)

class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    game_session_id = db.Column(db.Integer, db.ForeignKey('game_session.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    name = db.Column(db.String(50), nullable=False)
    avatar = db.Column(db.String(10), nullable=False)
    tokens = db.Column(db.Integer, nullable=False, default=2)
    timeline_json = db.Column('timeline', db.Text, nullable=True)  # JSON list, append order
    is_host = db.Column(db.Boolean, nullable=False, default=False)
    last_seen_at = db.Column(db.Float, nullable=False, default=now_ts)
    wins = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False, default=now_ts)
    game_session = db.relationship('GameSession', back_populates='players')

    @property
    def timeline(self):
        return load_json(self.timeline_json, [])

    @timeline.setter
    def timeline(self, value):
        self.timeline_json = dump_json(list(value))

    def is_connected(self, now, timeout):
        return (now - (self.last_seen_at or 0)) < timeout

    def to_dict(self, now=None, timeout=None):
        data = {
            'id': self.id,
            'name': self.name,
            'avatar': self.avatar,
            'is_host': self.is_host,
            'tokens': self.tokens,
            'timeline': self.timeline,
            'wins': self.wins,
        }
        if now is not None and timeout is not None:
            data['is_connected'] = self.is_connected(now, timeout)
        return data

class Turn(db.Model):
    """One resolved placement. Written once, never updated."""
    __tablename__ = 'turn'
    id = db.Column(db.Integer, primary_key=True)
    game_session_id = db.Column(db.Integer, db.ForeignKey('game_session.id', ondelete='CASCADE'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    game_number = db.Column(db.Integer, nullable=False, default=1)
    round_number = db.Column(db.Integer, nullable=False)
    song_id = db.Column(db.String(255), nullable=False)
    song_name = db.Column(db.String(500), nullable=True)
    song_artist = db.Column(db.String(500), nullable=True)
    song_year = db.Column(db.Integer, nullable=False)
    placement_index = db.Column(db.Integer, nullable=True)
    was_correct = db.Column(db.Boolean, nullable=True)
    guessed_name = db.Column(db.String(500), nullable=True)
    guessed_artist = db.Column(db.String(500), nullable=True)
    guess_was_correct = db.Column(db.Boolean, nullable=True)
    steal_attempts_json = db.Column('steal_attempts', db.Text, nullable=True)
    recipient_id = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.Float, nullable=False, default=now_ts)
    game_session = db.relationship('GameSession', back_populates='turns')

    @property
    def steal_attempts(self):
        return load_json(self.steal_attempts_json, [])

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'game_number': self.game_number,
            'round_number': self.round_number,
            'song': {
                'song_id': self.song_id,
                'name': self.song_name,
                'artist': self.song_artist,
                'year': self.song_year,
            },
            'placement_index': self.placement_index,
            'was_correct': self.was_correct,
            'guessed_name': self.guessed_name,
            'guessed_artist': self.guessed_artist,
            'guess_was_correct': self.guess_was_correct,
            'steal_attempts': self.steal_attempts,
            'recipient_id': self.recipient_id,
            'completed_at': self.completed_at,
        }

class GameHistory(db.Model):
    """End-of-game aggregate, one per finished playthrough."""
    __tablename__ = 'game_history'
    id = db.Column(db.Integer, primary_key=True)
    game_session_id = db.Column(db.Integer, db.ForeignKey('game_session.id', ondelete='CASCADE'), nullable=False)
    host_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    game_number = db.Column(db.Integer, nullable=False)
    winner_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(32), nullable=False)  # songs_to_win, pool_exhausted
    rounds_played = db.Column(db.Integer, nullable=False)
    final_standings_json = db.Column('final_standings', db.Text, nullable=True)
    completed_at = db.Column(db.Float, nullable=False, default=now_ts)
    game_session = db.relationship('GameSession', back_populates='histories')

    @property
    def final_standings(self):
        return load_json(self.final_standings_json, [])

    def to_dict(self):
        return {
            'id': self.id,
            'game_number': self.game_number,
            'winner_id': self.winner_id,
            'reason': self.reason,
            'rounds_played': self.rounds_played,
            'final_standings': self.final_standings,
            'completed_at': self.completed_at,
        }
