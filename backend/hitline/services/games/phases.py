"""Steal-phase descriptor embedded in a session.

A session is in exactly one of ``NoSteal``, ``DecidePhase`` or ``PlacePhase``;
each variant only carries the fields that make sense for it. Variants are
immutable, transitions build a new value with ``dataclasses.replace``.
"""
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Tuple, Union


@dataclass(frozen=True)
class Guess:
    name: Optional[str] = None
    artist: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.name) and bool(self.artist)

    def to_dict(self):
        return {'name': self.name, 'artist': self.artist}

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(name=data.get('name'), artist=data.get('artist'))


@dataclass(frozen=True)
class StealAttempt:
    player_id: int
    player_name: str
    placement_index: int
    timestamp: float  # server clock at commit

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'player_name': self.player_name,
            'placement_index': self.placement_index,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            player_id=int(data['player_id']),
            player_name=data.get('player_name', ''),
            placement_index=int(data['placement_index']),
            timestamp=float(data['timestamp']),
        )


@dataclass(frozen=True)
class NoSteal:
    tag: ClassVar[Optional[str]] = None


@dataclass(frozen=True)
class DecidePhase:
    tag: ClassVar[str] = 'decide'

    ends_at: float
    active_placement: int
    guess: Optional[Guess] = None
    eligible: Tuple[int, ...] = ()
    stealers: Tuple[int, ...] = ()
    skippers: Tuple[int, ...] = ()

    def has_decided(self, player_id: int) -> bool:
        return player_id in self.stealers or player_id in self.skippers

    def all_decided(self) -> bool:
        return all(self.has_decided(pid) for pid in self.eligible)


@dataclass(frozen=True)
class PlacePhase:
    tag: ClassVar[str] = 'place'

    ends_at: float
    active_placement: int
    guess: Optional[Guess] = None
    stealers: Tuple[int, ...] = ()
    attempts: Tuple[StealAttempt, ...] = field(default_factory=tuple)

    def attempt_by(self, player_id: int) -> Optional[StealAttempt]:
        return next((a for a in self.attempts if a.player_id == player_id), None)

    def slot_taken(self, placement_index: int) -> bool:
        return any(a.placement_index == placement_index for a in self.attempts)


StealPhase = Union[NoSteal, DecidePhase, PlacePhase]
NO_STEAL = NoSteal()


def to_dict(phase: StealPhase):
    if isinstance(phase, DecidePhase):
        return {
            'phase': phase.tag,
            'ends_at': phase.ends_at,
            'active_placement': phase.active_placement,
            'guess': phase.guess.to_dict() if phase.guess else None,
            'eligible': list(phase.eligible),
            'stealers': list(phase.stealers),
            'skippers': list(phase.skippers),
        }
    if isinstance(phase, PlacePhase):
        return {
            'phase': phase.tag,
            'ends_at': phase.ends_at,
            'active_placement': phase.active_placement,
            'guess': phase.guess.to_dict() if phase.guess else None,
            'stealers': list(phase.stealers),
            'attempts': [a.to_dict() for a in phase.attempts],
        }
    return None


def from_dict(data) -> StealPhase:
    if not data:
        return NO_STEAL
    tag = data.get('phase')
    common = {
        'ends_at': float(data['ends_at']),
        'active_placement': int(data['active_placement']),
        'guess': Guess.from_dict(data.get('guess')),
    }
    if tag == DecidePhase.tag:
        return DecidePhase(
            eligible=tuple(data.get('eligible') or ()),
            stealers=tuple(data.get('stealers') or ()),
            skippers=tuple(data.get('skippers') or ()),
            **common,
        )
    if tag == PlacePhase.tag:
        return PlacePhase(
            stealers=tuple(data.get('stealers') or ()),
            attempts=tuple(StealAttempt.from_dict(a) for a in data.get('attempts') or ()),
            **common,
        )
    raise ValueError(f"Unknown steal phase: {tag!r}")
