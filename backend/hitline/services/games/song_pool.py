"""Song drawing for one playthrough.

Songs are plain dicts (``song_id``, ``name``, ``artist``, ``year``, ``uri``)
so they can be stored on the session as JSON without conversion. The pool
never mutates a song; "used" lives in the session-side id set.
"""
import random
from typing import Iterable, List, Optional, Tuple


class SongPool:
    def __init__(self, songs: Iterable[dict], fallback: Iterable[dict] = (),
                 used: Iterable[str] = (), fallback_engaged: bool = False):
        self.songs: List[dict] = list(songs)
        self.fallback: List[dict] = list(fallback)
        self.used = set(used)
        self.fallback_engaged = fallback_engaged

    @classmethod
    def for_session(cls, game, fallback):
        return cls(game.song_pool, fallback, game.used_song_ids, game.using_fallback_pool)

    def available(self) -> List[dict]:
        source = self.fallback if self.fallback_engaged else self.songs
        return [s for s in source if s['song_id'] not in self.used]

    def draw(self) -> Optional[dict]:
        """A random unused song, or ``None`` once every source is spent.

        Running dry on the primary list switches to the fallback list for
        good; the switch is never undone.
        """
        candidates = self.available()
        if not candidates and not self.fallback_engaged:
            self.fallback_engaged = True
            candidates = self.available()
        if not candidates:
            return None
        song = random.choice(candidates)
        self.used.add(song['song_id'])
        return song

    def deal(self, hands: int) -> Optional[Tuple[List[dict], dict]]:
        """Shuffle once, then hand out one song per player and the first mystery song.

        Returns ``None`` when there are not enough songs for everyone.
        """
        self.songs = random.sample(self.songs, len(self.songs))
        dealt: List[dict] = []
        for song in self.songs:
            if len(dealt) > hands:
                break
            if song['song_id'] in self.used:
                continue
            self.used.add(song['song_id'])
            dealt.append(song)
        while len(dealt) <= hands:
            song = self.draw()
            if song is None:
                return None
            dealt.append(song)
        return dealt[:hands], dealt[hands]
