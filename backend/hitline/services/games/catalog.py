"""Where a session's songs come from.

The offline catalog doubles as the fallback pool shared by every session.
A host may point a session at a Spotify playlist; any failure there degrades
to the default playlist and then to the offline catalog.
"""
import re
from typing import Callable, List, Optional, Tuple

import requests
from flask import current_app


def _song(song_id, name, artist, year):
    return {'song_id': song_id, 'name': name, 'artist': artist, 'year': year,
            'uri': f'spotify:track:{song_id}'}


FALLBACK_SONGS: List[dict] = [
    _song('7tFiyTwD0nx5a1eklYtX2J', 'Bohemian Rhapsody', 'Queen', 1975),
    _song('40riOy7x9W7GXjyGp4pjAv', 'Hotel California', 'Eagles', 1977),
    _song('2LlQb7Uoj1kKyGhlkBf9aC', 'Thriller', 'Michael Jackson', 1982),
    _song('7o2CTH4ctstm8TNelqjb51', "Sweet Child O' Mine", "Guns N' Roses", 1987),
    _song('5ghIJDpPoe3CfHMGu71E6T', 'Smells Like Teen Spirit', 'Nirvana', 1991),
    _song('5wj4E6IsrVtn8IBJQOd0Cl', 'Wonderwall', 'Oasis', 1995),
    _song('6vQN2a9QSgWcm74KEZYfDL', 'Crazy in Love', 'Beyoncé', 2003),
    _song('4OSBTYWVwsQhGLF9NHvIbR', 'Rolling in the Deep', 'Adele', 2010),
    _song('32OlwWuMpZ6b0aN2RZOeMS', 'Uptown Funk', 'Bruno Mars', 2014),
    _song('0VjIjW4GlUZAMYd2vXMi3b', 'Blinding Lights', 'The Weeknd', 2019),
    _song('7J1uxwnxfQLu4APicE5Rnj', 'Billie Jean', 'Michael Jackson', 1983),
    _song('1z3ugFmUKoCzGsI6jdY4Ci', 'Like a Prayer', 'Madonna', 1989),
    _song('1v7L65Lzy0j0vdpRjJewt1', 'Lose Yourself', 'Eminem', 2002),
    _song('7qiZfU4dY1lWllzX7mPBI3', 'Shape of You', 'Ed Sheeran', 2017),
    _song('2Fxmhks0bxGSBdJ92vM42m', 'bad guy', 'Billie Eilish', 2019),
    _song('7s25THrKz86DM225dOYwnr', 'Respect', 'Aretha Franklin', 1967),
    _song('3mRM4NM8iO7UBqrSigCQFH', "Stayin' Alive", 'Bee Gees', 1977),
    _song('2WfaOiMkCvy7F5fcp2zZ8L', 'Take On Me', 'a-ha', 1985),
    _song('3CeCwcJO8CXqz3y7u7rqJR', 'Vogue', 'Madonna', 1990),
    _song('3LOpEypkiAME5oAuwdB0bI', 'No Scrubs', 'TLC', 1999),
]

# Only trailing suffixes are stripped, so titles like "Live and Let Die" survive.
_TITLE_SUFFIXES = [
    re.compile(r"\s*[-–]\s*(?:\d{4}\s*)?(?:Remaster(?:ed)?|Remastered(?:\s+\d{4})?)$", re.I),
    re.compile(r"\s*[(\[](?:\d{4}\s+)?Remaster(?:ed)?(?:\s+\d{4})?[)\]]$", re.I),
    re.compile(r"\s*[(\[](?:Deluxe|Special|Anniversary|Expanded|Extended|Collector'?s?|Legacy|Ultimate|Super Deluxe)"
               r"\s*(?:Edition|Version)?[)\]]$", re.I),
    re.compile(r"\s*[-–]\s*(?:Deluxe|Bonus Track)(?:\s+(?:Edition|Version))?$", re.I),
    re.compile(r"\s*[(\[](?:Live|Acoustic|Unplugged)(?:\s+(?:at\s+.+|from\s+.+|Version|Recording))?[)\]]$", re.I),
    re.compile(r"\s*[-–]\s*(?:Live|Acoustic)\s*(?:Version)?$", re.I),
    re.compile(r"\s*[(\[](?:Radio\s+Edit|Single\s+Version|Album\s+Version|Extended\s+Mix|Club\s+Mix|Edit)[)\]]$", re.I),
    re.compile(r"\s*[(\[](?:feat\.?|ft\.?|featuring|with)\s+[^)\]]+[)\]]$", re.I),
    re.compile(r"\s*[-–]\s*(?:feat\.?|ft\.?|featuring)\s+.+$", re.I),
    re.compile(r"\s*[(\[](?:Mono|Stereo)(?:\s+(?:Mix|Version))?[)\]]$", re.I),
]

_PLAYLIST_PATTERNS = [
    re.compile(r"spotify\.com/playlist/([a-zA-Z0-9]+)"),
    re.compile(r"spotify:playlist:([a-zA-Z0-9]+)"),
]


class CatalogError(Exception):
    pass


def clean_song_title(name: str) -> str:
    """Strip remaster/edition/live/feat. suffixes, repeatedly; never returns ''."""
    cleaned = name.strip()
    changed = True
    while changed:
        changed = False
        for pattern in _TITLE_SUFFIXES:
            stripped = pattern.sub('', cleaned).strip()
            if stripped != cleaned:
                cleaned = stripped
                changed = True
    return cleaned or name


def extract_playlist_id(url: str) -> Optional[str]:
    for pattern in _PLAYLIST_PATTERNS:
        match = pattern.search(url or '')
        if match:
            return match.group(1)
    return None


def fetch_playlist_tracks(playlist_id: str, access_token: str) -> List[dict]:
    """Page through a playlist, keeping tracks that have an id, name, uri and release year."""
    cfg = current_app.config
    url = f"{cfg['SPOTIFY_API_BASE']}/playlists/{playlist_id}/tracks?limit=100"
    tracks: List[dict] = []
    while url:
        r = requests.get(url, headers={'Authorization': f'Bearer {access_token}'},
                         timeout=cfg['SPOTIFY_TIMEOUT_SEC'])
        if r.status_code == 404:
            raise CatalogError('Playlist not found')
        if not r.ok:
            raise CatalogError(f'Failed to fetch playlist tracks (HTTP {r.status_code})')
        data = r.json()
        for item in data.get('items') or []:
            track = item.get('track') or {}
            release_date = (track.get('album') or {}).get('release_date') or ''
            try:
                year = int(release_date.split('-')[0])
            except ValueError:
                continue
            if not (track.get('id') and track.get('name') and track.get('uri')):
                continue
            artists = ', '.join(a['name'] for a in track.get('artists') or []) or 'Unknown'
            tracks.append({
                'song_id': track['id'],
                'name': clean_song_title(track['name']),
                'artist': artists,
                'year': year,
                'uri': track['uri'],
            })
        url = data.get('next')
    return tracks


def enrich_years(songs: List[dict], lookup: Callable[[str], Optional[int]]) -> List[dict]:
    """Replace catalog years with an earlier original-release year where ``lookup`` knows one.

    The lookup is an external service; when it fails the catalog year stands.
    """
    enriched = []
    for song in songs:
        try:
            original = lookup(song['song_id'])
        except Exception as exc:
            current_app.logger.warning(f"[year-lookup] song={song['song_id']} failed: {exc}")
            original = None
        if original is not None and original < song['year']:
            song = dict(song, year=original)
        enriched.append(song)
    return enriched


def load_song_pool(playlist_url: Optional[str], access_token: Optional[str],
                   year_lookup: Optional[Callable[[str], Optional[int]]] = None) -> Tuple[List[dict], Optional[str], bool]:
    """Songs for a new playthrough as ``(songs, warning, is_fallback)``."""
    songs: List[dict] = []
    warning = None
    default_id = current_app.config['DEFAULT_PLAYLIST_ID']

    if access_token:
        playlist_id = extract_playlist_id(playlist_url) if playlist_url else default_id
        if playlist_id:
            try:
                songs = fetch_playlist_tracks(playlist_id, access_token)
                if 0 < len(songs) < 100:
                    warning = f'Playlist has only {len(songs)} tracks (recommended: 100+)'
            except (CatalogError, requests.RequestException) as exc:
                current_app.logger.warning(f"[catalog] playlist={playlist_id} failed: {exc}")
                if playlist_url and playlist_id != default_id:
                    try:
                        songs = fetch_playlist_tracks(default_id, access_token)
                        warning = 'Custom playlist failed, using default playlist'
                    except (CatalogError, requests.RequestException) as exc2:
                        current_app.logger.warning(f"[catalog] default playlist failed: {exc2}")

    if not songs:
        return list(FALLBACK_SONGS), 'Using offline song library', True

    if year_lookup is not None:
        songs = enrich_years(songs, year_lookup)
    return songs, warning, False
