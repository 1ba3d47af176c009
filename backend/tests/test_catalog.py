from unittest.mock import MagicMock, patch

import pytest
import requests

from hitline.services.games.catalog import (
    FALLBACK_SONGS, clean_song_title, enrich_years, extract_playlist_id, load_song_pool,
)


def _response(status=200, payload=None):
    res = MagicMock()
    res.status_code = status
    res.ok = 200 <= status < 300
    res.json.return_value = payload or {}
    return res


def _track(track_id, name, year, artists=('Band',)):
    return {'track': {
        'id': track_id,
        'name': name,
        'uri': f'spotify:track:{track_id}',
        'artists': [{'name': a} for a in artists],
        'album': {'release_date': f'{year}-01-01' if year else ''},
    }}


@pytest.mark.parametrize('raw, cleaned', [
    ('Bohemian Rhapsody - Remastered 2011', 'Bohemian Rhapsody'),
    ('Hey Jude - 2015 Remaster', 'Hey Jude'),
    ('Hallelujah (Live at Wembley)', 'Hallelujah'),
    ('Bad Romance (feat. Someone)', 'Bad Romance'),
    ('Thriller (Deluxe Edition) (Remastered)', 'Thriller'),
    ('Live and Let Die', 'Live and Let Die'),
    ('(Remastered)', '(Remastered)'),
])
def test_clean_song_title(raw, cleaned):
    assert clean_song_title(raw) == cleaned


def test_extract_playlist_id():
    assert extract_playlist_id('https://open.spotify.com/playlist/abc123?si=x') == 'abc123'
    assert extract_playlist_id('spotify:playlist:XYZ9') == 'XYZ9'
    assert extract_playlist_id('https://example.com') is None


def test_offline_catalog_without_token(app_context):
    songs, warning, is_fallback = load_song_pool(None, None)
    assert is_fallback is True
    assert songs == FALLBACK_SONGS
    assert warning


def test_fetch_pages_and_skips_tracks_without_year(app_context):
    pages = [
        _response(payload={'items': [_track('a', 'One - Remastered', 1971)], 'next': 'https://next'}),
        _response(payload={'items': [_track('b', 'Two', None), _track('c', 'Three', 1999, ('X', 'Y'))], 'next': None}),
    ]
    with patch('hitline.services.games.catalog.requests.get', side_effect=pages) as get:
        songs, warning, is_fallback = load_song_pool(None, 'token')
    assert get.call_count == 2
    assert get.call_args_list[0].kwargs['timeout'] == app_context.config['SPOTIFY_TIMEOUT_SEC']
    assert is_fallback is False
    assert [(s['song_id'], s['name'], s['artist'], s['year']) for s in songs] == [
        ('a', 'One', 'Band', 1971),
        ('c', 'Three', 'X, Y', 1999),
    ]
    assert 'only 2 tracks' in warning


def test_custom_playlist_failure_uses_default(app_context):
    responses = [_response(status=404), _response(payload={'items': [_track('d', 'Four', 1980)]})]
    with patch('hitline.services.games.catalog.requests.get', side_effect=responses) as get:
        songs, warning, is_fallback = load_song_pool('spotify:playlist:custom1', 'token')
    assert app_context.config['DEFAULT_PLAYLIST_ID'] in get.call_args_list[1].args[0]
    assert [s['song_id'] for s in songs] == ['d']
    assert warning == 'Custom playlist failed, using default playlist'
    assert is_fallback is False


def test_network_failure_degrades_to_offline(app_context):
    with patch('hitline.services.games.catalog.requests.get', side_effect=requests.ConnectionError('down')):
        songs, warning, is_fallback = load_song_pool('spotify:playlist:custom1', 'token')
    assert is_fallback is True
    assert songs == FALLBACK_SONGS


def test_year_enrichment_only_moves_years_earlier(app_context):
    songs = [
        {'song_id': 'a', 'year': 2011},
        {'song_id': 'b', 'year': 1990},
        {'song_id': 'c', 'year': 2000},
    ]

    def lookup(song_id):
        if song_id == 'c':
            raise requests.Timeout('slow')
        return {'a': 1975, 'b': 1995}[song_id]

    enriched = enrich_years(songs, lookup)
    assert [s['year'] for s in enriched] == [1975, 1990, 2000]
    assert songs[0]['year'] == 2011
