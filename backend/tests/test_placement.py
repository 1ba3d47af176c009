import pytest

from hitline.services.games.placement import is_placement_correct, sort_timeline


def _tl(*years):
    return [{'year': y} for y in years]


@pytest.mark.parametrize('index', [0, 1, 7])
def test_empty_timeline_accepts_any_index(index):
    assert is_placement_correct([], 1999, index)


@pytest.mark.parametrize('year, index, expected', [
    (1970, 0, True),
    (1980, 0, True),   # tie with the first song
    (1981, 0, False),
    (1985, 1, True),
    (1980, 1, True),   # tie with the left neighbour
    (1990, 1, True),   # tie with the right neighbour
    (1979, 1, False),
    (1991, 1, False),
    (2000, 3, True),
    (2000, 2, True),
    (1999, 3, False),
    (2005, 10, True),  # past the end means after the last song
])
def test_boundaries_are_inclusive(year, index, expected):
    assert is_placement_correct(_tl(1980, 1990, 2000), year, index) is expected


def test_negative_index_is_treated_as_front():
    assert is_placement_correct(_tl(1980), 1970, -3)
    assert not is_placement_correct(_tl(1980), 1990, -3)


def test_sort_keeps_append_order_for_equal_years():
    timeline = [{'year': 1990, 'id': 'a'}, {'year': 1980, 'id': 'b'}, {'year': 1990, 'id': 'c'}]
    assert [s['id'] for s in sort_timeline(timeline)] == ['b', 'a', 'c']
