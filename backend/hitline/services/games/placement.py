from typing import Mapping, Sequence


def sort_timeline(timeline: Sequence[Mapping]) -> list:
    """Timeline entries ordered by year; equal years keep their append order."""
    return sorted(timeline, key=lambda song: song['year'])


def is_placement_correct(sorted_timeline: Sequence[Mapping], year: int, index: int) -> bool:
    """Whether ``year`` fits at ``index`` of a year-sorted timeline.

    Boundaries are inclusive on both sides, so a song from the same year as a
    neighbour is accepted either before or after it. An empty timeline
    accepts any index, and an index past the end means "after the last song".
    """
    if not sorted_timeline:
        return True
    if index <= 0:
        return year <= sorted_timeline[0]['year']
    if index >= len(sorted_timeline):
        return year >= sorted_timeline[-1]['year']
    before = sorted_timeline[index - 1]['year']
    after = sorted_timeline[index]['year']
    return before <= year <= after
