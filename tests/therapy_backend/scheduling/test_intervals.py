from datetime import datetime, time

import pytest

from therapy_backend.scheduling.errors import InvalidTimeFormat
from therapy_backend.scheduling.intervals import (
    contains,
    minutes_to_time,
    overlaps,
    split_around,
    subtract_interval,
    to_minutes,
)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        ('00:00', 0),
        ('09:30', 570),
        ('17:00:00', 1020),
        ('23:59:59', 1439),
        (time(12, 15), 735),
        (datetime(2030, 1, 7, 8, 45), 525),
    ],
)
def test_to_minutes_accepts_supported_shapes(value, expected: int) -> None:
    assert to_minutes(value) == expected


@pytest.mark.parametrize('value', ['9', '24:00', '12:60', 'ab:cd', '12:00:00:00', '', None])
def test_to_minutes_rejects_malformed_input(value) -> None:
    with pytest.raises(InvalidTimeFormat):
        to_minutes(value)


def test_minutes_to_time_formats_and_clamps_end_of_day() -> None:
    assert minutes_to_time(0) == '00:00:00'
    assert minutes_to_time(555) == '09:15:00'
    assert minutes_to_time(1438) == '23:58:00'
    assert minutes_to_time(1439) == '23:59:59'
    assert minutes_to_time(1440) == '23:59:59'


def test_overlaps_is_half_open() -> None:
    assert overlaps(540, 600, 599, 660)
    assert not overlaps(540, 600, 600, 660)


@pytest.mark.parametrize(
    ('a', 'b'),
    [
        ((540, 600), (570, 630)),
        ((540, 600), (600, 660)),
        ((540, 1020), (720, 780)),
        ((0, 10), (1000, 1100)),
    ],
)
def test_overlaps_is_symmetric(a: tuple[int, int], b: tuple[int, int]) -> None:
    assert overlaps(*a, *b) == overlaps(*b, *a)


def test_contains_includes_equal_bounds() -> None:
    assert contains((540, 1020), (540, 1020))
    assert contains((540, 1020), (720, 780))
    assert not contains((540, 1020), (500, 600))


def test_subtract_interval_splits_and_drops() -> None:
    assert subtract_interval([(540, 1020)], (720, 780)) == [(540, 720), (780, 1020)]
    assert subtract_interval([(720, 780)], (700, 800)) == []
    assert subtract_interval([(540, 600)], (600, 660)) == [(540, 600)]


def test_split_around_ignores_occluder_order() -> None:
    occluders = [(780, 840), (720, 780)]

    assert split_around((540, 1020), occluders) == [(540, 720), (840, 1020)]


@pytest.mark.parametrize(
    'occluders',
    [
        [(720, 780)],
        [(500, 600), (900, 1100)],
        [(600, 660), (630, 700), (1000, 1020)],
        [],
    ],
)
def test_split_pieces_and_occluders_reconstruct_original_range(occluders: list[tuple[int, int]]) -> None:
    span = (540, 1020)
    pieces = split_around(span, occluders)

    covered = set()
    for start, end in pieces:
        minutes = set(range(start, end))
        assert not covered & minutes
        covered |= minutes

    occluded = set()
    for start, end in occluders:
        occluded |= set(range(max(start, span[0]), min(end, span[1])))

    assert not covered & occluded
    assert covered | occluded == set(range(*span))
