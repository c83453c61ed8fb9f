from datetime import date, datetime

import pytest

from therapy_backend.scheduling.errors import MalformedRecurrence
from therapy_backend.scheduling.recurrence import (
    WeeklyRecurrence,
    build_recurrence,
    expand_recurrence,
    parse_recurrence,
    recurrence_from_legacy,
    recurring_applies,
    weekday_index,
)

MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 6)


def test_weekday_index_counts_from_sunday() -> None:
    assert weekday_index(SUNDAY) == 0
    assert weekday_index(MONDAY) == 1
    assert weekday_index(date(2030, 1, 12)) == 6


def test_expand_recurrence_reads_day_abbreviations() -> None:
    assert expand_recurrence('weekly:Mon,Wed,Fri') == frozenset({1, 3, 5})
    assert expand_recurrence(' weekly:Sun ') == frozenset({0})


@pytest.mark.parametrize('descriptor', ['', None, 'daily:Mon', 'weekly:Monday', 'weekly:', 'weekly:Mon,,Tue'])
def test_expand_recurrence_is_empty_for_malformed_descriptors(descriptor) -> None:
    assert expand_recurrence(descriptor) == frozenset()


def test_malformed_descriptor_matches_no_day() -> None:
    recurrence = parse_recurrence('weekly:Funday')

    assert recurrence is not None
    assert not any(recurrence.includes(date(2030, 1, day)) for day in range(6, 13))


def test_parse_recurrence_returns_none_for_one_off_records() -> None:
    assert parse_recurrence(None) is None


def test_build_recurrence_orders_and_deduplicates() -> None:
    assert build_recurrence([5, 1, 1, 3]) == 'weekly:Mon,Wed,Fri'


def test_build_recurrence_rejects_out_of_range_weekday() -> None:
    with pytest.raises(MalformedRecurrence):
        build_recurrence([7])


def test_descriptor_survives_a_round_trip() -> None:
    recurrence = WeeklyRecurrence(weekdays=frozenset({0, 6}))

    assert parse_recurrence(recurrence.to_descriptor()) == recurrence


def test_recurrence_from_legacy_columns() -> None:
    assert recurrence_from_legacy(1, True) == 'weekly:Mon'
    assert recurrence_from_legacy(1, False) is None
    assert recurrence_from_legacy(None, True) is None


def test_recurring_applies_on_matching_weekday() -> None:
    recurrence = WeeklyRecurrence(weekdays=frozenset({1}))

    assert recurring_applies(recurrence, None, MONDAY, today=date(2026, 1, 1))
    assert not recurring_applies(recurrence, None, SUNDAY, today=date(2026, 1, 1))


def test_recurring_record_does_not_rewrite_history() -> None:
    recurrence = WeeklyRecurrence(weekdays=frozenset({1}))
    created_at = datetime(2030, 1, 10, 9, 0)

    assert not recurring_applies(recurrence, created_at, MONDAY, today=date(2030, 1, 20))
    assert recurring_applies(recurrence, created_at, date(2030, 1, 14), today=date(2030, 1, 20))


def test_recurring_record_applies_to_future_dates_before_creation() -> None:
    recurrence = WeeklyRecurrence(weekdays=frozenset({1}))
    created_at = datetime(2030, 1, 10, 9, 0)

    assert recurring_applies(recurrence, created_at, MONDAY, today=date(2030, 1, 1))
