"""Merge planning for overlapping availability or time-off entries.

Adding a range that overlaps an existing one of the same kind should extend
the existing entry rather than pile up a redundant duplicate. Recurring
entries are compared with recurring entries sharing a weekday; date-specific
entries with date-specific entries on the same dates.

Recurring merges are worked out per weekday: only the weekdays the new entry
names are widened, and an existing entry's other weekdays keep their hours.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel

from therapy_backend.scheduling.intervals import overlaps
from therapy_backend.scheduling.records import (
    AvailabilityWindow,
    TimeOffBlock,
    comparable,
    normalize_availability,
    normalize_records,
    normalize_time_off,
    wall_clock,
)
from therapy_backend.scheduling.recurrence import WeeklyRecurrence

logger = logging.getLogger(__name__)

_NORMALIZERS = {
    AvailabilityWindow: normalize_availability,
    TimeOffBlock: normalize_time_off,
}


class MergedRange(BaseModel):
    start_time: datetime
    end_time: datetime
    recurrence: WeeklyRecurrence | None = None
    reason: str | None = None


class MergePlan(BaseModel):
    """Rows that replace ``replaced_ids``; the first holds the new entry."""

    ranges: list[MergedRange]
    replaced_ids: list[str]


def _same_class_overlap(candidate: AvailabilityWindow | TimeOffBlock, existing: AvailabilityWindow | TimeOffBlock) -> bool:
    if candidate.is_recurring != existing.is_recurring:
        return False

    if candidate.is_recurring:
        if not candidate.recurrence.weekdays & existing.recurrence.weekdays:
            return False
        return overlaps(*candidate.span, *existing.span)

    candidate_start, existing_end = comparable(candidate.start_time, existing.end_time)
    existing_start, candidate_end = comparable(existing.start_time, candidate.end_time)
    return candidate_start < existing_end and existing_start < candidate_end


def _rebase(value: datetime, source_start: datetime, anchor: date) -> datetime:
    offset = value.date() - source_start.date()
    return datetime.combine(anchor + offset, value.timetz())


def merge_ranges(records: list[AvailabilityWindow | TimeOffBlock]) -> tuple[datetime, datetime]:
    """Return the superset ``(start, end)`` of ``records``.

    Recurring entries are compared by time of day and the result is anchored
    on the first record's date.
    """
    first = records[0]
    if not first.is_recurring:
        earliest = min(records, key=lambda record: wall_clock(record.start_time))
        latest = max(records, key=lambda record: wall_clock(record.end_time))
        return earliest.start_time, latest.end_time

    anchor = first.start_time.date()
    earliest = min(records, key=lambda record: record.span[0])
    latest = max(records, key=lambda record: record.span[1])
    return (
        _rebase(earliest.start_time, earliest.start_time, anchor),
        _rebase(latest.end_time, latest.start_time, anchor),
    )


def _merged_reason(records: list[AvailabilityWindow | TimeOffBlock]) -> str | None:
    return next((record.reason for record in records if isinstance(record, TimeOffBlock) and record.reason), None)


def _recurring_ranges(
    candidate: AvailabilityWindow | TimeOffBlock,
    overlapping: list[AvailabilityWindow | TimeOffBlock],
) -> list[MergedRange]:
    # Weekdays that end up with the same hours share one row.
    grouped: dict[tuple[datetime, datetime, str | None], set[int]] = {}
    for weekday in sorted(candidate.recurrence.weekdays):
        members = [candidate] + [record for record in overlapping if weekday in record.recurrence.weekdays]
        start_time, end_time = merge_ranges(members)
        grouped.setdefault((start_time, end_time, _merged_reason(members)), set()).add(weekday)

    ranges = [
        MergedRange(
            start_time=start_time,
            end_time=end_time,
            recurrence=WeeklyRecurrence(weekdays=frozenset(weekdays)),
            reason=reason,
        )
        for (start_time, end_time, reason), weekdays in grouped.items()
    ]

    for record in overlapping:
        untouched = record.recurrence.weekdays - candidate.recurrence.weekdays
        if untouched:
            ranges.append(
                MergedRange(
                    start_time=record.start_time,
                    end_time=record.end_time,
                    recurrence=WeeklyRecurrence(weekdays=untouched),
                    reason=_merged_reason([record]),
                )
            )

    return ranges


def plan_merge(candidate: AvailabilityWindow | TimeOffBlock, existing: Iterable[Any]) -> MergePlan | None:
    """Plan how ``candidate`` folds into the overlapping entries of ``existing``.

    Returns None when nothing of the same kind and recurrence class overlaps,
    in which case the candidate can be inserted as is.
    """
    normalizer = _NORMALIZERS[type(candidate)]
    overlapping = [
        record
        for record in normalize_records(existing, normalizer)
        if record.id != candidate.id and _same_class_overlap(candidate, record)
    ]
    if not overlapping:
        return None

    if candidate.is_recurring:
        ranges = _recurring_ranges(candidate, overlapping)
    else:
        start_time, end_time = merge_ranges([candidate, *overlapping])
        ranges = [
            MergedRange(
                start_time=start_time,
                end_time=end_time,
                reason=_merged_reason([candidate, *overlapping]),
            )
        ]

    logger.info('Merging %s into %s', candidate.id, [record.id for record in overlapping])
    return MergePlan(ranges=ranges, replaced_ids=[record.id for record in overlapping])
