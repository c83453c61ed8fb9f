"""Conflict reports for a proposed appointment.

The checker never refuses a booking. It reports what the proposal collides
with and how strongly, and leaves the decision (and any override) to the
caller.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel

from therapy_backend.scheduling.errors import InvalidTimeFormat
from therapy_backend.scheduling.intervals import MINUTES_PER_DAY, Span, overlaps, to_minutes
from therapy_backend.scheduling.records import (
    Appointment,
    AppointmentStatus,
    TimeOffBlock,
    comparable,
    normalize_appointment,
    normalize_availability,
    normalize_records,
    normalize_time_off,
    parse_timestamp,
)
from therapy_backend.scheduling.recurrence import DAY_NAMES, weekday_index
from therapy_backend.scheduling.timeline import select_availability, select_time_off

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class AvailabilityConflict(BaseModel):
    type: Literal['outside_hours'] = 'outside_hours'
    message: str
    severity: Severity


class TimeOffConflict(BaseModel):
    type: Literal['time_off'] = 'time_off'
    message: str
    severity: Severity
    time_off_id: str
    reason: str | None = None


class AppointmentConflict(BaseModel):
    type: Literal['appointment'] = 'appointment'
    message: str
    severity: Severity
    conflicting_appointment_ids: list[str]


class ConflictReport(BaseModel):
    has_conflict: bool = False
    availability_conflict: AvailabilityConflict | None = None
    time_off_conflict: TimeOffConflict | None = None
    appointment_conflict: AppointmentConflict | None = None


def needs_override_reason(report: ConflictReport) -> bool:
    """Forcing a booking through time-off requires a recorded reason."""
    return report.time_off_conflict is not None


def _proposed_datetime(target_date: date, value: datetime | time | str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, time):
        return datetime.combine(target_date, value)
    if isinstance(value, str) and 'T' not in value and '-' not in value:
        minutes = to_minutes(value)
        return datetime.combine(target_date, time(minutes // 60, minutes % 60))
    return parse_timestamp(value)


def _proposed_span(target_date: date, start: datetime, end: datetime) -> Span:
    end_minutes = to_minutes(end) if end.date() == target_date else MINUTES_PER_DAY
    start_minutes = to_minutes(start) if start.date() == target_date else 0
    return start_minutes, end_minutes


def _format_day(value: date) -> str:
    return f'{value:%b} {value.day}, {value.year}'


def _reason_suffix(block: TimeOffBlock) -> str:
    return f' ({block.reason})' if block.reason else ''


def _check_availability(
    target_date: date,
    proposed: Span,
    availability: Iterable[Any],
    today: date,
) -> AvailabilityConflict | None:
    windows = select_availability(target_date, normalize_records(availability, normalize_availability), today)
    day_name = DAY_NAMES[weekday_index(target_date)]

    if not windows:
        return AvailabilityConflict(
            message=f"You don't have any availability set for {day_name}s.",
            severity=Severity.HIGH,
        )

    if not any(overlaps(*proposed, *window.span) for window in windows):
        return AvailabilityConflict(
            message=f'This appointment is outside your regular availability hours for {day_name}s.',
            severity=Severity.MEDIUM,
        )

    return None


def _check_time_off(
    target_date: date,
    proposed: Span,
    time_off: Iterable[Any],
    today: date,
) -> TimeOffConflict | None:
    blocks = select_time_off(target_date, normalize_records(time_off, normalize_time_off), today)
    colliding = sorted(
        (block for block in blocks if overlaps(*proposed, *block.span_on(target_date))),
        key=lambda block: (block.is_recurring, block.span_on(target_date)),
    )
    if not colliding:
        return None

    block = colliding[0]
    if block.is_recurring:
        day_name = DAY_NAMES[weekday_index(target_date)]
        return TimeOffConflict(
            message=f'This appointment conflicts with your recurring time-off on {day_name}s{_reason_suffix(block)}.',
            severity=Severity.MEDIUM,
            time_off_id=block.id,
            reason=block.reason,
        )

    first_day, last_day = block.start_time.date(), block.last_date
    date_range = _format_day(first_day)
    if last_day != first_day:
        date_range = f'{date_range} to {_format_day(last_day)}'

    return TimeOffConflict(
        message=f'This appointment conflicts with your time-off scheduled for {date_range}{_reason_suffix(block)}.',
        severity=Severity.HIGH,
        time_off_id=block.id,
        reason=block.reason,
    )


def _check_appointments(
    start: datetime,
    end: datetime,
    appointments: Iterable[Any],
    owner_id: str | None,
    exclude_appointment_id: str | None,
) -> AppointmentConflict | None:
    conflicting: list[Appointment] = []
    for appointment in normalize_records(appointments, normalize_appointment):
        if appointment.status == AppointmentStatus.CANCELLED:
            continue
        if exclude_appointment_id is not None and appointment.id == str(exclude_appointment_id):
            continue
        if owner_id is not None and appointment.owner_id is not None and appointment.owner_id != str(owner_id):
            continue

        proposed_start, existing_end = comparable(start, appointment.end_time)
        existing_start, proposed_end = comparable(appointment.start_time, end)
        if proposed_start < existing_end and existing_start < proposed_end:
            conflicting.append(appointment)

    if not conflicting:
        return None

    return AppointmentConflict(
        message=f'This appointment overlaps with {len(conflicting)} existing appointment(s)',
        severity=Severity.HIGH,
        conflicting_appointment_ids=[appointment.id for appointment in conflicting],
    )


def check_conflicts(
    target_date: date,
    proposed_start: datetime | time | str,
    proposed_end: datetime | time | str,
    availability: Iterable[Any],
    time_off: Iterable[Any],
    appointments: Iterable[Any],
    owner_id: str | None = None,
    exclude_appointment_id: str | None = None,
    now: datetime | None = None,
) -> ConflictReport:
    """Report how a proposed appointment collides with the owner's calendar.

    Args:
        target_date: calendar date of the proposal.
        proposed_start, proposed_end: datetimes, times, or ``HH:MM`` strings
            on ``target_date``.
        availability, time_off, appointments: the owner's records, raw or
            canonical.
        owner_id: when given, appointments of other owners are ignored.
        exclude_appointment_id: the appointment being edited, if any.
        now: reference instant; proposals starting before it are not checked.

    Returns:
        ConflictReport with one entry per kind of conflict found.
    """
    start = _proposed_datetime(target_date, proposed_start)
    end = _proposed_datetime(target_date, proposed_end)
    if end <= start:
        raise InvalidTimeFormat('Proposed end must be after proposed start')

    start_at, now_at = comparable(start, now or datetime.now(start.tzinfo))
    if start_at < now_at:
        return ConflictReport()

    today = now_at.date()
    proposed = _proposed_span(target_date, start, end)

    availability_conflict = _check_availability(target_date, proposed, availability, today)
    time_off_conflict = _check_time_off(target_date, proposed, time_off, today)
    appointment_conflict = _check_appointments(start, end, appointments, owner_id, exclude_appointment_id)

    report = ConflictReport(
        has_conflict=any(
            conflict is not None
            for conflict in (availability_conflict, time_off_conflict, appointment_conflict)
        ),
        availability_conflict=availability_conflict,
        time_off_conflict=time_off_conflict,
        appointment_conflict=appointment_conflict,
    )
    if report.has_conflict:
        logger.debug('Conflicts for %s %s-%s: %s', target_date, start, end, report)
    return report
