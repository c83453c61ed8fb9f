"""Canonical record shapes and the one place raw rows are turned into them.

Rows may be SQLAlchemy models, plain dicts (for example decoded JSON) or
already-canonical records. Anything the engine reads goes through
``normalize_records`` first; a row that cannot be read is logged and left out.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from therapy_backend.scheduling.errors import InvalidDate, InvalidTimeFormat, SchedulingError
from therapy_backend.scheduling.intervals import MINUTES_PER_DAY, Span, to_minutes
from therapy_backend.scheduling.recurrence import WeeklyRecurrence, parse_recurrence, recurring_applies

logger = logging.getLogger(__name__)

LAST_MINUTE = MINUTES_PER_DAY - 1

RecordT = TypeVar('RecordT')


class AppointmentStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


LEGACY_STATUSES = {
    'scheduled': AppointmentStatus.CONFIRMED,
    'booked': AppointmentStatus.CONFIRMED,
}


class _RangeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str | None = None
    start_time: datetime
    end_time: datetime
    recurrence: WeeklyRecurrence | None = None
    created_at: datetime | None = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def span(self) -> Span:
        """Time-of-day span; a midnight end on a later date means end of day."""
        end = to_minutes(self.end_time)
        if end == 0 and self.end_time.date() > self.start_time.date():
            end = LAST_MINUTE
        return to_minutes(self.start_time), end


class AvailabilityWindow(_RangeRecord):
    """Working hours, either weekly or for one calendar date."""

    def applies_on(self, target_date: date, today: date) -> bool:
        if self.recurrence is not None:
            return recurring_applies(self.recurrence, self.created_at, target_date, today)
        return self.start_time.date() == target_date


class TimeOffBlock(_RangeRecord):
    """Blocked time. Date-specific blocks may cover several calendar dates."""

    reason: str | None = None

    @property
    def last_date(self) -> date:
        end_date = self.end_time.date()
        if self.end_time.time() == time() and end_date > self.start_time.date():
            return end_date - timedelta(days=1)
        return end_date

    def applies_on(self, target_date: date, today: date) -> bool:
        if self.recurrence is not None:
            return recurring_applies(self.recurrence, self.created_at, target_date, today)
        return self.start_time.date() <= target_date <= self.last_date

    def span_on(self, target_date: date) -> Span:
        if self.recurrence is not None:
            return self.span

        start = to_minutes(self.start_time) if target_date == self.start_time.date() else 0
        end = to_minutes(self.end_time) if target_date == self.end_time.date() else LAST_MINUTE
        return start, end


class Appointment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str | None = None
    client_id: str | None = None
    client_name: str | None = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None
    overrides_time_off: bool = False
    override_reason: str | None = None

    def occurs_on(self, target_date: date) -> bool:
        return self.start_time.date() == target_date

    @property
    def span(self) -> Span:
        end = to_minutes(self.end_time) if self.end_time.date() == self.start_time.date() else LAST_MINUTE
        return to_minutes(self.start_time), end


def wall_clock(value: datetime) -> datetime:
    return value.replace(tzinfo=None)


def comparable(first: datetime, second: datetime) -> tuple[datetime, datetime]:
    # Time-zone policy is out of scope; mixed naive/aware values compare by wall clock.
    if (first.tzinfo is None) != (second.tzinfo is None):
        return wall_clock(first), wall_clock(second)
    return first, second


def _field(raw: Any, name: str, default: Any = None) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name, default)
    return getattr(raw, name, default)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidDate(f'Invalid timestamp: {value!r}') from exc
    raise InvalidDate(f'Invalid timestamp: {value!r}')


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidDate(f'Expected YYYY-MM-DD, got {value!r}') from exc
    raise InvalidDate(f'Invalid date: {value!r}')


def parse_status(value: Any) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    normalized = str(value or AppointmentStatus.PENDING.value).strip().lower()
    if normalized in LEGACY_STATUSES:
        return LEGACY_STATUSES[normalized]
    try:
        return AppointmentStatus(normalized)
    except ValueError as exc:
        raise SchedulingError(f'Unknown appointment status: {value!r}') from exc


def _recurrence_of(raw: Any) -> WeeklyRecurrence | None:
    recurrence = _field(raw, 'recurrence')
    if isinstance(recurrence, WeeklyRecurrence):
        return recurrence
    return parse_recurrence(recurrence)


def _range_fields(raw: Any) -> dict[str, Any]:
    start_time = parse_timestamp(_field(raw, 'start_time'))
    end_time = parse_timestamp(_field(raw, 'end_time'))
    recurrence = _recurrence_of(raw)
    created_at = _field(raw, 'created_at')

    fields = {
        'id': str(_field(raw, 'id')),
        'owner_id': _optional_str(_field(raw, 'owner_id', _field(raw, 'therapist_id'))),
        'start_time': start_time,
        'end_time': end_time,
        'recurrence': recurrence,
        'created_at': parse_timestamp(created_at) if created_at is not None else None,
    }
    return fields


def _check_span(record: _RangeRecord) -> None:
    start, end = record.span
    if end <= start:
        raise InvalidTimeFormat(
            f'End time {record.end_time:%H:%M} must be after start time {record.start_time:%H:%M}'
        )


def normalize_availability(raw: Any) -> AvailabilityWindow:
    if isinstance(raw, AvailabilityWindow):
        return raw

    window = AvailabilityWindow(**_range_fields(raw))
    _check_span(window)
    return window


def normalize_time_off(raw: Any) -> TimeOffBlock:
    if isinstance(raw, TimeOffBlock):
        return raw

    block = TimeOffBlock(**_range_fields(raw), reason=_field(raw, 'reason'))
    if block.recurrence is not None or block.start_time.date() == block.end_time.date():
        _check_span(block)
    else:
        start_time, end_time = comparable(block.start_time, block.end_time)
        if end_time <= start_time:
            raise InvalidDate(f'Time-off {block.id} ends before it starts')
    return block


def normalize_appointment(raw: Any) -> Appointment:
    if isinstance(raw, Appointment):
        return raw

    start_time = parse_timestamp(_field(raw, 'start_time'))
    end_time = parse_timestamp(_field(raw, 'end_time'))
    start_at, end_at = comparable(start_time, end_time)
    if end_at <= start_at:
        raise InvalidTimeFormat(f'Appointment {_field(raw, "id")} ends before it starts')

    return Appointment(
        id=str(_field(raw, 'id')),
        owner_id=_optional_str(_field(raw, 'owner_id', _field(raw, 'therapist_id'))),
        client_id=_optional_str(_field(raw, 'client_id')),
        client_name=_field(raw, 'client_name'),
        start_time=start_time,
        end_time=end_time,
        status=parse_status(_field(raw, 'status')),
        notes=_field(raw, 'notes'),
        overrides_time_off=bool(_field(raw, 'overrides_time_off', False)),
        override_reason=_field(raw, 'override_reason'),
    )


def normalize_records(rows: Iterable[Any], normalizer: Callable[[Any], RecordT]) -> list[RecordT]:
    records: list[RecordT] = []
    for row in rows:
        try:
            records.append(normalizer(row))
        except (SchedulingError, ValidationError, TypeError) as exc:
            # ValidationError: a field of the wrong type; TypeError: unorderable values.
            logger.warning('Skipping record %r: %s', _field(row, 'id'), exc)
    return records
