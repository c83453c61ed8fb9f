"""Timeline resolution.

Turns a therapist's availability windows, time-off blocks and appointments
into one ordered list of labeled, non-overlapping blocks for a calendar date.

Precedence, highest first:
    1. all-day time-off (only overriding appointments survive next to it)
    2. appointments
    3. date-specific time-off, then recurring time-off
    4. availability, shown only in the gaps left by everything above
"""

import logging
from collections.abc import Iterable
from datetime import date, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel

from therapy_backend.scheduling.all_day import spans_whole_day
from therapy_backend.scheduling.intervals import Span, minutes_to_time, split_around, to_minutes
from therapy_backend.scheduling.records import (
    Appointment,
    AppointmentStatus,
    AvailabilityWindow,
    TimeOffBlock,
    normalize_appointment,
    normalize_availability,
    normalize_records,
    normalize_time_off,
)

logger = logging.getLogger(__name__)

VISIBLE_APPOINTMENT_STATUSES = frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED})


class BlockType(str, Enum):
    AVAILABILITY = 'availability'
    TIME_OFF = 'time-off'
    APPOINTMENT = 'appointment'


# Tie-break for blocks sharing a start minute.
_TYPE_ORDER = {BlockType.TIME_OFF: 0, BlockType.APPOINTMENT: 1, BlockType.AVAILABILITY: 2}


class TimeBlock(BaseModel):
    id: str
    start_time: str
    end_time: str
    type: BlockType
    is_all_day: bool = False
    is_recurring: bool = False
    reason: str | None = None
    client_name: str | None = None
    status: str | None = None
    source_id: str

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)

    @property
    def span(self) -> Span:
        return self.start_minutes, self.end_minutes


def _sort_key(block: TimeBlock) -> tuple[int, int, int]:
    return block.start_minutes, _TYPE_ORDER[block.type], block.end_minutes


def sort_blocks(blocks: Iterable[TimeBlock]) -> list[TimeBlock]:
    return sorted(blocks, key=_sort_key)


def _piece_id(source_id: str, piece: Span, original: Span) -> str:
    if piece == original:
        return source_id
    return f'{source_id}-split-{piece[0]}-{piece[1]}'


def _appointment_block(appointment: Appointment) -> TimeBlock:
    start, end = appointment.span
    return TimeBlock(
        id=appointment.id,
        start_time=minutes_to_time(start),
        end_time=minutes_to_time(end),
        type=BlockType.APPOINTMENT,
        reason=appointment.notes,
        client_name=appointment.client_name,
        status=appointment.status.value,
        source_id=appointment.id,
    )


def _time_off_block(block: TimeOffBlock, piece: Span, block_id: str, all_day: bool = False) -> TimeBlock:
    return TimeBlock(
        id=block_id,
        start_time=minutes_to_time(piece[0]),
        end_time=minutes_to_time(piece[1]),
        type=BlockType.TIME_OFF,
        is_all_day=all_day,
        is_recurring=block.is_recurring,
        reason=block.reason,
        source_id=block.id,
    )


def _availability_block(window: AvailabilityWindow, piece: Span) -> TimeBlock:
    return TimeBlock(
        id=_piece_id(window.id, piece, window.span),
        start_time=minutes_to_time(piece[0]),
        end_time=minutes_to_time(piece[1]),
        type=BlockType.AVAILABILITY,
        is_recurring=window.is_recurring,
        source_id=window.id,
    )


def select_availability(
    target_date: date,
    windows: Iterable[AvailabilityWindow],
    today: date,
) -> list[AvailabilityWindow]:
    """Windows for ``target_date``; date-specific windows replace recurring ones."""
    applicable = [window for window in windows if window.applies_on(target_date, today)]
    date_specific = [window for window in applicable if not window.is_recurring]
    if date_specific:
        return date_specific
    return applicable


def select_time_off(
    target_date: date,
    blocks: Iterable[TimeOffBlock],
    today: date,
) -> list[TimeOffBlock]:
    return [block for block in blocks if block.applies_on(target_date, today)]


def select_appointments(
    target_date: date,
    appointments: Iterable[Appointment],
    statuses: frozenset[AppointmentStatus] = VISIBLE_APPOINTMENT_STATUSES,
) -> list[Appointment]:
    return [
        appointment
        for appointment in appointments
        if appointment.status in statuses and appointment.occurs_on(target_date)
    ]


def _layer_time_off(
    target_date: date,
    time_off: list[TimeOffBlock],
    appointment_spans: list[Span],
) -> list[TimeBlock]:
    # Date-specific first, so they claim their time before recurring blocks do.
    ordered = sorted(time_off, key=lambda block: (block.is_recurring, block.span_on(target_date)))

    accepted: list[TimeBlock] = []
    for block in ordered:
        original = block.span_on(target_date)
        occluders = appointment_spans + [existing.span for existing in accepted]
        pieces = split_around(original, occluders)
        accepted.extend(
            _time_off_block(block, piece, _piece_id(block.id, piece, original)) for piece in pieces
        )

    return accepted


def _layer_availability(windows: list[AvailabilityWindow], occupied: list[Span]) -> list[TimeBlock]:
    accepted: list[TimeBlock] = []
    for window in sorted(windows, key=lambda item: item.span):
        occluders = occupied + [existing.span for existing in accepted]
        accepted.extend(_availability_block(window, piece) for piece in split_around(window.span, occluders))
    return accepted


def resolve_timeline(
    target_date: date,
    availability: Iterable[Any],
    time_off: Iterable[Any],
    appointments: Iterable[Any],
    today: date | None = None,
) -> list[TimeBlock]:
    today = today or date.today()
    windows = normalize_records(availability, normalize_availability)
    blocks = normalize_records(time_off, normalize_time_off)
    booked = normalize_records(appointments, normalize_appointment)

    day_time_off = select_time_off(target_date, blocks, today)
    day_appointments = select_appointments(target_date, booked)

    all_day = [block for block in day_time_off if spans_whole_day(block.span_on(target_date))]
    if all_day:
        logger.debug('All-day time-off on %s: %s', target_date, [block.id for block in all_day])
        result = [
            _time_off_block(block, block.span_on(target_date), f'{block.id}-{target_date.isoformat()}', all_day=True)
            for block in all_day
        ]
        result.extend(
            _appointment_block(appointment)
            for appointment in day_appointments
            if appointment.overrides_time_off
        )
        return sort_blocks(result)

    appointment_blocks = [_appointment_block(appointment) for appointment in day_appointments]
    appointment_spans = [block.span for block in appointment_blocks]

    time_off_blocks = _layer_time_off(target_date, day_time_off, appointment_spans)

    day_windows = select_availability(target_date, windows, today)
    occupied = appointment_spans + [block.span for block in time_off_blocks]
    availability_blocks = _layer_availability(day_windows, occupied)

    return sort_blocks(appointment_blocks + time_off_blocks + availability_blocks)


def resolve_range(
    start_date: date,
    end_date: date,
    availability: Iterable[Any],
    time_off: Iterable[Any],
    appointments: Iterable[Any],
    today: date | None = None,
) -> dict[str, list[TimeBlock]]:
    """Resolve every date from ``start_date`` to ``end_date`` inclusive."""
    today = today or date.today()
    windows = normalize_records(availability, normalize_availability)
    blocks = normalize_records(time_off, normalize_time_off)
    booked = normalize_records(appointments, normalize_appointment)

    result: dict[str, list[TimeBlock]] = {}
    current_date = start_date
    while current_date <= end_date:
        result[current_date.isoformat()] = resolve_timeline(current_date, windows, blocks, booked, today=today)
        current_date += timedelta(days=1)

    return result
