from datetime import date, datetime

import pytest

from therapy_backend.scheduling.slots import generate_open_slots
from therapy_backend.scheduling.timeline import resolve_timeline

MONDAY = date(2030, 1, 7)

WORKDAY = {
    'id': 'hours',
    'start_time': datetime(2030, 1, 7, 9, 0),
    'end_time': datetime(2030, 1, 7, 12, 0),
    'recurrence': 'weekly:Mon',
}
BOOKED = {
    'id': 'a1',
    'start_time': datetime(2030, 1, 7, 10, 0),
    'end_time': datetime(2030, 1, 7, 10, 50),
    'status': 'confirmed',
}


def test_slots_fill_gaps_left_by_appointments() -> None:
    blocks = resolve_timeline(MONDAY, [WORKDAY], [], [BOOKED], today=date(2026, 1, 1))

    slots = generate_open_slots(MONDAY, blocks, duration_minutes=50)

    assert [(slot.start_time.time().isoformat(), slot.end_time.time().isoformat()) for slot in slots] == [
        ('09:00:00', '09:50:00'),
        ('10:50:00', '11:40:00'),
    ]
    assert all(slot.source_id == 'hours' for slot in slots)


def test_slots_honour_step_and_not_before() -> None:
    blocks = resolve_timeline(MONDAY, [WORKDAY], [], [], today=date(2026, 1, 1))

    slots = generate_open_slots(
        MONDAY,
        blocks,
        duration_minutes=60,
        step_minutes=30,
        not_before=datetime(2030, 1, 7, 10, 0),
    )

    assert [slot.start_time.hour * 60 + slot.start_time.minute for slot in slots] == [600, 630, 660]


def test_no_slots_on_all_day_time_off() -> None:
    vacation = {
        'id': 'v',
        'start_time': datetime(2030, 1, 7, 0, 0),
        'end_time': datetime(2030, 1, 8, 0, 0),
    }
    blocks = resolve_timeline(MONDAY, [WORKDAY], [vacation], [], today=date(2026, 1, 1))

    assert generate_open_slots(MONDAY, blocks, duration_minutes=30) == []


def test_slot_duration_must_be_positive() -> None:
    with pytest.raises(ValueError):
        generate_open_slots(MONDAY, [], duration_minutes=0)
