"""Discrete bookable slots for the client-facing booking widget."""

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from pydantic import BaseModel

from therapy_backend.scheduling.timeline import BlockType, TimeBlock


class OpenSlot(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    source_id: str


def generate_open_slots(
    target_date: date,
    blocks: Iterable[TimeBlock],
    duration_minutes: int,
    step_minutes: int | None = None,
    not_before: datetime | None = None,
) -> list[OpenSlot]:
    """
    Slice the availability blocks of a resolved timeline into slots.

    Args:
        target_date: date the blocks were resolved for
        blocks: output of resolve_timeline for target_date
        duration_minutes: length of each slot
        step_minutes: distance between slot starts (defaults to duration_minutes)
        not_before: slots starting before this instant are skipped

    Returns:
        list[OpenSlot] ordered by start time. A slot never extends past the
        end of the block it was cut from.
    """
    if duration_minutes <= 0:
        raise ValueError('duration_minutes must be positive')

    step = timedelta(minutes=step_minutes or duration_minutes)
    duration = timedelta(minutes=duration_minutes)
    midnight = datetime.combine(target_date, time())

    slots: list[OpenSlot] = []
    for block in blocks:
        if block.type != BlockType.AVAILABILITY:
            continue

        block_end = midnight + timedelta(minutes=block.end_minutes)
        current_start = midnight + timedelta(minutes=block.start_minutes)

        while current_start + duration <= block_end:
            if not_before is None or current_start >= not_before:
                slots.append(
                    OpenSlot(
                        start_time=current_start,
                        end_time=current_start + duration,
                        duration_minutes=duration_minutes,
                        source_id=block.source_id,
                    )
                )
            current_start += step

    slots.sort(key=lambda slot: slot.start_time)
    return slots
