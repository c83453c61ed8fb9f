"""Minute-of-day arithmetic over half-open [start, end) ranges."""

from datetime import datetime, time
from functools import reduce

from therapy_backend.scheduling.errors import InvalidTimeFormat

MINUTES_PER_DAY = 24 * 60
END_OF_DAY = time(23, 59, 59)

Span = tuple[int, int]


def to_minutes(value: str | time | datetime) -> int:
    """Return minutes since midnight for ``HH:MM[:SS]``, a time or a datetime.

    Seconds are dropped, so ``23:59:59`` is minute 1439.
    """
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise InvalidTimeFormat(f'Unsupported time value: {value!r}')

    parts = value.strip().split(':')
    if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
        raise InvalidTimeFormat(f'Expected HH:MM[:SS], got {value!r}')

    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidTimeFormat(f'Time out of range: {value!r}')

    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Format minutes as HH:MM:SS; the last minute of the day reads 23:59:59."""
    if minutes >= MINUTES_PER_DAY - 1:
        return END_OF_DAY.strftime('%H:%M:%S')
    hours, mins = divmod(minutes, 60)
    return f'{hours:02d}:{mins:02d}:00'


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def contains(outer: Span, inner: Span) -> bool:
    return outer[0] <= inner[0] and outer[1] >= inner[1]


def subtract_interval(segments: list[Span], occluder: Span) -> list[Span]:
    """Remove ``occluder`` from every segment, keeping what is left.

    A segment the occluder sits inside comes back as two pieces; one it
    fully covers disappears.
    """
    occluder_start, occluder_end = occluder
    remaining: list[Span] = []

    for segment_start, segment_end in segments:
        if not overlaps(segment_start, segment_end, occluder_start, occluder_end):
            remaining.append((segment_start, segment_end))
            continue

        if segment_start < occluder_start:
            remaining.append((segment_start, occluder_start))
        if occluder_end < segment_end:
            remaining.append((occluder_end, segment_end))

    return remaining


def split_around(span: Span, occluders: list[Span]) -> list[Span]:
    """Fold ``span`` through ``occluders`` in start order and return the gaps."""
    return reduce(subtract_interval, sorted(occluders), [span])
