"""Weekly recurrence descriptors.

Descriptors are stored as ``weekly:Mon,Wed,Fri``. Weekdays are numbered from
Sunday (0) to Saturday (6).
"""

import logging
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from therapy_backend.scheduling.errors import MalformedRecurrence

logger = logging.getLogger(__name__)

RECURRENCE_PREFIX = 'weekly:'
DAY_ABBREVIATIONS = ('Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat')
DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class WeeklyRecurrence(BaseModel):
    model_config = ConfigDict(frozen=True)

    weekdays: frozenset[int] = frozenset()

    def includes(self, target_date: date) -> bool:
        return weekday_index(target_date) in self.weekdays

    def to_descriptor(self) -> str:
        return build_recurrence(self.weekdays)


def weekday_index(target_date: date) -> int:
    # date.weekday() counts from Monday
    return (target_date.weekday() + 1) % 7


def _parse_weekdays(descriptor: str) -> frozenset[int]:
    if not descriptor.startswith(RECURRENCE_PREFIX):
        raise MalformedRecurrence(f'Unsupported recurrence {descriptor!r}')

    day_names = [name.strip() for name in descriptor[len(RECURRENCE_PREFIX):].split(',')]
    weekdays = set()
    for name in day_names:
        if name not in DAY_ABBREVIATIONS:
            raise MalformedRecurrence(f'Unknown weekday {name!r} in {descriptor!r}')
        weekdays.add(DAY_ABBREVIATIONS.index(name))

    return frozenset(weekdays)


def expand_recurrence(descriptor: str | None) -> frozenset[int]:
    """Return the weekdays a descriptor names.

    Empty and malformed descriptors expand to the empty set, so the record
    they belong to never matches a day.
    """
    if not descriptor:
        return frozenset()

    try:
        return _parse_weekdays(descriptor.strip())
    except MalformedRecurrence:
        logger.warning('Ignoring malformed recurrence descriptor %r', descriptor)
        return frozenset()


def parse_recurrence(descriptor: str | None) -> WeeklyRecurrence | None:
    if descriptor is None:
        return None
    return WeeklyRecurrence(weekdays=expand_recurrence(descriptor))


def build_recurrence(weekdays) -> str:
    ordered = sorted(set(weekdays))
    for day in ordered:
        if not 0 <= day <= 6:
            raise MalformedRecurrence(f'Weekday out of range: {day}')
    return RECURRENCE_PREFIX + ','.join(DAY_ABBREVIATIONS[day] for day in ordered)


def recurrence_from_legacy(day_of_week: int | None, is_recurring: bool | None) -> str | None:
    """Translate the older integer ``day_of_week`` + ``is_recurring`` columns."""
    if not is_recurring or day_of_week is None:
        return None
    return build_recurrence([day_of_week])


def recurring_applies(
    recurrence: WeeklyRecurrence,
    created_at: datetime | None,
    target_date: date,
    today: date,
) -> bool:
    if not recurrence.includes(target_date):
        return False

    # Recurrence only governs today onward; history keeps what existed then.
    if target_date < today and created_at is not None and target_date < created_at.date():
        return False

    return True
