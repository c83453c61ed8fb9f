"""Errors raised while reading individual scheduling records.

None of these are fatal: the engine catches them per record, logs them and
leaves the record out of the current computation.
"""


class SchedulingError(ValueError):
    """Base class for record-level scheduling errors."""


class InvalidTimeFormat(SchedulingError):
    """A time-of-day value could not be parsed or is out of range."""


class InvalidDate(SchedulingError):
    """A date or timestamp could not be parsed."""


class MalformedRecurrence(SchedulingError):
    """A recurrence descriptor does not follow the weekly:Day,Day format."""
