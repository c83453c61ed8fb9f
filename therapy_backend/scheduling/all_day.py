from datetime import datetime, time

from therapy_backend.scheduling.intervals import Span, to_minutes

ALL_DAY_START_CUTOFF = 10
ALL_DAY_END_CUTOFF = 23 * 60 + 50


def spans_whole_day(span: Span) -> bool:
    start, end = span
    return start <= ALL_DAY_START_CUTOFF and end >= ALL_DAY_END_CUTOFF


def is_all_day(start: str | time | datetime, end: str | time | datetime) -> bool:
    """True when the span starts by 00:10 and ends at 23:50 or later."""
    return spans_whole_day((to_minutes(start), to_minutes(end)))
