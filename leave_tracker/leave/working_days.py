"""Working-day arithmetic — the unit annual and sick leave are costed in.

Saturdays and Sundays are the only non-working days; there is no public
holiday calendar.
"""

from __future__ import annotations

from datetime import date, timedelta

_SATURDAY = 5


def is_weekend(day: date) -> bool:
    return day.weekday() >= _SATURDAY


def working_days(start: date, end: date) -> int:
    """Count Mon–Fri days from *start* to *end*, both inclusive.

    An inverted range (``start > end``) is empty and counts 0.
    """
    if start > end:
        return 0

    span = (end - start).days + 1
    full_weeks, remainder = divmod(span, 7)
    count = full_weeks * 5

    day = start + timedelta(days=full_weeks * 7)
    for _ in range(remainder):
        if not is_weekend(day):
            count += 1
        day += timedelta(days=1)
    return count
