"""
Date-range resolution for analytics queries.

Turns ``{start_date?, end_date?, period?}`` into a concrete window.

Key behaviors:
- Explicit start/end dates win when both are present; the end is pushed to
  the last instant of its calendar day.
- Otherwise a named period (day/week/month/year, default week) is resolved
  back from "now" and floored to the start of that day.
- Unknown period names resolve exactly like "week".
- Pure: no I/O, deterministic for a fixed "now".
"""

from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from .models import DateRange, Period


class DateRangeError(ValueError):
    """Explicit dates that cannot form a window. field_name names the bad query parameter."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message)
        self.field_name = field_name


def parse_calendar_date(value: str) -> date:
    """
    Parse a calendar date.

    Accepts ``YYYY-MM-DD`` or a full ISO-8601 timestamp, in which case the
    date part is used. Raises ValueError otherwise.
    """
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise ValueError(f"Invalid date: {value!r}") from e


def _parse_param(value: str, field_name: str) -> date:
    try:
        return parse_calendar_date(value)
    except ValueError as e:
        raise DateRangeError(str(e), field_name) from e


def shift_months(day: date, months: int) -> date:
    """Move by calendar months, clamping the day to the target month length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def period_start(period: Period, today: date) -> date:
    """First calendar day covered by a named period ending today."""
    if period is Period.DAY:
        return today
    if period is Period.MONTH:
        return shift_months(today, -1)
    if period is Period.YEAR:
        return shift_months(today, -12)
    return today - timedelta(days=7)


def resolve_date_range(
    start_date: str | None = None,
    end_date: str | None = None,
    period: str | None = None,
    *,
    now: datetime,
    tz: tzinfo = UTC,
    default_period: Period = Period.WEEK,
) -> DateRange:
    """
    Resolve a reporting window in the given timezone.

    Raises DateRangeError (a ValueError) for unparseable explicit dates or
    when the explicit start falls after the explicit end.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    today = now.astimezone(tz).date()

    if start_date and end_date:
        first = _parse_param(start_date, "startDate")
        last = _parse_param(end_date, "endDate")
        if first > last:
            raise DateRangeError("startDate must not be after endDate")
        return DateRange(start=start_of_day(first, tz), end=end_of_day(last, tz))

    resolved = Period.parse(period, default_period)
    return DateRange(
        start=start_of_day(period_start(resolved, today), tz),
        end=end_of_day(today, tz),
    )
