"""
Calendar arithmetic on immutable date values.

Every helper takes ``pendulum.Date``/``DateTime`` values and returns new ones;
nothing here mutates its arguments. Weekday numbers passed around the engine
follow the booking convention 0=Sunday .. 6=Saturday.
"""

from datetime import date, datetime, time

import pendulum
from pendulum import Date, DateTime

from .exceptions import InvalidDateRange, InvalidTimeFormat

_TIME_FORMATS = ("H:mm", "h:mm A", "h:mmA")


def parse_time_of_day(value: "str | time") -> time:
    """
    Parse a time of day in ``HH:mm`` (24h) or ``h:mm a`` (12h) format.

    Examples: ``"14:00"``, ``"09:30"``, ``"2:00 PM"``, ``"12:15am"``.

    Raises:
        InvalidTimeFormat: If the value matches neither format
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)

    text = " ".join(str(value or "").split()).upper()
    for fmt in _TIME_FORMATS:
        try:
            parsed = pendulum.from_format(text, fmt)
        except ValueError:
            continue
        return time(hour=parsed.hour, minute=parsed.minute)

    raise InvalidTimeFormat(
        f"Unsupported time format: '{value}'. Use 'HH:mm' or 'h:mm a'."
    )


def format_time_of_day(value: time) -> str:
    """Format a time of day as ``HH:mm``."""
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_date(value: "str | date | datetime") -> Date:
    """
    Coerce a date, datetime or ISO-8601 string to a calendar date.

    Raises:
        InvalidDateRange: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return pendulum.date(value.year, value.month, value.day)
    if isinstance(value, date):
        return pendulum.date(value.year, value.month, value.day)

    try:
        parsed = pendulum.parse(str(value), exact=True)
    except (ValueError, TypeError) as exc:
        raise InvalidDateRange(f"Unparsable date: '{value}'") from exc

    if isinstance(parsed, datetime):
        return pendulum.date(parsed.year, parsed.month, parsed.day)
    if isinstance(parsed, date):
        return pendulum.date(parsed.year, parsed.month, parsed.day)

    raise InvalidDateRange(f"Not a calendar date: '{value}'")


def parse_instant(value: "str | datetime", tz: str = "UTC") -> DateTime:
    """
    Coerce a datetime or ISO-8601 string to an aware instant.

    Naive values are interpreted in ``tz``.

    Raises:
        InvalidDateRange: If the value cannot be interpreted as an instant
    """
    if isinstance(value, datetime):
        return pendulum.instance(value, tz=tz)

    try:
        parsed = pendulum.parse(str(value), tz=tz)
    except (ValueError, TypeError) as exc:
        raise InvalidDateRange(f"Unparsable date-time: '{value}'") from exc

    if not isinstance(parsed, DateTime):
        raise InvalidDateRange(f"Not a date-time: '{value}'")
    return parsed


def add_days(value: Date, days: int) -> Date:
    """Return ``value`` shifted by ``days`` calendar days."""
    return value.add(days=days)


def days_between(start: Date, end: Date) -> int:
    """Signed number of calendar days from ``start`` to ``end``."""
    return end.toordinal() - start.toordinal()


def sunday_weekday(value: Date) -> int:
    """Weekday number with 0=Sunday, 1=Monday .. 6=Saturday."""
    return value.isoweekday() % 7


def days_in_month(year: int, month: int) -> int:
    return pendulum.date(year, month, 1).days_in_month


def clamp_day_of_month(year: int, month: int, day_of_month: int) -> Date:
    """
    Build the date for ``day_of_month`` in the given month.

    Months shorter than ``day_of_month`` yield their last day, e.g. day 31
    in February 2024 is 2024-02-29.
    """
    return pendulum.date(year, month, min(day_of_month, days_in_month(year, month)))


def next_month(year: int, month: int) -> "tuple[int, int]":
    if month == 12:
        return year + 1, 1
    return year, month + 1


def at_time(value: Date, time_of_day: time, tz: str = "UTC") -> DateTime:
    """Combine a calendar date and a time of day into an instant in ``tz``."""
    return pendulum.datetime(
        value.year,
        value.month,
        value.day,
        time_of_day.hour,
        time_of_day.minute,
        tz=tz,
    )
