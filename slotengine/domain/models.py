"""
Domain models for availability, slots, conflicts and recurring bookings.
"""

from dataclasses import dataclass, field, replace
from datetime import date, time, timedelta
from enum import Enum
from typing import ClassVar, Optional, Tuple

import pendulum
from pendulum import Date, DateTime

from .dates import at_time, format_time_of_day, parse_date, parse_time_of_day
from .exceptions import InvalidDateRange, InvalidRecurrencePattern


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidDateRange(
                f"Start time {self.start} must be before end time {self.end}"
            )

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another (half-open intervals)."""
        return self.start < other.end and self.end > other.start

    def conflicts_with(self, busy: "TimeRange", buffer_minutes: int = 0) -> bool:
        """
        Check this range against a busy range widened by ``buffer_minutes``
        on both sides.

        This is the single overlap predicate used for offering slots and for
        validating a chosen one, so a slot that was offered is never rejected
        under the same buffer.
        """
        return (
            self.start < busy.end + timedelta(minutes=buffer_minutes)
            and self.end > busy.start - timedelta(minutes=buffer_minutes)
        )

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


# Intervals read from existing, non-cancelled bookings.
BusyInterval = TimeRange


@dataclass(frozen=True)
class DayHours:
    """
    Opening hours of a single weekday.

    Invariant: an open day closes after it opens.
    """
    open: time
    close: time
    is_open: bool = True

    def __post_init__(self):
        if self.is_open and self.close <= self.open:
            raise InvalidDateRange(
                f"Closing time {format_time_of_day(self.close)} must be after "
                f"opening time {format_time_of_day(self.open)}"
            )

    @classmethod
    def closed(cls) -> "DayHours":
        return cls(open=time(0, 0), close=time(0, 0), is_open=False)

    @classmethod
    def from_strings(cls, open: str, close: str, is_open: bool = True) -> "DayHours":
        """Build hours from ``HH:mm`` or ``h:mm a`` strings."""
        if not is_open:
            return cls.closed()
        return cls(open=parse_time_of_day(open), close=parse_time_of_day(close))

    def window(self, day: Date, tz: str = "UTC") -> Optional[TimeRange]:
        """
        Get the opening window for a specific day.
        Returns None if the day is closed.
        """
        if not self.is_open:
            return None
        return TimeRange(start=at_time(day, self.open, tz), end=at_time(day, self.close, tz))


@dataclass(frozen=True)
class WeeklyAvailability:
    """
    A business's opening hours, one fixed entry per weekday.

    A day left as None is closed.
    """
    monday: Optional[DayHours] = None
    tuesday: Optional[DayHours] = None
    wednesday: Optional[DayHours] = None
    thursday: Optional[DayHours] = None
    friday: Optional[DayHours] = None
    saturday: Optional[DayHours] = None
    sunday: Optional[DayHours] = None

    def for_iso_weekday(self, iso_weekday: int) -> Optional[DayHours]:
        """Hours for an ISO weekday (1=Monday .. 7=Sunday)."""
        days = (
            self.monday,
            self.tuesday,
            self.wednesday,
            self.thursday,
            self.friday,
            self.saturday,
            self.sunday,
        )
        return days[iso_weekday - 1]


@dataclass(frozen=True)
class TimeSlot:
    """
    A bookable start time; the end follows from the service duration.
    """
    start: DateTime
    duration_minutes: int

    @property
    def end(self) -> DateTime:
        return self.start.add(minutes=self.duration_minutes)

    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    def isoformat(self) -> str:
        return self.start.isoformat()

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, YYYY-MM-DD | HH:mm - HH:mm (N min)
        """
        return (
            f"{self.start.format('dddd, YYYY-MM-DD')} | "
            f"{self.start.format('HH:mm')} - {self.end.format('HH:mm')} "
            f"({self.duration_minutes} min)"
        )


@dataclass(frozen=True)
class ConflictResult:
    """
    Outcome of validating a proposed booking.

    A conflict is data, never an exception: ``alternatives`` is ranked by
    closeness to the requested start and may be empty.
    """
    has_conflict: bool
    alternatives: Tuple[TimeSlot, ...] = ()
    conflicting: Tuple[BusyInterval, ...] = ()

    @classmethod
    def no_conflict(cls) -> "ConflictResult":
        return cls(has_conflict=False)


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: "str | Frequency") -> "Frequency":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidRecurrencePattern(f"Unknown frequency: '{value}'") from exc


class RecurrenceState(str, Enum):
    NOT_STARTED = "not_started"
    ADVANCING = "advancing"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class GeneratedOccurrence:
    """One concrete occurrence of a recurring pattern."""
    date: DateTime
    source_pattern_id: str

    @property
    def calendar_date(self) -> Date:
        return pendulum.date(self.date.year, self.date.month, self.date.day)


@dataclass(frozen=True)
class ExpansionResult:
    """
    Occurrences produced by one expansion run plus the cursor to persist.

    ``new_watermark`` equals the input watermark when nothing was emitted.
    """
    occurrences: Tuple[GeneratedOccurrence, ...]
    new_watermark: Optional[Date]
    occurrences_generated: int
    exhausted: bool = False

    @property
    def dates(self) -> Tuple[Date, ...]:
        return tuple(o.calendar_date for o in self.occurrences)


@dataclass(frozen=True, kw_only=True)
class RecurrencePattern:
    """
    Common fields of a recurring booking definition.

    Use one of the frequency variants below; each structurally carries the
    field its frequency needs. ``last_generated_date`` is the watermark:
    the last date already expanded, always on or after ``start_date``.
    """
    frequency: ClassVar[Frequency]

    pattern_id: str
    time_of_day: time
    start_date: Date
    end_date: Optional[Date] = None
    max_occurrences: Optional[int] = None
    last_generated_date: Optional[Date] = None
    occurrences_generated: int = 0
    exhausted: bool = field(default=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "time_of_day", parse_time_of_day(self.time_of_day))
        object.__setattr__(self, "start_date", parse_date(self.start_date))
        if self.end_date is not None:
            object.__setattr__(self, "end_date", parse_date(self.end_date))
            if self.end_date < self.start_date:
                raise InvalidDateRange(
                    f"Pattern {self.pattern_id}: end date {self.end_date} "
                    f"is before start date {self.start_date}"
                )
        if self.last_generated_date is not None:
            object.__setattr__(
                self, "last_generated_date", parse_date(self.last_generated_date)
            )
            if self.last_generated_date < self.start_date:
                raise InvalidRecurrencePattern(
                    f"Pattern {self.pattern_id}: watermark {self.last_generated_date} "
                    f"is before start date {self.start_date}"
                )
        if self.max_occurrences is not None and self.max_occurrences < 1:
            raise InvalidRecurrencePattern(
                f"Pattern {self.pattern_id}: max_occurrences must be at least 1"
            )
        if self.occurrences_generated < 0:
            raise InvalidRecurrencePattern(
                f"Pattern {self.pattern_id}: occurrences_generated cannot be negative"
            )
        self._validate_variant()

    def _validate_variant(self) -> None:
        """Hook for frequency-specific checks."""

    @property
    def state(self) -> RecurrenceState:
        if self.exhausted:
            return RecurrenceState.EXHAUSTED
        if (
            self.max_occurrences is not None
            and self.occurrences_generated >= self.max_occurrences
        ):
            return RecurrenceState.EXHAUSTED
        if self.last_generated_date is None:
            return RecurrenceState.NOT_STARTED
        if self.end_date is not None and self.last_generated_date >= self.end_date:
            return RecurrenceState.EXHAUSTED
        return RecurrenceState.ADVANCING

    def advanced(self, result: ExpansionResult) -> "RecurrencePattern":
        """Return this pattern with its watermark moved past ``result``."""
        return replace(
            self,
            last_generated_date=result.new_watermark,
            occurrences_generated=result.occurrences_generated,
            exhausted=self.exhausted or result.exhausted,
        )

    def reset(self) -> "RecurrencePattern":
        """Return this pattern with its expansion history cleared."""
        return replace(
            self, last_generated_date=None, occurrences_generated=0, exhausted=False
        )


@dataclass(frozen=True, kw_only=True)
class DailyRecurrence(RecurrencePattern):
    frequency: ClassVar[Frequency] = Frequency.DAILY


def _check_day_of_week(pattern_id: str, day_of_week: Optional[int]) -> None:
    if day_of_week is None:
        raise InvalidRecurrencePattern(
            f"Pattern {pattern_id}: day_of_week is required for weekly and biweekly patterns"
        )
    if not 0 <= day_of_week <= 6:
        raise InvalidRecurrencePattern(
            f"Pattern {pattern_id}: day_of_week must be between 0 (Sunday) and 6, got {day_of_week}"
        )


@dataclass(frozen=True, kw_only=True)
class WeeklyRecurrence(RecurrencePattern):
    frequency: ClassVar[Frequency] = Frequency.WEEKLY
    day_of_week: int  # 0=Sunday .. 6=Saturday

    def _validate_variant(self) -> None:
        _check_day_of_week(self.pattern_id, self.day_of_week)


@dataclass(frozen=True, kw_only=True)
class BiweeklyRecurrence(RecurrencePattern):
    frequency: ClassVar[Frequency] = Frequency.BIWEEKLY
    day_of_week: int  # 0=Sunday .. 6=Saturday

    def _validate_variant(self) -> None:
        _check_day_of_week(self.pattern_id, self.day_of_week)


@dataclass(frozen=True, kw_only=True)
class MonthlyRecurrence(RecurrencePattern):
    frequency: ClassVar[Frequency] = Frequency.MONTHLY
    day_of_month: int

    def _validate_variant(self) -> None:
        if self.day_of_month is None:
            raise InvalidRecurrencePattern(
                f"Pattern {self.pattern_id}: day_of_month is required for monthly patterns"
            )
        if not 1 <= self.day_of_month <= 31:
            raise InvalidRecurrencePattern(
                f"Pattern {self.pattern_id}: day_of_month must be between 1 and 31, "
                f"got {self.day_of_month}"
            )


def build_pattern(
    *,
    frequency: "str | Frequency",
    pattern_id: str,
    time_of_day: "str | time",
    start_date: "str | date",
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    end_date: "str | date | None" = None,
    max_occurrences: Optional[int] = None,
    last_generated_date: "str | date | None" = None,
    occurrences_generated: int = 0,
) -> RecurrencePattern:
    """
    Build the right pattern variant from loosely-typed input.

    Raises:
        InvalidRecurrencePattern: If the frequency is unknown, its required
            field is missing, or the time of day cannot be parsed
    """
    kind = Frequency.parse(frequency)

    try:
        parsed_time = parse_time_of_day(time_of_day)
    except ValueError as exc:
        raise InvalidRecurrencePattern(f"Pattern {pattern_id}: {exc}") from exc

    common = dict(
        pattern_id=pattern_id,
        time_of_day=parsed_time,
        start_date=parse_date(start_date),
        end_date=parse_date(end_date) if end_date is not None else None,
        max_occurrences=max_occurrences,
        last_generated_date=(
            parse_date(last_generated_date) if last_generated_date is not None else None
        ),
        occurrences_generated=occurrences_generated,
    )

    if kind is Frequency.DAILY:
        return DailyRecurrence(**common)
    if kind is Frequency.WEEKLY:
        _check_day_of_week(pattern_id, day_of_week)
        return WeeklyRecurrence(day_of_week=day_of_week, **common)
    if kind is Frequency.BIWEEKLY:
        _check_day_of_week(pattern_id, day_of_week)
        return BiweeklyRecurrence(day_of_week=day_of_week, **common)
    return MonthlyRecurrence(day_of_month=day_of_month, **common)
