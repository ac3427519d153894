"""
Expansion of recurring booking patterns into concrete occurrences.

The expander is a deterministic date-sequence generator: given a pattern and
a horizon it walks a cursor forward one candidate date at a time, starting
from the pattern's watermark. Running it twice with the same watermark gives
the same occurrences, and resuming from the returned watermark continues the
sequence exactly where a single longer run would have been.

Bounds are checked in this order for every candidate:

1. ``max_occurrences`` already reached -> stop (exhausted)
2. candidate before ``start_date`` -> skip, cursor still advances
3. candidate after ``end_date`` -> stop (exhausted)
4. candidate after the horizon -> stop

All comparisons are between calendar dates and both bounds are inclusive.
"""

import logging
from typing import List

from pendulum import Date

from .dates import (
    add_days,
    at_time,
    clamp_day_of_month,
    days_between,
    next_month,
    parse_date,
    sunday_weekday,
)
from .exceptions import ExpansionLimitExceeded, InvalidRecurrencePattern
from .models import (
    BiweeklyRecurrence,
    DailyRecurrence,
    ExpansionResult,
    GeneratedOccurrence,
    MonthlyRecurrence,
    RecurrencePattern,
    RecurrenceState,
    WeeklyRecurrence,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 1000


def next_weekday_after(cursor: Date, day_of_week: int) -> Date:
    """First date strictly after ``cursor`` falling on ``day_of_week`` (0=Sunday)."""
    days_ahead = (day_of_week - sunday_weekday(cursor)) % 7
    return add_days(cursor, days_ahead or 7)


def next_daily(pattern: DailyRecurrence, cursor: Date) -> Date:
    return add_days(cursor, 1)


def next_weekly(pattern: WeeklyRecurrence, cursor: Date) -> Date:
    return next_weekday_after(cursor, pattern.day_of_week)


def next_biweekly(pattern: BiweeklyRecurrence, cursor: Date) -> Date:
    """
    Next matching weekday in an active week.

    A week is active when ``floor(days since start_date / 7)`` is even, so
    the start date's own week anchors the cycle. Consecutive matching
    weekdays are seven days apart, which makes emitted dates exactly
    fourteen days apart.
    """
    candidate = next_weekday_after(cursor, pattern.day_of_week)
    if (days_between(pattern.start_date, candidate) // 7) % 2 != 0:
        candidate = add_days(candidate, 7)
    return candidate


def next_monthly(pattern: MonthlyRecurrence, cursor: Date) -> Date:
    """
    ``day_of_month`` in the cursor's month if still ahead, else the next month.

    Short months clamp to their last day. The clamp is recomputed from
    ``day_of_month`` every time, so day 31 gives Feb 29 then Mar 31.
    """
    candidate = clamp_day_of_month(cursor.year, cursor.month, pattern.day_of_month)
    if candidate > cursor:
        return candidate
    year, month = next_month(cursor.year, cursor.month)
    return clamp_day_of_month(year, month, pattern.day_of_month)


_STEPS = {
    DailyRecurrence: next_daily,
    WeeklyRecurrence: next_weekly,
    BiweeklyRecurrence: next_biweekly,
    MonthlyRecurrence: next_monthly,
}


class RecurrenceExpander:
    """
    Expands recurring patterns up to a horizon date.

    ``max_iterations`` caps the number of candidate dates examined in one
    run; hitting it raises ``ExpansionLimitExceeded`` instead of returning a
    truncated sequence.
    """

    def __init__(self, timezone: str = "UTC", max_iterations: int = DEFAULT_MAX_ITERATIONS):
        if max_iterations <= 0:
            raise ValueError("max_iterations must be greater than zero")
        self.timezone = timezone
        self.max_iterations = max_iterations

    def next_date(self, pattern: RecurrencePattern, cursor: Date) -> Date:
        """Compute the candidate that follows ``cursor`` for ``pattern``."""
        step = _STEPS.get(type(pattern))
        if step is None:
            raise InvalidRecurrencePattern(
                f"Pattern {pattern.pattern_id}: unsupported pattern type {type(pattern).__name__}"
            )
        return step(pattern, cursor)

    def expand(self, pattern: RecurrencePattern, generate_up_to) -> ExpansionResult:
        """
        Produce the occurrences of ``pattern`` up to ``generate_up_to``.

        Args:
            pattern: Pattern to expand; its watermark marks where to resume
            generate_up_to: Last calendar date (inclusive) to generate

        Returns:
            ExpansionResult with the new occurrences and the advanced
            watermark. An empty result is normal (nothing due yet, or the
            pattern is exhausted).

        Raises:
            ExpansionLimitExceeded: If the iteration ceiling is reached
        """
        horizon = parse_date(generate_up_to)

        if pattern.state is RecurrenceState.EXHAUSTED:
            logger.debug("Pattern %s is exhausted; nothing to expand", pattern.pattern_id)
            return ExpansionResult(
                occurrences=(),
                new_watermark=pattern.last_generated_date,
                occurrences_generated=pattern.occurrences_generated,
                exhausted=True,
            )

        cursor = pattern.last_generated_date or add_days(pattern.start_date, -1)
        count = pattern.occurrences_generated
        emitted: List[GeneratedOccurrence] = []
        watermark = pattern.last_generated_date
        exhausted = False

        for _ in range(self.max_iterations):
            if pattern.max_occurrences is not None and count >= pattern.max_occurrences:
                exhausted = True
                break

            candidate = self.next_date(pattern, cursor)
            cursor = candidate

            if candidate < pattern.start_date:
                continue

            if pattern.end_date is not None and candidate > pattern.end_date:
                exhausted = True
                break

            if candidate > horizon:
                break

            emitted.append(
                GeneratedOccurrence(
                    date=at_time(candidate, pattern.time_of_day, self.timezone),
                    source_pattern_id=pattern.pattern_id,
                )
            )
            watermark = candidate
            count += 1
        else:
            raise ExpansionLimitExceeded(
                f"Pattern {pattern.pattern_id}: expansion to {horizon} exceeded "
                f"{self.max_iterations} iterations"
            )

        logger.debug(
            "Expanded pattern %s to %s: %d occurrence(s), watermark %s%s",
            pattern.pattern_id,
            horizon,
            len(emitted),
            watermark,
            " (exhausted)" if exhausted else "",
        )
        return ExpansionResult(
            occurrences=tuple(emitted),
            new_watermark=watermark,
            occurrences_generated=count,
            exhausted=exhausted,
        )
