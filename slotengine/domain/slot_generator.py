"""
Core business logic for generating bookable time slots.

Pure domain logic without any external dependencies (no database, no clock,
no I/O): identical inputs always produce identical slots.
"""

import logging
from datetime import date, timedelta
from typing import Iterable, List, Sequence

import pendulum
from pendulum import DateTime

from .dates import parse_date
from .models import BusyInterval, DayHours, TimeRange, TimeSlot

logger = logging.getLogger(__name__)

DEFAULT_GRANULARITY_MINUTES = 30


class SlotGenerator:
    """
    Generates candidate start times for a service on a single day.

    Algorithm:
    1. Resolve the day's opening window (closed day -> no slots)
    2. Walk the window in steps of ``granularity_minutes``
    3. Drop starts whose service would run past closing time
    4. Drop starts that overlap any busy interval widened by the buffer
    5. Return the survivors in ascending order
    """

    def __init__(
        self,
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
        timezone: str = "UTC",
    ):
        if granularity_minutes <= 0:
            raise ValueError("granularity_minutes must be greater than zero")
        self.granularity_minutes = granularity_minutes
        self.timezone = timezone

    def generate(
        self,
        day: date,
        day_hours: DayHours,
        duration_minutes: int,
        busy_intervals: Sequence[BusyInterval] = (),
        buffer_minutes: int = 0,
    ) -> List[TimeSlot]:
        """
        Generate all free slots for ``day``.

        Args:
            day: Calendar date to generate slots for
            day_hours: Opening hours that apply to ``day``
            duration_minutes: Length of the service being booked
            busy_intervals: Existing bookings that block time
            buffer_minutes: Idle time kept free around every busy interval

        Returns:
            List of TimeSlot objects in ascending start order
        """
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be greater than zero")
        if buffer_minutes < 0:
            raise ValueError("buffer_minutes cannot be negative")

        window = day_hours.window(parse_date(day), self.timezone)
        if window is None:
            return []

        slots: List[TimeSlot] = []
        duration = timedelta(minutes=duration_minutes)

        for start in self._candidate_starts(window):
            candidate = TimeRange(start=start, end=start + duration)

            if candidate.end > window.end:
                break

            if any(candidate.conflicts_with(busy, buffer_minutes) for busy in busy_intervals):
                continue

            slots.append(TimeSlot(start=start, duration_minutes=duration_minutes))

        logger.debug(
            "Generated %d slot(s) for %s (duration=%d, buffer=%d, busy=%d)",
            len(slots),
            day,
            duration_minutes,
            buffer_minutes,
            len(busy_intervals),
        )
        return slots

    def _candidate_starts(self, window: TimeRange) -> Iterable[DateTime]:
        """Yield every step-aligned start inside ``[open, close)``."""
        current = window.start
        while current < window.end:
            yield current
            current = current.add(minutes=self.granularity_minutes)


def filter_by_advance_notice(
    slots: Sequence[TimeSlot],
    now: DateTime,
    minimum_notice_hours: int = 0,
) -> List[TimeSlot]:
    """
    Drop slots that start too soon to be booked.

    Only slots on the same calendar day as ``now`` are filtered, matching the
    booking rule that advance notice applies to same-day bookings; slots on
    other days are returned unchanged. ``now`` is compared in each slot's
    own timezone.
    """
    if minimum_notice_hours < 0:
        raise ValueError("minimum_notice_hours cannot be negative")

    now = pendulum.instance(now)
    earliest = now.add(hours=minimum_notice_hours)
    kept: List[TimeSlot] = []

    for slot in slots:
        local_now = now.in_timezone(slot.start.tzinfo)
        if slot.start.date() == local_now.date() and slot.start < earliest:
            continue
        kept.append(slot)

    return kept
