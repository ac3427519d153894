"""
Conflict detection for a proposed booking, with ranked alternatives.

A booking UI can offer a slot that gets taken by a concurrent request before
the customer confirms. Rather than failing, the detector returns the nearest
free slots of the same day so the caller can recover in one round trip.
"""

import logging
from typing import List, Sequence

import pendulum
from pendulum import DateTime

from .models import BusyInterval, ConflictResult, DayHours, TimeRange, TimeSlot
from .slot_generator import SlotGenerator

logger = logging.getLogger(__name__)


class ConflictDetector:
    """
    Validates a proposed interval and searches for alternatives.

    Alternatives are the ``alternatives_before`` closest free slots before the
    requested start and the ``alternatives_after`` closest after it, ranked by
    absolute distance from the requested start; ties prefer the later slot.
    """

    def __init__(
        self,
        slot_generator: SlotGenerator,
        alternatives_before: int = 3,
        alternatives_after: int = 3,
    ):
        if alternatives_before < 0 or alternatives_after < 0:
            raise ValueError("alternative counts cannot be negative")
        self.slot_generator = slot_generator
        self.alternatives_before = alternatives_before
        self.alternatives_after = alternatives_after

    def check(
        self,
        proposed: TimeRange,
        duration_minutes: int,
        busy_intervals: Sequence[BusyInterval],
        day_hours: DayHours,
        buffer_minutes: int = 0,
    ) -> ConflictResult:
        """
        Check ``proposed`` against ``busy_intervals``.

        ``buffer_minutes`` must be the buffer the slot was offered with.

        Returns:
            ConflictResult; ``alternatives`` is empty when nothing else is free
        """
        conflicting = tuple(
            busy for busy in busy_intervals
            if proposed.conflicts_with(busy, buffer_minutes)
        )

        if not conflicting:
            return ConflictResult.no_conflict()

        alternatives = self.find_alternatives(
            requested_start=proposed.start,
            duration_minutes=duration_minutes,
            busy_intervals=busy_intervals,
            day_hours=day_hours,
            buffer_minutes=buffer_minutes,
        )

        logger.debug(
            "Proposed %s conflicts with %d booking(s); %d alternative(s) found",
            proposed,
            len(conflicting),
            len(alternatives),
        )
        return ConflictResult(
            has_conflict=True,
            alternatives=tuple(alternatives),
            conflicting=conflicting,
        )

    def find_alternatives(
        self,
        requested_start: DateTime,
        duration_minutes: int,
        busy_intervals: Sequence[BusyInterval],
        day_hours: DayHours,
        buffer_minutes: int = 0,
    ) -> List[TimeSlot]:
        """Rank the free slots of the requested day around ``requested_start``."""
        requested_start = pendulum.instance(requested_start)
        local_start = requested_start.in_timezone(self.slot_generator.timezone)
        free_slots = self.slot_generator.generate(
            day=local_start.date(),
            day_hours=day_hours,
            duration_minutes=duration_minutes,
            busy_intervals=busy_intervals,
            buffer_minutes=buffer_minutes,
        )

        before = [s for s in free_slots if s.start < requested_start]
        after = [s for s in free_slots if s.start > requested_start]

        nearby: List[TimeSlot] = []
        if self.alternatives_before:
            nearby.extend(before[-self.alternatives_before:])
        nearby.extend(after[:self.alternatives_after])

        return sorted(
            nearby,
            key=lambda slot: (
                abs((slot.start - requested_start).total_seconds()),
                -slot.start.timestamp(),
            ),
        )


def describe_alternative(requested_start: DateTime, slot: TimeSlot) -> str:
    """
    Explain an alternative relative to the requested time.

    Example: ``"15 minutes later"``, ``"Close alternative: 2:30 PM"``.
    """
    offset_minutes = (slot.start - requested_start).total_seconds() / 60
    distance = abs(offset_minutes)

    if distance < 30:
        direction = "later" if offset_minutes > 0 else "earlier"
        return f"{round(distance)} minutes {direction}"
    if distance < 60:
        return f"Close alternative: {slot.start.format('h:mm A')}"
    if distance < 180:
        return f"Alternative time: {slot.start.format('h:mm A')}"
    return f"Available at {slot.start.format('h:mm A')}"
