"""
Application services for computing, validating and materializing bookings.

The service coordinates reads and writes through a booking store adapter and
delegates every decision to the pure domain components. The store is only
described by a protocol, so a database-backed implementation and the
in-memory one used in tests are interchangeable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import (
    TYPE_CHECKING,
    AsyncContextManager,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
)

import pendulum
from pendulum import DateTime

from ..domain.availability import hours_for
from ..domain.conflict_detector import ConflictDetector
from ..domain.dates import add_days, parse_date, parse_instant
from ..domain.exceptions import InvalidDateRange, SchedulingError
from ..domain.models import (
    BusyInterval,
    DayHours,
    ExpansionResult,
    RecurrencePattern,
    TimeRange,
    TimeSlot,
    WeeklyAvailability,
)
from ..domain.recurrence import RecurrenceExpander
from ..domain.slot_generator import SlotGenerator, filter_by_advance_notice

if TYPE_CHECKING:
    from ..config import AppConfig

logger = logging.getLogger(__name__)


class BookingStoreProtocol(Protocol):
    """Protocol describing the persistence behaviour needed by the service."""

    async def get_availability(self, business_id: str) -> Optional[WeeklyAvailability]:
        """Return the business's weekly hours, or None if never configured."""

    async def get_busy_intervals(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
        location_id: Optional[str] = None,
    ) -> List[BusyInterval]:
        """Return non-cancelled bookings overlapping ``[start, end)``."""

    async def create_booking(
        self,
        business_id: str,
        interval: TimeRange,
        location_id: Optional[str] = None,
        buffer_minutes: int = 0,
    ) -> bool:
        """
        Insert a booking unless it conflicts, as one atomic step.

        Returns False when a conflicting booking exists at insert time.
        """

    def lock_pattern(self, pattern_id: str) -> AsyncContextManager[None]:
        """Hold the single-writer lock of a recurring pattern."""

    async def get_pattern(self, pattern_id: str) -> RecurrencePattern:
        """Load a recurring pattern; raises PatternNotFound if unknown."""

    async def commit_expansion(
        self,
        business_id: str,
        pattern: RecurrencePattern,
        bookings: Sequence[TimeRange],
        location_id: Optional[str] = None,
        buffer_minutes: int = 0,
    ) -> List[TimeRange]:
        """
        Persist generated bookings and the advanced pattern together.

        Each booking is re-verified against the stored bookings at commit
        time, like ``create_booking``; conflicting ones are dropped. Returns
        the bookings actually inserted.
        """


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating a proposed slot, with ISO-8601 alternatives."""
    conflict: bool
    alternatives: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"conflict": self.conflict, "alternatives": list(self.alternatives)}


@dataclass(frozen=True)
class BookingOutcome:
    """Result of a booking attempt."""
    confirmed: bool
    start: str
    alternatives: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "confirmed": self.confirmed,
            "start": self.start,
            "alternatives": list(self.alternatives),
            "reason": self.reason,
        }


@dataclass
class GenerationSummary:
    """Counts from materializing recurring patterns into bookings."""
    created: int = 0
    skipped: int = 0
    errors: Dict[str, SchedulingError] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return (
            f"Generated {self.created} bookings, skipped {self.skipped} conflicts, "
            f"{len(self.errors)} errors"
        )


class SchedulingService:
    """
    Host-facing facade over slot generation, conflict detection and
    recurrence expansion.

    ``clock`` supplies "now" for the advance-notice rule so results stay
    reproducible in tests.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        slot_generator: SlotGenerator,
        conflict_detector: ConflictDetector,
        expander: RecurrenceExpander,
        buffer_minutes: int = 0,
        minimum_advance_hours: int = 0,
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> None:
        self._store = store
        self._slot_generator = slot_generator
        self._conflict_detector = conflict_detector
        self._expander = expander
        self.buffer_minutes = buffer_minutes
        self.minimum_advance_hours = minimum_advance_hours
        self._clock = clock or (lambda: pendulum.now(slot_generator.timezone))

    @classmethod
    def from_config(
        cls,
        store: BookingStoreProtocol,
        config: "AppConfig",
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> "SchedulingService":
        """Wire the domain components from application configuration."""
        defaults = config.defaults
        generator = SlotGenerator(
            granularity_minutes=defaults.slot_granularity_minutes,
            timezone=config.timezone,
        )
        detector = ConflictDetector(
            slot_generator=generator,
            alternatives_before=defaults.alternatives_before,
            alternatives_after=defaults.alternatives_after,
        )
        expander = RecurrenceExpander(
            timezone=config.timezone,
            max_iterations=defaults.max_expansion_iterations,
        )
        return cls(
            store=store,
            slot_generator=generator,
            conflict_detector=detector,
            expander=expander,
            buffer_minutes=defaults.buffer_minutes,
            minimum_advance_hours=defaults.minimum_advance_hours,
            clock=clock,
        )

    @property
    def timezone(self) -> str:
        return self._slot_generator.timezone

    async def compute_slots(
        self,
        business_id: str,
        day: "date | str",
        service_duration: int,
        buffer_minutes: Optional[int] = None,
        location_id: Optional[str] = None,
    ) -> List[str]:
        """
        Bookable starts for ``day`` as ISO-8601 instants.

        A business without configured hours, or a closed day, yields ``[]``.
        """
        slots = await self.available_slots(
            business_id=business_id,
            day=day,
            service_duration=service_duration,
            buffer_minutes=buffer_minutes,
            location_id=location_id,
        )
        return [slot.isoformat() for slot in slots]

    async def available_slots(
        self,
        business_id: str,
        day: "date | str",
        service_duration: int,
        buffer_minutes: Optional[int] = None,
        location_id: Optional[str] = None,
    ) -> List[TimeSlot]:
        """Like ``compute_slots`` but returns ``TimeSlot`` objects."""
        target = parse_date(day)
        buffer = self._buffer(buffer_minutes)

        availability = await self._store.get_availability(business_id)
        day_hours = hours_for(availability, target)
        if not day_hours.is_open:
            logger.debug("Business %s is closed on %s", business_id, target)
            return []

        busy = await self.fetch_busy_intervals(
            business_id, target, target, location_id, buffer_minutes=buffer
        )
        slots = self._slot_generator.generate(
            day=target,
            day_hours=day_hours,
            duration_minutes=service_duration,
            busy_intervals=busy,
            buffer_minutes=buffer,
        )
        return filter_by_advance_notice(slots, self._clock(), self.minimum_advance_hours)

    async def dates_with_slots(
        self,
        business_id: str,
        start: "date | str",
        end: "date | str",
        service_duration: int,
        location_id: Optional[str] = None,
    ) -> List[str]:
        """
        Dates between ``start`` and ``end`` (inclusive) with at least one slot.

        Raises:
            InvalidDateRange: If ``start`` is after ``end``
        """
        first = parse_date(start)
        last = parse_date(end)
        if first > last:
            raise InvalidDateRange(f"Start date {first} must not be after end date {last}")

        availability = await self._store.get_availability(business_id)
        if availability is None:
            return []

        busy = await self.fetch_busy_intervals(business_id, first, last, location_id)
        now = self._clock()
        dates: List[str] = []

        current = first
        while current <= last:
            day_hours = hours_for(availability, current)
            if day_hours.is_open:
                slots = self._slot_generator.generate(
                    day=current,
                    day_hours=day_hours,
                    duration_minutes=service_duration,
                    busy_intervals=busy,
                    buffer_minutes=self.buffer_minutes,
                )
                slots = filter_by_advance_notice(slots, now, self.minimum_advance_hours)
                if slots:
                    dates.append(current.to_date_string())
            current = add_days(current, 1)

        return dates

    def validate_and_suggest(
        self,
        proposed: TimeRange,
        service_duration: int,
        busy_intervals: Sequence[BusyInterval],
        day_hours: DayHours,
        buffer_minutes: Optional[int] = None,
    ) -> ValidationOutcome:
        """Check a proposed interval; on conflict, list ranked alternatives."""
        result = self._conflict_detector.check(
            proposed=proposed,
            duration_minutes=service_duration,
            busy_intervals=busy_intervals,
            day_hours=day_hours,
            buffer_minutes=self._buffer(buffer_minutes),
        )
        return ValidationOutcome(
            conflict=result.has_conflict,
            alternatives=[slot.isoformat() for slot in result.alternatives],
        )

    async def book(
        self,
        business_id: str,
        start: "datetime | str",
        service_duration: int,
        location_id: Optional[str] = None,
    ) -> BookingOutcome:
        """
        Re-validate a chosen slot against a fresh read and book it atomically.

        A start in the past, inside the minimum advance window, on a closed
        day or outside opening hours is refused with a ``reason``. If another
        request wins the race between validation and insert, the attempt is
        reported as a conflict with alternatives computed from a second fresh
        read.
        """
        begin = parse_instant(start, self.timezone)
        proposed = TimeRange(start=begin, end=begin + timedelta(minutes=service_duration))
        day = parse_date(begin.in_timezone(self.timezone))

        availability = await self._store.get_availability(business_id)
        day_hours = hours_for(availability, day)

        reason = self._booking_rule_violation(proposed, availability, day_hours, day)
        if reason is not None:
            logger.info("Refused booking at %s for %s: %s", begin, business_id, reason)
            return BookingOutcome(confirmed=False, start=begin.isoformat(), reason=reason)

        busy = await self.fetch_busy_intervals(business_id, day, day, location_id)
        outcome = self.validate_and_suggest(proposed, service_duration, busy, day_hours)
        if outcome.conflict:
            return BookingOutcome(
                confirmed=False,
                start=begin.isoformat(),
                alternatives=outcome.alternatives,
                reason="Time slot is not available",
            )

        created = await self._store.create_booking(
            business_id, proposed, location_id=location_id, buffer_minutes=self.buffer_minutes
        )
        if not created:
            logger.info("Booking at %s for %s lost a concurrent race", begin, business_id)
            busy = await self.fetch_busy_intervals(business_id, day, day, location_id)
            outcome = self.validate_and_suggest(proposed, service_duration, busy, day_hours)
            return BookingOutcome(
                confirmed=False,
                start=begin.isoformat(),
                alternatives=outcome.alternatives,
                reason="Time slot is not available",
            )

        logger.info("Booked %s for business %s", proposed, business_id)
        return BookingOutcome(confirmed=True, start=begin.isoformat())

    def _booking_rule_violation(
        self,
        proposed: TimeRange,
        availability: Optional[WeeklyAvailability],
        day_hours: DayHours,
        day: date,
    ) -> Optional[str]:
        """Reason ``proposed`` may not be booked regardless of other bookings."""
        now = self._clock()
        if proposed.start < now:
            return "Cannot book in the past"
        if proposed.start < now + timedelta(hours=self.minimum_advance_hours):
            hours = self.minimum_advance_hours
            plural = "s" if hours != 1 else ""
            return f"Bookings must be made at least {hours} hour{plural} in advance"
        if availability is None:
            return "Business has no availability set"
        window = day_hours.window(day, self.timezone)
        if window is None:
            return "Business is closed on this day"
        if proposed.start < window.start or proposed.end > window.end:
            return "Outside opening hours"
        return None

    def run_expansion(self, pattern: RecurrencePattern, up_to: "date | str") -> ExpansionResult:
        """
        Expand ``pattern`` up to ``up_to``; the host persists the occurrences
        and ``result.new_watermark``.
        """
        return self._expander.expand(pattern, up_to)

    async def generate_bookings(
        self,
        business_id: str,
        pattern_ids: Sequence[str],
        up_to: "date | str",
        service_duration: int,
        location_id: Optional[str] = None,
    ) -> GenerationSummary:
        """
        Materialize recurring patterns into bookings.

        Per pattern: lock, reload, expand, conflict-check every occurrence
        against a fresh read, then commit the accepted bookings together with
        the advanced watermark, and release. Conflicting occurrences are
        skipped. A pattern that fails validation or hits the iteration
        ceiling is reported in ``errors`` and the remaining patterns still run.
        """
        summary = GenerationSummary()

        for pattern_id in pattern_ids:
            try:
                created, skipped = await self._generate_for_pattern(
                    business_id, pattern_id, up_to, service_duration, location_id
                )
            except SchedulingError as exc:
                logger.error("Recurring pattern %s failed: %s", pattern_id, exc)
                summary.errors[pattern_id] = exc
                continue
            summary.created += created
            summary.skipped += skipped

        logger.info(summary.message)
        return summary

    async def _generate_for_pattern(
        self,
        business_id: str,
        pattern_id: str,
        up_to: "date | str",
        service_duration: int,
        location_id: Optional[str],
    ) -> "tuple[int, int]":
        async with self._store.lock_pattern(pattern_id):
            pattern = await self._store.get_pattern(pattern_id)
            result = self.run_expansion(pattern, up_to)

            availability = await self._store.get_availability(business_id)
            accepted: List[TimeRange] = []
            skipped = 0

            for occurrence in result.occurrences:
                interval = TimeRange(
                    start=occurrence.date,
                    end=occurrence.date.add(minutes=service_duration),
                )
                day = occurrence.calendar_date
                busy = await self.fetch_busy_intervals(business_id, day, day, location_id)
                check = self._conflict_detector.check(
                    proposed=interval,
                    duration_minutes=service_duration,
                    busy_intervals=[*busy, *accepted],
                    day_hours=hours_for(availability, day),
                    buffer_minutes=self.buffer_minutes,
                )
                if check.has_conflict:
                    logger.warning(
                        "Skipping occurrence %s of pattern %s: slot is taken",
                        occurrence.date,
                        pattern_id,
                    )
                    skipped += 1
                    continue
                accepted.append(interval)

            committed = await self._store.commit_expansion(
                business_id,
                pattern.advanced(result),
                accepted,
                location_id,
                buffer_minutes=self.buffer_minutes,
            )
            if len(committed) < len(accepted):
                logger.warning(
                    "Pattern %s: %d occurrence(s) taken before commit",
                    pattern_id,
                    len(accepted) - len(committed),
                )
                skipped += len(accepted) - len(committed)

        logger.info(
            "Pattern %s: %d booking(s) created, %d skipped, watermark %s",
            pattern_id,
            len(committed),
            skipped,
            result.new_watermark,
        )
        return len(committed), skipped

    async def fetch_busy_intervals(
        self,
        business_id: str,
        first_day: date,
        last_day: date,
        location_id: Optional[str] = None,
        buffer_minutes: Optional[int] = None,
    ) -> List[BusyInterval]:
        """
        Busy intervals overlapping the local days ``first_day`` .. ``last_day``,
        with the window widened by the buffer on both sides.
        """
        margin = self._buffer(buffer_minutes)
        window_start = pendulum.datetime(
            first_day.year, first_day.month, first_day.day, tz=self.timezone
        ).subtract(minutes=margin)
        window_end = pendulum.datetime(
            last_day.year, last_day.month, last_day.day, tz=self.timezone
        ).add(days=1, minutes=margin)
        return await self._store.get_busy_intervals(
            business_id, window_start, window_end, location_id=location_id
        )

    def _buffer(self, buffer_minutes: Optional[int]) -> int:
        return self.buffer_minutes if buffer_minutes is None else buffer_minutes
