"""
In-memory booking store for tests and the CLI.

Implements the persistence guarantees the scheduling service relies on:
an atomic verify-then-insert for bookings and a per-pattern lock with an
atomic "bookings + watermark" commit for recurring expansion that re-checks
every occurrence against the stored bookings before inserting it. A
database-backed store would use a serializable transaction or a uniqueness
constraint plus ``SELECT ... FOR UPDATE`` on the pattern row instead of
``asyncio.Lock``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence

from pendulum import DateTime

from ..domain.exceptions import PatternNotFound
from ..domain.models import BusyInterval, RecurrencePattern, TimeRange, WeeklyAvailability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredBooking:
    """A persisted booking row."""
    business_id: str
    interval: TimeRange
    location_id: Optional[str] = None
    pattern_id: Optional[str] = None
    cancelled: bool = False


class InMemoryBookingStore:
    """
    Booking store that keeps everything in process memory.

    Location rule: with a location filter, bookings at that location and
    bookings without a location are busy; without a filter only bookings
    without a location are.
    """

    def __init__(
        self,
        availability: Optional[Dict[str, WeeklyAvailability]] = None,
        patterns: Iterable[RecurrencePattern] = (),
    ):
        self._availability: Dict[str, WeeklyAvailability] = dict(availability or {})
        self._patterns: Dict[str, RecurrencePattern] = {p.pattern_id: p for p in patterns}
        self._bookings: List[StoredBooking] = []
        self._write_lock = asyncio.Lock()
        self._pattern_locks: Dict[str, asyncio.Lock] = {}

    @property
    def bookings(self) -> List[StoredBooking]:
        return list(self._bookings)

    def set_availability(self, business_id: str, availability: WeeklyAvailability) -> None:
        self._availability[business_id] = availability

    def add_booking(self, booking: StoredBooking) -> None:
        """Seed a booking without any conflict check."""
        self._bookings.append(booking)

    def add_pattern(self, pattern: RecurrencePattern) -> None:
        self._patterns[pattern.pattern_id] = pattern

    def pattern(self, pattern_id: str) -> RecurrencePattern:
        try:
            return self._patterns[pattern_id]
        except KeyError:
            raise PatternNotFound(f"No recurring pattern with id '{pattern_id}'") from None

    async def get_availability(self, business_id: str) -> Optional[WeeklyAvailability]:
        return self._availability.get(business_id)

    async def get_busy_intervals(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
        location_id: Optional[str] = None,
    ) -> List[BusyInterval]:
        return self._select_busy(business_id, start, end, location_id)

    async def create_booking(
        self,
        business_id: str,
        interval: TimeRange,
        location_id: Optional[str] = None,
        buffer_minutes: int = 0,
    ) -> bool:
        async with self._write_lock:
            busy = self._select_busy(
                business_id, interval.start, interval.end, location_id, buffer_minutes
            )
            if any(interval.conflicts_with(b, buffer_minutes) for b in busy):
                logger.debug("Rejected booking %s: conflicts at insert time", interval)
                return False
            self._bookings.append(
                StoredBooking(business_id=business_id, interval=interval, location_id=location_id)
            )
            return True

    @asynccontextmanager
    async def lock_pattern(self, pattern_id: str) -> AsyncIterator[None]:
        lock = self._pattern_locks.setdefault(pattern_id, asyncio.Lock())
        async with lock:
            yield

    async def get_pattern(self, pattern_id: str) -> RecurrencePattern:
        return self.pattern(pattern_id)

    async def commit_expansion(
        self,
        business_id: str,
        pattern: RecurrencePattern,
        bookings: Sequence[TimeRange],
        location_id: Optional[str] = None,
        buffer_minutes: int = 0,
    ) -> List[TimeRange]:
        inserted: List[TimeRange] = []
        async with self._write_lock:
            for interval in bookings:
                busy = self._select_busy(
                    business_id, interval.start, interval.end, location_id, buffer_minutes
                )
                if any(interval.conflicts_with(b, buffer_minutes) for b in busy):
                    logger.debug("Dropped occurrence %s: conflicts at commit time", interval)
                    continue
                self._bookings.append(
                    StoredBooking(
                        business_id=business_id,
                        interval=interval,
                        location_id=location_id,
                        pattern_id=pattern.pattern_id,
                    )
                )
                inserted.append(interval)
            self._patterns[pattern.pattern_id] = pattern
        logger.debug(
            "Committed %d booking(s) for pattern %s, watermark %s",
            len(inserted),
            pattern.pattern_id,
            pattern.last_generated_date,
        )
        return inserted

    def _select_busy(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
        location_id: Optional[str],
        margin_minutes: int = 0,
    ) -> List[BusyInterval]:
        """Non-cancelled intervals overlapping ``[start, end)`` widened by the margin."""
        window = TimeRange(start=start, end=end)
        selected: List[BusyInterval] = []

        for booking in self._bookings:
            if booking.business_id != business_id or booking.cancelled:
                continue
            if location_id is None:
                if booking.location_id is not None:
                    continue
            elif booking.location_id not in (location_id, None):
                continue
            if window.conflicts_with(booking.interval, margin_minutes):
                selected.append(booking.interval)

        return sorted(selected, key=lambda r: r.start)
