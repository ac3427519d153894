"""
Tests for the SchedulingService orchestration layer.
"""

import asyncio
from datetime import time
from typing import Optional

import pendulum
import pytest

from slotengine.adapters.memory_store import InMemoryBookingStore, StoredBooking
from slotengine.domain.conflict_detector import ConflictDetector
from slotengine.domain.exceptions import InvalidDateRange, PatternNotFound
from slotengine.domain.models import (
    DayHours,
    RecurrenceState,
    TimeRange,
    WeeklyAvailability,
    WeeklyRecurrence,
)
from slotengine.domain.recurrence import RecurrenceExpander
from slotengine.domain.slot_generator import SlotGenerator
from slotengine.services.scheduling import SchedulingService

BUSINESS = "studio"
MONDAY = "2024-11-25"


def _at(value: str) -> pendulum.DateTime:
    return pendulum.parse(value, tz="UTC")


def _booking(start: str, end: str, location_id: Optional[str] = None, **kwargs) -> StoredBooking:
    return StoredBooking(
        business_id=BUSINESS,
        interval=TimeRange(start=_at(start), end=_at(end)),
        location_id=location_id,
        **kwargs,
    )


class YieldingStore(InMemoryBookingStore):
    """Store whose reads suspend, like a database round trip."""

    async def get_busy_intervals(self, *args, **kwargs):
        busy = await super().get_busy_intervals(*args, **kwargs)
        await asyncio.sleep(0)
        return busy


def _store(
    *bookings: StoredBooking, patterns=(), store_cls=InMemoryBookingStore
) -> InMemoryBookingStore:
    store = store_cls(
        availability={
            BUSINESS: WeeklyAvailability(monday=DayHours.from_strings("09:00", "17:00"))
        },
        patterns=patterns,
    )
    for booking in bookings:
        store.add_booking(booking)
    return store


def _build_service(
    store: InMemoryBookingStore,
    buffer_minutes: int = 0,
    minimum_advance_hours: int = 0,
    now: str = "2024-11-01 08:00",
) -> SchedulingService:
    generator = SlotGenerator(granularity_minutes=30, timezone="UTC")
    return SchedulingService(
        store=store,
        slot_generator=generator,
        conflict_detector=ConflictDetector(generator),
        expander=RecurrenceExpander(timezone="UTC"),
        buffer_minutes=buffer_minutes,
        minimum_advance_hours=minimum_advance_hours,
        clock=lambda: _at(now),
    )


class TestComputeSlots:
    """Tests for compute_slots."""

    def test_full_day(self):
        service = _build_service(_store())

        slots = asyncio.run(service.compute_slots(BUSINESS, MONDAY, service_duration=30))

        assert len(slots) == 16
        assert slots[0] == "2024-11-25T09:00:00+00:00"
        assert slots[-1] == "2024-11-25T16:30:00+00:00"

    def test_existing_booking_removes_slot(self):
        service = _build_service(_store(_booking("2024-11-25 10:00", "2024-11-25 10:30")))

        slots = asyncio.run(service.compute_slots(BUSINESS, MONDAY, service_duration=30))

        assert "2024-11-25T10:00:00+00:00" not in slots
        assert len(slots) == 15

    def test_cancelled_booking_is_ignored(self):
        store = _store(_booking("2024-11-25 10:00", "2024-11-25 10:30", cancelled=True))

        slots = asyncio.run(_build_service(store).compute_slots(BUSINESS, MONDAY, 30))

        assert len(slots) == 16

    def test_other_business_booking_is_ignored(self):
        store = _store()
        store.add_booking(
            StoredBooking(
                business_id="elsewhere",
                interval=TimeRange(start=_at("2024-11-25 10:00"), end=_at("2024-11-25 10:30")),
            )
        )

        slots = asyncio.run(_build_service(store).compute_slots(BUSINESS, MONDAY, 30))

        assert len(slots) == 16

    def test_closed_day_and_unknown_business(self):
        service = _build_service(_store())

        assert asyncio.run(service.compute_slots(BUSINESS, "2024-11-26", 30)) == []
        assert asyncio.run(service.compute_slots("unknown", MONDAY, 30)) == []

    def test_default_buffer_and_override(self):
        store = _store(_booking("2024-11-25 10:00", "2024-11-25 10:30"))
        service = _build_service(store, buffer_minutes=15)

        with_buffer = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30))
        without = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30, buffer_minutes=0))

        assert "2024-11-25T10:30:00+00:00" not in with_buffer
        assert "2024-11-25T10:30:00+00:00" in without

    def test_minimum_advance_notice(self):
        service = _build_service(_store(), minimum_advance_hours=2, now="2024-11-25 10:05")

        slots = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30))

        assert slots[0] == "2024-11-25T12:30:00+00:00"

    def test_buffer_reaches_across_midnight(self):
        """A booking ending just before midnight blocks the next day's first slot."""
        store = InMemoryBookingStore(
            availability={BUSINESS: WeeklyAvailability(monday=DayHours.from_strings("00:00", "06:00"))}
        )
        store.add_booking(_booking("2024-11-24 23:40", "2024-11-24 23:55"))
        service = _build_service(store, buffer_minutes=15)

        slots = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30))

        assert "2024-11-25T00:00:00+00:00" not in slots
        assert "2024-11-25T00:30:00+00:00" in slots

    def test_location_filter(self):
        """Bookings at a location only block that location; unassigned ones block all."""
        store = _store(
            _booking("2024-11-25 10:00", "2024-11-25 10:30", location_id="downtown"),
            _booking("2024-11-25 14:00", "2024-11-25 14:30"),
        )
        service = _build_service(store)

        unfiltered = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30))
        downtown = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30, location_id="downtown"))
        uptown = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30, location_id="uptown"))

        assert "2024-11-25T10:00:00+00:00" in unfiltered
        assert "2024-11-25T10:00:00+00:00" not in downtown
        assert "2024-11-25T10:00:00+00:00" in uptown
        for slots in (unfiltered, downtown, uptown):
            assert "2024-11-25T14:00:00+00:00" not in slots


class TestDatesWithSlots:
    """Tests for dates_with_slots."""

    def test_open_days_in_range(self):
        service = _build_service(_store())

        dates = asyncio.run(service.dates_with_slots(BUSINESS, "2024-11-25", "2024-12-08", 30))

        assert dates == ["2024-11-25", "2024-12-02"]

    def test_fully_booked_day_excluded(self):
        store = _store(_booking("2024-11-25 09:00", "2024-11-25 17:00"))

        dates = asyncio.run(
            _build_service(store).dates_with_slots(BUSINESS, "2024-11-25", "2024-12-02", 30)
        )

        assert dates == ["2024-12-02"]

    def test_single_day_range(self):
        service = _build_service(_store())

        assert asyncio.run(service.dates_with_slots(BUSINESS, MONDAY, MONDAY, 30)) == [MONDAY]

    def test_reversed_range_raises(self):
        service = _build_service(_store())

        with pytest.raises(InvalidDateRange):
            asyncio.run(service.dates_with_slots(BUSINESS, "2024-12-02", "2024-11-25", 30))

    def test_no_availability(self):
        service = _build_service(_store())

        assert asyncio.run(service.dates_with_slots("unknown", "2024-11-25", "2024-12-02", 30)) == []


class TestValidateAndSuggest:
    """Tests for validate_and_suggest."""

    def test_conflict_returns_iso_alternatives(self):
        service = _build_service(_store())
        busy = [TimeRange(start=_at("2024-11-25 12:00"), end=_at("2024-11-25 12:30"))]
        proposed = TimeRange(start=_at("2024-11-25 12:00"), end=_at("2024-11-25 12:30"))

        outcome = service.validate_and_suggest(
            proposed, 30, busy, DayHours.from_strings("09:00", "17:00")
        )

        assert outcome.conflict
        assert outcome.alternatives[0] == "2024-11-25T12:30:00+00:00"
        assert outcome.to_dict()["conflict"] is True

    def test_no_conflict(self):
        service = _build_service(_store())
        proposed = TimeRange(start=_at("2024-11-25 12:00"), end=_at("2024-11-25 12:30"))

        outcome = service.validate_and_suggest(proposed, 30, [], DayHours.from_strings("09:00", "17:00"))

        assert outcome.to_dict() == {"conflict": False, "alternatives": []}


class RacingStore(InMemoryBookingStore):
    """Store where a competing booking lands just before our insert."""

    def __init__(self, competitor: StoredBooking, **kwargs):
        super().__init__(**kwargs)
        self._competitor = competitor

    async def create_booking(self, business_id, interval, location_id=None, buffer_minutes=0):
        if self._competitor is not None:
            self.add_booking(self._competitor)
            self._competitor = None
        return await super().create_booking(business_id, interval, location_id, buffer_minutes)


class TestBook:
    """Tests for book."""

    def test_book_then_slot_disappears(self):
        store = _store()
        service = _build_service(store)

        outcome = asyncio.run(service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30))
        slots = asyncio.run(service.compute_slots(BUSINESS, MONDAY, 30))

        assert outcome.confirmed
        assert outcome.alternatives == []
        assert len(store.bookings) == 1
        assert "2024-11-25T10:00:00+00:00" not in slots

    def test_double_booking_rejected_with_alternatives(self):
        service = _build_service(_store())

        asyncio.run(service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30))
        second = asyncio.run(service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30))

        assert not second.confirmed
        assert second.alternatives[:2] == [
            "2024-11-25T10:30:00+00:00",
            "2024-11-25T09:30:00+00:00",
        ]

    def test_lost_race_reports_conflict(self):
        availability = {BUSINESS: WeeklyAvailability(monday=DayHours.from_strings("09:00", "17:00"))}
        store = RacingStore(
            competitor=_booking("2024-11-25 10:00", "2024-11-25 10:30"),
            availability=availability,
        )
        service = _build_service(store)

        outcome = asyncio.run(service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30))

        assert not outcome.confirmed
        assert "2024-11-25T10:00:00+00:00" not in outcome.alternatives
        assert outcome.alternatives
        assert len(store.bookings) == 1

    def test_concurrent_requests_book_once(self):
        store = _store(store_cls=YieldingStore)
        service = _build_service(store)

        async def both():
            return await asyncio.gather(
                service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30),
                service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30),
            )

        outcomes = asyncio.run(both())

        assert sorted(o.confirmed for o in outcomes) == [False, True]
        assert len(store.bookings) == 1


class TestBookingRules:
    """Tests for the rules book() enforces before looking at other bookings."""

    def _service(self, store=None):
        return _build_service(
            store or _store(), minimum_advance_hours=2, now="2024-11-25 09:00"
        )

    @pytest.mark.parametrize(
        "start, reason",
        [
            ("2024-11-25T08:00:00+00:00", "Cannot book in the past"),
            ("2024-11-25T09:30:00+00:00", "Bookings must be made at least 2 hours in advance"),
            ("2024-12-01T12:00:00+00:00", "Business is closed on this day"),
            ("2024-12-02T03:00:00+00:00", "Outside opening hours"),
            ("2024-12-02T16:45:00+00:00", "Outside opening hours"),
        ],
    )
    def test_refused(self, start, reason):
        store = _store()

        outcome = asyncio.run(self._service(store).book(BUSINESS, start, 30))

        assert not outcome.confirmed
        assert outcome.reason == reason
        assert outcome.to_dict()["reason"] == reason
        assert store.bookings == []

    def test_business_without_availability(self):
        store = _store()

        outcome = asyncio.run(self._service(store).book("unknown", "2024-12-02T10:00:00+00:00", 30))

        assert not outcome.confirmed
        assert outcome.reason == "Business has no availability set"
        assert store.bookings == []

    def test_exactly_at_notice_boundary(self):
        outcome = asyncio.run(self._service().book(BUSINESS, "2024-11-25T11:00:00+00:00", 30))

        assert outcome.confirmed
        assert outcome.reason is None

    def test_last_slot_of_day(self):
        outcome = asyncio.run(self._service().book(BUSINESS, "2024-12-02T16:30:00+00:00", 30))

        assert outcome.confirmed


def _weekly_pattern(**kwargs) -> WeeklyRecurrence:
    return WeeklyRecurrence(
        pattern_id="checkup",
        time_of_day=time(10, 0),
        start_date=pendulum.date(2024, 11, 25),
        day_of_week=1,
        **kwargs,
    )


class TestGenerateBookings:
    """Tests for generate_bookings."""

    def test_creates_bookings_and_skips_conflicts(self):
        store = _store(
            _booking("2024-12-02 10:00", "2024-12-02 10:30"),
            patterns=[_weekly_pattern()],
        )
        service = _build_service(store)

        summary = asyncio.run(service.generate_bookings(BUSINESS, ["checkup"], "2024-12-16", 30))

        assert summary.created == 3
        assert summary.skipped == 1
        assert summary.errors == {}
        assert summary.message == "Generated 3 bookings, skipped 1 conflicts, 0 errors"
        generated = [b for b in store.bookings if b.pattern_id == "checkup"]
        assert [b.interval.start.to_date_string() for b in generated] == [
            "2024-11-25", "2024-12-09", "2024-12-16",
        ]

    def test_watermark_is_persisted(self):
        store = _store(patterns=[_weekly_pattern(max_occurrences=10)])
        service = _build_service(store)

        asyncio.run(service.generate_bookings(BUSINESS, ["checkup"], "2024-12-09", 30))
        pattern = store.pattern("checkup")

        assert pattern.last_generated_date == pendulum.date(2024, 12, 9)
        assert pattern.occurrences_generated == 3
        assert pattern.state is RecurrenceState.ADVANCING

    def test_rerun_is_idempotent(self):
        store = _store(patterns=[_weekly_pattern()])
        service = _build_service(store)

        asyncio.run(service.generate_bookings(BUSINESS, ["checkup"], "2024-12-09", 30))
        again = asyncio.run(service.generate_bookings(BUSINESS, ["checkup"], "2024-12-09", 30))

        assert again.created == 0
        assert len(store.bookings) == 3

    def test_concurrent_generation_does_not_duplicate(self):
        store = _store(patterns=[_weekly_pattern()])
        service = _build_service(store)

        async def both():
            return await asyncio.gather(
                service.generate_bookings(BUSINESS, ["checkup"], "2024-12-09", 30),
                service.generate_bookings(BUSINESS, ["checkup"], "2024-12-09", 30),
            )

        summaries = asyncio.run(both())

        assert sum(s.created for s in summaries) == 3
        assert len(store.bookings) == 3

    def test_pattern_errors_do_not_stop_others(self):
        store = _store(patterns=[_weekly_pattern()])
        service = _build_service(store)

        summary = asyncio.run(
            service.generate_bookings(BUSINESS, ["missing", "checkup"], "2024-12-09", 30)
        )

        assert summary.created == 3
        assert isinstance(summary.errors["missing"], PatternNotFound)

    def test_commit_rechecks_bookings(self):
        """A booking that lands between the read and the commit wins the slot."""
        store = _store(patterns=[_weekly_pattern()], store_cls=YieldingStore)
        service = _build_service(store)

        async def both():
            return await asyncio.gather(
                service.book(BUSINESS, "2024-11-25T10:00:00+00:00", 30),
                service.generate_bookings(BUSINESS, ["checkup"], MONDAY, 30),
            )

        outcome, summary = asyncio.run(both())
        starts = [b.interval.start.isoformat() for b in store.bookings]

        assert starts == ["2024-11-25T10:00:00+00:00"]
        assert int(outcome.confirmed) + summary.created == 1
        assert summary.created + summary.skipped == 1
        assert store.pattern("checkup").last_generated_date == pendulum.date(2024, 11, 25)

    def test_store_commit_drops_conflicting_bookings(self):
        store = _store(
            _booking("2024-12-02 10:00", "2024-12-02 10:30"),
            patterns=[_weekly_pattern()],
        )
        first = TimeRange(start=_at("2024-11-25 10:00"), end=_at("2024-11-25 10:30"))
        taken = TimeRange(start=_at("2024-12-02 10:15"), end=_at("2024-12-02 10:45"))
        advanced = _weekly_pattern(last_generated_date=pendulum.date(2024, 12, 2))

        inserted = asyncio.run(store.commit_expansion(BUSINESS, advanced, [first, taken]))

        assert inserted == [first]
        assert len(store.bookings) == 2
        assert store.pattern("checkup").last_generated_date == pendulum.date(2024, 12, 2)

    def test_expansion_limit_reported(self):
        store = _store(patterns=[_weekly_pattern()])
        generator = SlotGenerator()
        service = SchedulingService(
            store=store,
            slot_generator=generator,
            conflict_detector=ConflictDetector(generator),
            expander=RecurrenceExpander(max_iterations=2),
        )

        summary = asyncio.run(service.generate_bookings(BUSINESS, ["checkup"], "2025-12-31", 30))

        assert "checkup" in summary.errors
        assert store.pattern("checkup").last_generated_date is None
        assert store.bookings == []
