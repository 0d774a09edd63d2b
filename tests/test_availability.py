"""Tests for availability aggregation."""

import pytest
from conftest import DATE

from courtbook_mcp.availability import (
    EXACT,
    OVERLAP,
    AvailabilityAggregator,
    is_occupied,
    merge_availability,
)
from courtbook_mcp.models import Booking, Court, TemplateSlot


def _available(slots) -> dict[str, bool]:
    return {s.start_time[:5]: s.is_available for s in slots}


class TestMergeAvailability:
    """Pure merge of the four sources."""

    court = Court(id="c", hourly_rate=25.0)

    def test_price_falls_back_to_hourly_rate(self):
        schedule = [
            TemplateSlot(start_time="09:00", end_time="09:30"),
            TemplateSlot(start_time="09:30", end_time="10:00"),
        ]
        templates = [TemplateSlot(start_time="09:00:00", end_time="09:30:00", price=12.5)]

        slots = merge_availability(self.court, schedule, templates, [], [])

        assert [s.price for s in slots] == [12.5, 25.0]

    def test_output_sorted_by_start(self):
        schedule = [
            TemplateSlot(start_time="10:00", end_time="10:30"),
            TemplateSlot(start_time="9:00", end_time="9:30"),
        ]

        slots = merge_availability(self.court, schedule, [], [], [])

        assert [s.start_time for s in slots] == ["09:00:00", "10:00:00"]

    def test_template_flag_respected(self):
        schedule = [TemplateSlot(start_time="09:00", end_time="09:30", is_available=False)]

        slots = merge_availability(self.court, schedule, [], [], [])

        assert slots[0].is_available is False

    def test_exact_mode_ignores_misaligned_booking(self):
        schedule = [TemplateSlot(start_time="09:00", end_time="09:30")]
        booking = Booking(court_id="c", start_time="09:15", end_time="09:45")

        exact = merge_availability(self.court, schedule, [], [booking], [], mode=EXACT)
        overlap = merge_availability(self.court, schedule, [], [booking], [], mode=OVERLAP)

        assert exact[0].is_available is True
        assert overlap[0].is_available is False

    def test_exact_match_across_time_formats(self):
        schedule = [TemplateSlot(start_time="9:00", end_time="9:30")]
        booking = Booking(court_id="c", start_time="09:00:00", end_time="09:30:00")

        slots = merge_availability(self.court, schedule, [], [booking], [])

        assert slots[0].is_available is False

    def test_exact_match_includes_seconds(self):
        schedule = [TemplateSlot(start_time="09:00:00", end_time="09:30:00")]
        booking = Booking(court_id="c", start_time="09:00:30", end_time="09:30:00")

        slots = merge_availability(self.court, schedule, [], [booking], [], mode=EXACT)

        assert slots[0].is_available is True


@pytest.mark.parametrize(
    "occupied,mode,expected",
    [
        ([(32400, 34200)], EXACT, True),
        ([(32400, 36000)], EXACT, False),
        ([(32430, 34200)], EXACT, False),
        ([(32400, 36000)], OVERLAP, True),
        ([(34200, 36000)], OVERLAP, False),
        ([(30600, 32400)], OVERLAP, False),
    ],
)
def test_is_occupied(occupied, mode, expected):
    slot = TemplateSlot(start_time="09:00", end_time="09:30")
    assert is_occupied(slot, occupied, mode) is expected


class TestAggregator:
    """Aggregation against the fake backend."""

    @pytest.mark.asyncio
    async def test_all_available(self, backend):
        slots = await AvailabilityAggregator(backend, mode=EXACT).aggregate("court-1", DATE)

        assert len(slots) == 4
        assert all(s.is_available for s in slots)
        assert all(s.price == 10.0 for s in slots)

    @pytest.mark.asyncio
    async def test_booking_on_group_member_occupies_target(self, backend):
        backend.book("court-2", "09:30", "10:00")

        slots = await AvailabilityAggregator(backend, mode=EXACT).aggregate("court-1", DATE)

        assert _available(slots) == {
            "09:00": True,
            "09:30": False,
            "10:00": True,
            "10:30": True,
        }

    @pytest.mark.asyncio
    async def test_block_on_group_member_occupies_target(self, backend):
        backend.block("court-2", "10:30", "11:00")

        slots = await AvailabilityAggregator(backend, mode=EXACT).aggregate("court-1", DATE)

        assert _available(slots)["10:30"] is False

    @pytest.mark.asyncio
    async def test_courts_outside_group_do_not_interfere(self, backend):
        backend.book("court-1", "09:00", "09:30")

        slots = await AvailabilityAggregator(backend, mode=EXACT).aggregate("court-3", DATE)

        assert all(s.is_available for s in slots)

    @pytest.mark.asyncio
    async def test_cancelled_and_other_dates_ignored(self, backend):
        backend.book("court-1", "09:00", "09:30", status="cancelled")
        backend.book("court-1", "09:30", "10:00", date="2025-06-02")

        slots = await AvailabilityAggregator(backend, mode=EXACT).aggregate("court-1", DATE)

        assert all(s.is_available for s in slots)

    @pytest.mark.asyncio
    async def test_idempotent_without_backend_changes(self, backend):
        backend.book("court-1", "10:00", "10:30")
        aggregator = AvailabilityAggregator(backend, mode=EXACT)

        first = await aggregator.aggregate("court-1", DATE)
        second = await aggregator.aggregate("court-1", DATE)

        assert first == second

    @pytest.mark.asyncio
    async def test_unknown_court(self, backend):
        with pytest.raises(ValueError, match="Unknown court"):
            await AvailabilityAggregator(backend).aggregate("nope", DATE)

    @pytest.mark.asyncio
    async def test_resolve_group(self, backend):
        aggregator = AvailabilityAggregator(backend)

        grouped = await aggregator.resolve_group(backend.courts["court-1"])
        single = await aggregator.resolve_group(backend.courts["court-3"])

        assert sorted(grouped.court_ids) == ["court-1", "court-2"]
        assert grouped.id == "group-1"
        assert single.court_ids == ["court-3"]
