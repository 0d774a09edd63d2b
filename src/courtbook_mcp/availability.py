"""Slot availability aggregation.

Merges the backend's template-derived schedule, per-court template prices,
bookings and administrative blocks into one authoritative list of slots for
a court and date. Bookings and blocks of every court sharing the target
court's group count as occupancy of the target court.
"""

import asyncio
import logging
from collections.abc import Iterable

from .client import CourtBookClient
from .config import config
from .models import (
    AvailableSlot,
    BlockedSlot,
    Booking,
    Court,
    CourtGroup,
    TemplateSlot,
)
from .utils import time_to_seconds

logger = logging.getLogger(__name__)

EXACT = "exact"
OVERLAP = "overlap"


def _span(start_time: str, end_time: str) -> tuple[int, int]:
    return time_to_seconds(start_time), time_to_seconds(end_time)


def is_occupied(
    slot: TemplateSlot,
    occupied: Iterable[tuple[int, int]],
    mode: str = EXACT,
) -> bool:
    """Check whether a slot collides with any occupied range.

    In exact mode only ranges with identical start and end count; in overlap
    mode any intersection of the half-open intervals counts.
    """
    start, end = _span(slot.start_time, slot.end_time)
    for other_start, other_end in occupied:
        if mode == EXACT:
            if start == other_start and end == other_end:
                return True
        elif start < other_end and other_start < end:
            return True
    return False


def merge_availability(
    court: Court,
    schedule: list[TemplateSlot],
    templates: list[TemplateSlot],
    bookings: list[Booking],
    blocked: list[BlockedSlot],
    mode: str = EXACT,
) -> list[AvailableSlot]:
    """Merge availability sources into per-slot truth.

    Args:
        court: Target court (hourly rate is the price fallback)
        schedule: Slots offered on the date with the backend's own flag
        templates: Template slots of the target court, used for prices
        bookings: Occupying bookings of the court and its group members
        blocked: Blocked slots of the court and its group members
        mode: "exact" or "overlap" conflict matching

    Returns:
        Slots ordered by start time
    """
    prices = {
        _span(t.start_time, t.end_time): t.price
        for t in templates
        if t.price is not None
    }
    occupied = [_span(b.start_time, b.end_time) for b in bookings]
    occupied.extend(_span(b.start_time, b.end_time) for b in blocked)

    slots = []
    for slot in schedule:
        price = prices.get(_span(slot.start_time, slot.end_time))
        if price is None:
            price = court.hourly_rate
        available = slot.is_available and not is_occupied(slot, occupied, mode)
        slots.append(
            AvailableSlot(
                start_time=slot.start_time,
                end_time=slot.end_time,
                is_available=available,
                price=float(price),
            )
        )

    slots.sort(key=lambda s: time_to_seconds(s.start_time))
    return slots


class AvailabilityAggregator:
    """Produces the authoritative slot list for a court and date."""

    def __init__(self, client: CourtBookClient, mode: str | None = None):
        """Initialize aggregator.

        Args:
            client: Backend client
            mode: Conflict matching mode, defaults to configuration
        """
        self.client = client
        self.mode = mode or config.overlap_mode

    async def resolve_group(self, court: Court) -> CourtGroup:
        """Resolve the set of courts sharing the court's physical resource."""
        if not court.court_group_id:
            return CourtGroup(id=court.id, venue_id=court.venue_id, court_ids=[court.id])

        member_ids = await self.client.with_retry(
            self.client.get_group_court_ids, court.court_group_id
        )
        if court.id not in member_ids:
            member_ids.append(court.id)
        return CourtGroup(
            id=court.court_group_id, venue_id=court.venue_id, court_ids=member_ids
        )

    async def aggregate(
        self, court_id: str, date: str, court: Court | None = None
    ) -> list[AvailableSlot]:
        """Fetch all sources and merge them.

        Args:
            court_id: Target court identifier
            date: Date in YYYY-MM-DD format
            court: Already loaded court row, fetched when omitted

        Returns:
            Slots ordered by start time
        """
        if court is None:
            court = await self.client.with_retry(self.client.get_court, court_id)
            if court is None:
                raise ValueError(f"Unknown court: {court_id}")

        group = await self.resolve_group(court)

        schedule, templates, bookings, blocked = await asyncio.gather(
            self.client.with_retry(self.client.get_available_slots, court.id, date),
            self.client.with_retry(self.client.get_template_slots, court.id),
            self.client.with_retry(self.client.list_bookings, group.court_ids, date),
            self.client.with_retry(self.client.list_blocked_slots, group.court_ids, date),
        )

        slots = merge_availability(
            court, schedule, templates, bookings, blocked, mode=self.mode
        )
        logger.debug(
            f"Aggregated {len(slots)} slots for court {court.id} on {date} "
            f"({len(bookings)} bookings, {len(blocked)} blocks across "
            f"{len(group.court_ids)} courts)"
        )
        return slots
