"""Shared fixtures: an in-memory stand-in for the backend client."""

import asyncio
from datetime import datetime, timedelta

import pytest

from courtbook_mcp.models import (
    OCCUPYING_STATUSES,
    ApiErrorException,
    BlockedSlot,
    Booking,
    ChangeEvent,
    Court,
    Notice,
    ReservationRequest,
    TemplateSlot,
)

DATE = "2025-06-01"


def half_hours(start: str = "09:00", count: int = 4, minutes: int = 30) -> list[tuple[str, str]]:
    """Consecutive (start, end) pairs, e.g. 09:00-09:30, 09:30-10:00, ..."""
    current = datetime.strptime(start, "%H:%M")
    pairs = []
    for _ in range(count):
        end = current + timedelta(minutes=minutes)
        pairs.append((current.strftime("%H:%M"), end.strftime("%H:%M")))
        current = end
    return pairs


def rejection(reason: str, message: str = "rejected") -> ApiErrorException:
    """A reservation refusal as raised by CourtBookClient.reserve_with_lock."""
    return ApiErrorException(
        code="RESERVATION_REJECTED", message=message, details={"reason": reason}
    )


class FakeClient:
    """Backend double with the CourtBookClient interface.

    Reservation outcomes are scripted through ``reserve_outcomes``: each call
    pops the next entry, raising it when it is an exception. An empty script
    means success.
    """

    def __init__(self):
        self.courts: dict[str, Court] = {}
        self.schedule: dict[str, list[TemplateSlot]] = {}
        self.templates: dict[str, list[TemplateSlot]] = {}
        self.bookings: list[Booking] = []
        self.blocked: list[BlockedSlot] = []
        self.reserve_outcomes: list[ApiErrorException | None] = []
        self.reservations: list[ReservationRequest] = []
        self.cancelled: list[str] = []
        self.fail_cancel: set[str] = set()
        self.fetch_error: Exception | None = None
        self.fetches = 0
        self.active_fetches = 0
        self.max_active_fetches = 0
        self.streams: dict[str, asyncio.Queue] = {}
        self.subscriptions: list[tuple[str, dict[str, str]]] = []

    def add_court(self, court_id: str, group: str | None = None, rate: float = 20.0) -> Court:
        court = Court(
            id=court_id,
            name=f"Court {court_id}",
            venue_id="venue-1",
            sport_id="tennis",
            court_group_id=group,
            hourly_rate=rate,
        )
        self.courts[court_id] = court
        return court

    def offer(self, court_id: str, pairs, price: float | None = 10.0) -> None:
        """Offer slots on every date and register their template prices."""
        self.schedule[court_id] = [
            TemplateSlot(court_id=court_id, start_time=s, end_time=e) for s, e in pairs
        ]
        self.templates[court_id] = [
            TemplateSlot(court_id=court_id, start_time=s, end_time=e, price=price)
            for s, e in pairs
        ]

    def book(self, court_id: str, start: str, end: str, date: str = DATE, status="confirmed"):
        booking = Booking(
            id=f"ext-{len(self.bookings)}",
            court_id=court_id,
            booking_date=date,
            start_time=start,
            end_time=end,
            status=status,
        )
        self.bookings.append(booking)
        return booking

    def block(self, court_id: str, start: str, end: str, date: str = DATE):
        self.blocked.append(
            BlockedSlot(court_id=court_id, date=date, start_time=start, end_time=end)
        )

    def push(self, table: str, event_type: str = "INSERT", record: dict | None = None):
        self.streams.setdefault(table, asyncio.Queue()).put_nowait(
            ChangeEvent(table=table, event_type=event_type, record=record or {})
        )

    async def with_retry(self, operation, *args, **kwargs):
        return await operation(*args, **kwargs)

    async def get_court(self, court_id: str) -> Court | None:
        return self.courts.get(court_id)

    async def list_courts(self, venue_id: str, sport_id: str | None = None) -> list[Court]:
        return [
            c
            for c in self.courts.values()
            if c.venue_id == venue_id and c.is_active and sport_id in (None, c.sport_id)
        ]

    async def get_group_court_ids(self, group_id: str) -> list[str]:
        return [c.id for c in self.courts.values() if c.court_group_id == group_id]

    async def get_available_slots(self, court_id: str, date: str) -> list[TemplateSlot]:
        self.active_fetches += 1
        self.max_active_fetches = max(self.max_active_fetches, self.active_fetches)
        try:
            await asyncio.sleep(0)
            if self.fetch_error is not None:
                raise self.fetch_error
            self.fetches += 1
            return list(self.schedule.get(court_id, []))
        finally:
            self.active_fetches -= 1

    async def get_template_slots(self, court_id: str) -> list[TemplateSlot]:
        return list(self.templates.get(court_id, []))

    async def list_bookings(self, court_ids, date, statuses=OCCUPYING_STATUSES) -> list[Booking]:
        court_ids = set(court_ids)
        return [
            b
            for b in self.bookings
            if b.court_id in court_ids and b.booking_date == date and b.status in statuses
        ]

    async def list_blocked_slots(self, court_ids, date) -> list[BlockedSlot]:
        court_ids = set(court_ids)
        return [b for b in self.blocked if b.court_id in court_ids and b.date == date]

    async def reserve_with_lock(self, request: ReservationRequest) -> str:
        outcome = self.reserve_outcomes.pop(0) if self.reserve_outcomes else None
        if outcome is not None:
            raise outcome
        self.reservations.append(request)
        booking = self.book(
            request.court_id, request.start_time, request.end_time, request.booking_date
        )
        booking.id = f"booking-{len(self.reservations)}"
        return booking.id

    async def cancel_booking(self, booking_id: str) -> bool:
        if booking_id in self.fail_cancel:
            return False
        self.cancelled.append(booking_id)
        return True

    async def stream_changes(self, table: str, filters: dict[str, str]):
        self.subscriptions.append((table, filters))
        queue = self.streams.setdefault(table, asyncio.Queue())
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event


class NoticeRecorder:
    """Async notify callable collecting notices."""

    def __init__(self):
        self.notices: list[Notice] = []

    async def __call__(self, notice: Notice) -> None:
        self.notices.append(notice)

    def titles(self) -> list[str]:
        return [n.title for n in self.notices]

    def by_level(self, level: str) -> list[Notice]:
        return [n for n in self.notices if n.level == level]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the event loop until predicate() holds."""

    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def backend() -> FakeClient:
    """Two courts sharing one group plus a standalone court, 09:00-11:00 in half hours."""
    client = FakeClient()
    client.add_court("court-1", group="group-1")
    client.add_court("court-2", group="group-1")
    client.add_court("court-3")
    for court_id in client.courts:
        client.offer(court_id, half_hours("09:00", 4))
    return client


@pytest.fixture
def notices() -> NoticeRecorder:
    return NoticeRecorder()
