"""Booking view: owns the selection, refresh loop and change feed of one court and date."""

import logging
import uuid

from .availability import AvailabilityAggregator
from .change_feed import ChangeFeedListener
from .client import CourtBookClient
from .models import (
    ApiErrorException,
    AvailableSlot,
    BookingValidationError,
    ChangeEvent,
    Court,
    Notice,
    SubmissionResult,
)
from .reconciliation import NotifyCallback, ReconciliationLoop, RefreshCallback
from .selection import ContiguityPolicy, Selection, ToggleOutcome
from .submission import BookingSubmitter
from .utils import normalize_time, validate_date

logger = logging.getLogger(__name__)


async def _log_notice(notice: Notice) -> None:
    logger.info(f"{notice.title}: {notice.message}")


class BookingView:
    """Scoped lifetime of one court/date booking screen.

    Opening the view loads availability, starts the reconciliation loop and
    subscribes to the change feed; closing it (or changing court or date)
    releases all of them. Use as an async context manager.
    """

    def __init__(
        self,
        client: CourtBookClient,
        court_id: str,
        date: str,
        notify: NotifyCallback | None = None,
        policy: ContiguityPolicy | str | None = None,
        interval: float | None = None,
        on_refresh: RefreshCallback | None = None,
        listen_for_changes: bool = True,
        view_id: str | None = None,
    ):
        self.id = view_id or uuid.uuid4().hex
        self.client = client
        self.court_id = court_id
        self.date = date
        self.notify = notify or _log_notice
        self.interval = interval
        self.on_refresh = on_refresh
        self.listen_for_changes = listen_for_changes
        self.selection = Selection(policy)
        self.aggregator = AvailabilityAggregator(client)
        self.submitter = BookingSubmitter(client, notify=self.notify)
        self.feed = ChangeFeedListener(client, self._on_change)
        self.loop: ReconciliationLoop | None = None
        self.court: Court | None = None
        self.is_open = False

    async def __aenter__(self) -> "BookingView":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        """Load the court, fetch availability and start live updates."""
        if self.is_open:
            return
        if not validate_date(self.date):
            raise ValueError(f"Invalid date: {self.date}. Use YYYY-MM-DD format.")

        court = await self.client.with_retry(self.client.get_court, self.court_id)
        if court is None:
            raise ValueError(f"Unknown court: {self.court_id}")
        self.court = court

        self.loop = ReconciliationLoop(
            self.aggregator,
            self.selection,
            court.id,
            self.date,
            notify=self.notify,
            interval=self.interval,
            court=court,
            on_refresh=self.on_refresh,
        )
        try:
            await self.loop.run_pass()
            await self.loop.start(initial=False)
            if self.listen_for_changes:
                group = await self.aggregator.resolve_group(court)
                await self.feed.subscribe(group.court_ids, self.date)
        except BaseException:
            await self.close()
            raise
        self.is_open = True
        logger.info(f"Opened booking view {self.id} for court {court.id} on {self.date}")

    async def close(self) -> None:
        """Tear down the change feed and the loop, and drop the selection."""
        await self.feed.close()
        if self.loop is not None:
            await self.loop.stop()
        self.loop = None
        self.court = None
        self.selection.clear()
        if self.is_open:
            logger.info(f"Closed booking view {self.id}")
        self.is_open = False

    async def switch(self, court_id: str | None = None, date: str | None = None) -> None:
        """Reopen the view on another court and/or date; the selection is reset.

        If the new court or date cannot be opened, the previous one is
        reopened before the error is raised. When that fails too the view
        stays closed.

        Raises:
            ApiErrorException: Backend failure while opening
            ValueError: Unknown court or invalid date
        """
        previous = (self.court_id, self.date)
        await self.close()
        self.court_id = court_id or self.court_id
        self.date = date or self.date
        try:
            await self.open()
        except (ApiErrorException, ValueError):
            self.court_id, self.date = previous
            try:
                await self.open()
            except (ApiErrorException, ValueError) as e:
                logger.error(f"Could not restore booking view {self.id}: {e}")
            raise

    async def change_court(self, court_id: str) -> None:
        """Switch to another court; the selection is reset."""
        await self.switch(court_id=court_id)

    async def change_date(self, date: str) -> None:
        """Switch to another date; the selection is reset."""
        await self.switch(date=date)

    async def _on_change(self, event: ChangeEvent) -> None:
        if self.loop is None:
            return
        self.loop.request_refresh(f"{event.table}:{event.event_type}")
        await self.notify(
            Notice(
                level="info",
                title="Availability updated",
                message="Booking information has been updated",
            )
        )

    @property
    def slots(self) -> list[AvailableSlot]:
        return self.loop.slots if self.loop is not None else []

    @property
    def busy(self) -> dict[str, bool]:
        return {
            "availability": self.loop.busy if self.loop is not None else False,
            "booking": self.submitter.submitting,
        }

    @property
    def can_proceed(self) -> bool:
        """Whether the user may move on to payment and submission."""
        return self.is_open and not self.selection.is_empty and not self.submitter.submitting

    def find_slot(self, start_time: str, end_time: str) -> AvailableSlot | None:
        start, end = normalize_time(start_time), normalize_time(end_time)
        for slot in self.slots:
            if slot.start_time == start and slot.end_time == end:
                return slot
        return None

    async def toggle(self, start_time: str, end_time: str) -> ToggleOutcome:
        """Toggle the displayed slot with the given boundaries."""
        slot = self.find_slot(start_time, end_time) if self.is_open else None
        if slot is None:
            return ToggleOutcome.UNAVAILABLE

        outcome = self.selection.toggle(slot)
        if outcome == ToggleOutcome.REJECTED:
            await self.notify(
                Notice(
                    level="warning",
                    title="Invalid selection",
                    message="Select continuous slots only",
                    time_range=slot.label,
                )
            )
        return outcome

    async def submit(
        self,
        user_id: str,
        payment_reference: str | None = None,
        payment_status: str = "completed",
        guest_name: str | None = None,
        guest_phone: str | None = None,
    ) -> SubmissionResult:
        """Reserve the current selection; see BookingSubmitter.submit.

        Background refreshes are held until the submission finishes, so the
        selection being reserved is not evicted underneath it.
        """
        if not self.is_open or self.loop is None:
            raise BookingValidationError(
                "Booking view is not open. Reopen it and select your slots again.",
                details={"reason": "view_closed"},
            )
        with self.loop.hold():
            return await self.submitter.submit(
                self.selection,
                self.court.id,
                self.date,
                user_id,
                self.loop.reconcile_now,
                payment_reference=payment_reference,
                payment_status=payment_status,
                guest_name=guest_name,
                guest_phone=guest_phone,
            )

    def to_dict(self) -> dict:
        return {
            "view_id": self.id,
            "court_id": self.court_id,
            "court_name": self.court.name if self.court else None,
            "date": self.date,
            "state": self.loop.state.value if self.loop else None,
            "busy": self.busy,
            "slots": [s.model_dump() | {"label": s.label} for s in self.slots],
            "selection": self.selection.to_dict(),
            "can_proceed": self.can_proceed,
        }
