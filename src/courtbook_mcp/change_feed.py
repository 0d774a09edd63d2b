"""Subscription to backend change notifications for bookings and blocks."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable

from .client import CourtBookClient
from .config import config
from .models import ApiErrorException, ChangeEvent
from .utils import in_filter

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]

# Date column used for filtering, per watched table
WATCHED_TABLES = {
    "bookings": "booking_date",
    "blocked_slots": "date",
}


class ChangeFeedListener:
    """Listens for booking and block changes on one date.

    The callback is only a staleness signal; consumers re-aggregate rather
    than patching local state from the payload. A listener holds at most one
    subscription set at a time; subscribing again replaces it.
    """

    def __init__(
        self,
        client: CourtBookClient,
        on_change: ChangeCallback,
        retry_delay: float | None = None,
    ):
        self.client = client
        self.on_change = on_change
        self.retry_delay = config.retry_delay if retry_delay is None else retry_delay
        self._tasks: list[asyncio.Task] = []
        self.court_ids: list[str] = []
        self.date: str | None = None

    @property
    def active(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def subscribe(self, court_ids: Iterable[str] | None, date: str) -> None:
        """Start listening for changes on a date, optionally scoped to courts.

        Any previous subscription is torn down first.
        """
        await self.close()
        self.court_ids = list(court_ids or [])
        self.date = date

        for table, date_column in WATCHED_TABLES.items():
            filters = {date_column: f"eq.{date}"}
            if self.court_ids:
                filters["court_id"] = in_filter(self.court_ids)
            self._tasks.append(
                asyncio.create_task(
                    self._listen(table, filters), name=f"change-feed:{table}:{date}"
                )
            )
        logger.info(f"Subscribed to changes on {date} for courts {self.court_ids or 'all'}")

    async def close(self) -> None:
        """Cancel all subscriptions and wait until they are gone."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.info(f"Unsubscribed from changes on {self.date}")

    async def __aenter__(self) -> "ChangeFeedListener":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _listen(self, table: str, filters: dict[str, str]) -> None:
        while True:
            try:
                async for event in self.client.stream_changes(table, filters):
                    logger.debug(f"{event.event_type} on {table}: {event.record}")
                    try:
                        await self.on_change(event)
                    except Exception as e:
                        logger.error(f"Change callback failed for {table}: {e}")
                logger.info(f"Change stream for {table} closed, reconnecting")
            except ApiErrorException as e:
                logger.warning(
                    f"Change stream for {table} failed: {e.message}. "
                    f"Reconnecting in {self.retry_delay}s..."
                )
            await asyncio.sleep(self.retry_delay)
