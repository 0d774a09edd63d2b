"""Periodic and change-driven availability reconciliation."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum

from .availability import AvailabilityAggregator
from .config import config
from .models import ApiErrorException, AvailableSlot, Court, Notice
from .selection import Selection

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[Notice], Awaitable[None]]
RefreshCallback = Callable[[list[AvailableSlot]], Awaitable[None]]


class LoopState(StrEnum):
    """Reconciliation loop states."""

    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    ERROR = "error"
    STOPPED = "stopped"


class RefreshTrigger:
    """Coalesced "refresh requested" signal shared by the timer and the change feed.

    Any number of requests made before the consumer wakes up collapse into
    one refresh.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reasons: set[str] = set()

    @property
    def pending(self) -> bool:
        return self._event.is_set()

    def request(self, reason: str = "manual") -> None:
        self.reasons.add(reason)
        self._event.set()

    async def wait(self) -> set[str]:
        """Wait for a request and consume all pending ones."""
        await self._event.wait()
        self._event.clear()
        reasons, self.reasons = self.reasons, set()
        return reasons


async def _no_notify(notice: Notice) -> None:
    logger.info(f"{notice.title}: {notice.message}")


class ReconciliationLoop:
    """Keeps displayed slots and the selection consistent with the backend."""

    def __init__(
        self,
        aggregator: AvailabilityAggregator,
        selection: Selection,
        court_id: str,
        date: str,
        notify: NotifyCallback | None = None,
        interval: float | None = None,
        court: Court | None = None,
        on_refresh: RefreshCallback | None = None,
    ):
        """Initialize the loop.

        Args:
            aggregator: Availability aggregator
            selection: Selection to reconcile
            court_id: Court being displayed
            date: Date being displayed, YYYY-MM-DD
            notify: Receives user-facing notices
            interval: Refresh cadence in seconds, defaults to configuration
            court: Already loaded court row
            on_refresh: Receives every fresh slot list
        """
        self.aggregator = aggregator
        self.selection = selection
        self.court_id = court_id
        self.date = date
        self.court = court
        self.notify = notify or _no_notify
        self.on_refresh = on_refresh
        self.interval = config.refresh_interval if interval is None else interval
        self.trigger = RefreshTrigger()
        self.state = LoopState.IDLE
        self.slots: list[AvailableSlot] = []
        self.last_error: str | None = None
        self.last_refreshed_at: datetime | None = None
        self.passes = 0
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self._holds = 0
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def busy(self) -> bool:
        """True while an aggregation pass is in flight."""
        return self._lock.locked()

    @property
    def held(self) -> bool:
        return self._holds > 0

    @contextlib.contextmanager
    def hold(self):
        """Defer background passes for the duration of the block.

        Timer ticks and change-feed requests made meanwhile stay pending and
        run as one pass once the last hold is released. `reconcile_now` is
        not affected.
        """
        self._holds += 1
        self._resumed.clear()
        try:
            yield self
        finally:
            self._holds -= 1
            if self._holds == 0:
                self._resumed.set()

    def request_refresh(self, reason: str = "manual") -> None:
        self.trigger.request(reason)

    async def start(self, initial: bool = True) -> None:
        """Start the timer and the pass runner.

        Args:
            initial: Request a pass right away instead of waiting a full interval
        """
        if self.running:
            return
        self.state = LoopState.IDLE
        self._tasks = [
            asyncio.create_task(self._run(), name=f"reconcile:{self.court_id}:{self.date}"),
            asyncio.create_task(self._tick(), name=f"reconcile-timer:{self.court_id}"),
        ]
        if initial:
            self.request_refresh("initial")

    async def stop(self) -> None:
        """Cancel the timer and any in-flight pass."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state = LoopState.STOPPED

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.request_refresh("timer")

    async def _run(self) -> None:
        while True:
            await self._resumed.wait()
            reasons = await self.trigger.wait()
            logger.debug(f"Refreshing {self.court_id} on {self.date}: {sorted(reasons)}")
            try:
                await self.run_pass()
            except Exception as e:
                logger.error(f"Reconciliation pass failed: {e}", exc_info=True)

    async def run_pass(self, raise_errors: bool = False) -> list[AvailableSlot]:
        """Run one aggregation pass and evict newly unavailable selections.

        Passes never overlap; a caller arriving while one is in flight waits
        for it and then runs its own, fresh pass.

        Args:
            raise_errors: Propagate fetch failures instead of notifying

        Returns:
            Evicted slots
        """
        await self._resumed.wait()
        return await self._locked_pass(raise_errors)

    async def _locked_pass(self, raise_errors: bool) -> list[AvailableSlot]:
        async with self._lock:
            try:
                return await self._pass(raise_errors)
            finally:
                self.state = LoopState.IDLE

    async def _pass(self, raise_errors: bool) -> list[AvailableSlot]:
        self.state = LoopState.FETCHING
        try:
            fresh = await self.aggregator.aggregate(
                self.court_id, self.date, court=self.court
            )
        except (ApiErrorException, ValueError) as e:
            self.state = LoopState.ERROR
            self.last_error = str(e)
            logger.error(f"Error fetching availability for {self.court_id}: {e}")
            if raise_errors:
                raise
            await self.notify(
                Notice(
                    level="error",
                    title="Error",
                    message="Failed to load availability. Please try again.",
                )
            )
            return []

        self.state = LoopState.RECONCILING
        self.slots = fresh
        self.last_error = None
        self.last_refreshed_at = datetime.now(UTC)
        self.passes += 1

        evicted = self.selection.evict_unavailable(fresh)
        for slot in evicted:
            logger.warning(f"Evicted {slot.label} on {self.date} from selection")
            await self.notify(
                Notice(
                    level="warning",
                    title="Slot no longer available",
                    message=(
                        f"The time slot {slot.label} is no longer available "
                        "and has been removed from your selection."
                    ),
                    time_range=slot.label,
                )
            )
        if self.on_refresh is not None:
            await self.on_refresh(fresh)

        return evicted

    async def reconcile_now(self) -> list[AvailableSlot]:
        """Run a fresh pass synchronously, propagating fetch failures.

        Runs even while the loop is held.
        """
        return await self._locked_pass(raise_errors=True)
