"""Booking flow endpoints: open a court/date view, pick slots, submit."""

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from ..client import CourtBookClient
from ..models import ApiErrorException, AvailableSlot, BookingError, Notice
from ..selection import ToggleOutcome
from ..utils import validate_date, validate_time
from ..view import BookingView

logger = logging.getLogger(__name__)

EventListener = Callable[[dict[str, Any]], Awaitable[None]]

TOGGLE_MESSAGES = {
    ToggleOutcome.ADDED: "Slot added to selection",
    ToggleOutcome.REMOVED: "Slot removed from selection",
    ToggleOutcome.UNAVAILABLE: "Slot is not available",
    ToggleOutcome.REJECTED: "Select continuous slots only",
}


class BookingEndpoint:
    """Endpoint holding the open booking views.

    Notices produced by a view are buffered and returned with the next
    response for that view, and forwarded to registered event listeners.
    """

    def __init__(self, client: CourtBookClient | None = None):
        """Initialize booking endpoint."""
        self.client = client or CourtBookClient()
        self.views: dict[str, BookingView] = {}
        self._notices: dict[str, list[Notice]] = {}
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        """Register a coroutine receiving every notice and availability event."""
        self._listeners.append(listener)

    async def _emit(self, event: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.warning(f"Event listener failed: {e}")

    def _notify_for(self, view_id: str) -> Callable[[Notice], Awaitable[None]]:
        async def notify(notice: Notice) -> None:
            self._notices.setdefault(view_id, []).append(notice)
            await self._emit(
                {"type": "notice", "data": {"view_id": view_id, **notice.model_dump()}}
            )

        return notify

    def _refresh_for(self, view_id: str) -> Callable[[list[AvailableSlot]], Awaitable[None]]:
        async def on_refresh(slots: list[AvailableSlot]) -> None:
            await self._emit(
                {
                    "type": "availability",
                    "data": {
                        "view_id": view_id,
                        "slots": [s.model_dump() for s in slots],
                    },
                }
            )

        return on_refresh

    async def _discard(self, view_id: str) -> None:
        self.views.pop(view_id, None)
        self._notices.pop(view_id, None)
        await self._emit({"type": "view_closed", "data": {"view_id": view_id}})

    def _drain(self, view_id: str) -> list[dict[str, Any]]:
        return [n.model_dump() for n in self._notices.pop(view_id, [])]

    def _missing_view(self, view_id: str) -> dict[str, Any]:
        return {
            "success": False,
            "message": f"Unknown booking view {view_id}. Call open_booking_view first.",
            "data": None,
        }

    async def open_view(
        self,
        court_id: str,
        date: str,
        policy: str | None = None,
        listen_for_changes: bool = True,
    ) -> dict[str, Any]:
        """Open a booking view for a court and date.

        Args:
            court_id: Court identifier
            date: Date in YYYY-MM-DD format
            policy: "partition" or "strict" slot selection policy
            listen_for_changes: Subscribe to the backend change feed

        Returns:
            Result dictionary with the view snapshot
        """
        if not validate_date(date):
            return {
                "success": False,
                "message": "Invalid date format. Use YYYY-MM-DD format.",
                "data": None,
            }

        view_id = uuid.uuid4().hex
        view = BookingView(
            self.client,
            court_id,
            date,
            notify=self._notify_for(view_id),
            policy=policy,
            on_refresh=self._refresh_for(view_id),
            listen_for_changes=listen_for_changes,
            view_id=view_id,
        )
        try:
            await view.open()
        except ApiErrorException as e:
            logger.error(f"API error opening view for court {court_id}: {e.message}")
            return {
                "success": False,
                "message": f"Failed to load availability: {e.message}",
                "data": None,
            }
        except ValueError as e:
            return {"success": False, "message": str(e), "data": None}

        self.views[view.id] = view
        return {
            "success": True,
            "message": f"Booking view opened for court {court_id} on {date}",
            "data": view.to_dict(),
            "notices": self._drain(view.id),
        }

    async def get_view(self, view_id: str) -> dict[str, Any]:
        """Get the current slots and selection of a view."""
        view = self.views.get(view_id)
        if view is None:
            return self._missing_view(view_id)
        return {
            "success": True,
            "message": "Availability retrieved successfully",
            "data": view.to_dict(),
            "notices": self._drain(view_id),
        }

    async def get_selection(self, view_id: str) -> dict[str, Any]:
        """Get the selected slots, their blocks and the running total."""
        view = self.views.get(view_id)
        if view is None:
            return self._missing_view(view_id)
        return {
            "success": True,
            "message": f"{len(view.selection)} slot(s) selected",
            "data": {
                **view.selection.to_dict(),
                "busy": view.busy,
                "can_proceed": view.can_proceed,
            },
            "notices": self._drain(view_id),
        }

    async def refresh_view(self, view_id: str) -> dict[str, Any]:
        """Run a reconciliation pass now and return the fresh view."""
        view = self.views.get(view_id)
        if view is None or view.loop is None:
            return self._missing_view(view_id)
        await view.loop.run_pass()
        return await self.get_view(view_id)

    async def toggle_slot(
        self, view_id: str, start_time: str, end_time: str
    ) -> dict[str, Any]:
        """Toggle a slot in the selection of a view."""
        view = self.views.get(view_id)
        if view is None:
            return self._missing_view(view_id)
        if not validate_time(start_time) or not validate_time(end_time):
            return {
                "success": False,
                "message": "Invalid time format. Use HH:MM format.",
                "data": None,
            }

        outcome = await view.toggle(start_time, end_time)
        return {
            "success": outcome in (ToggleOutcome.ADDED, ToggleOutcome.REMOVED),
            "message": TOGGLE_MESSAGES[outcome],
            "outcome": outcome.value,
            "data": view.selection.to_dict(),
            "notices": self._drain(view_id),
        }

    async def change_view(
        self, view_id: str, court_id: str | None = None, date: str | None = None
    ) -> dict[str, Any]:
        """Switch a view to another court and/or date, resetting its selection."""
        view = self.views.get(view_id)
        if view is None:
            return self._missing_view(view_id)
        if date is not None and not validate_date(date):
            return {
                "success": False,
                "message": "Invalid date format. Use YYYY-MM-DD format.",
                "data": None,
            }

        try:
            await view.switch(court_id=court_id, date=date)
        except (ApiErrorException, ValueError) as e:
            message = e.message if isinstance(e, ApiErrorException) else str(e)
            if view.is_open:
                return {
                    "success": False,
                    "message": (
                        f"{message}. Booking view stays on court {view.court_id} "
                        f"on {view.date}."
                    ),
                    "data": view.to_dict(),
                    "notices": self._drain(view_id),
                }
            await self._discard(view_id)
            logger.warning(f"Dropped booking view {view_id} after failed change: {message}")
            return {
                "success": False,
                "message": f"{message}. Booking view {view_id} was closed.",
                "data": None,
            }

        return {
            "success": True,
            "message": f"Booking view switched to court {view.court_id} on {view.date}",
            "data": view.to_dict(),
            "notices": self._drain(view_id),
        }

    async def submit_booking(
        self,
        view_id: str,
        user_id: str,
        payment_reference: str | None = None,
        payment_status: str = "completed",
        guest_name: str | None = None,
        guest_phone: str | None = None,
    ) -> dict[str, Any]:
        """Reserve the view's selection.

        Returns:
            Result dictionary; on failure "code" is one of VALIDATION_ERROR,
            STALE_SELECTION, SLOT_CONFLICT, LOCK_CONTENTION or NETWORK_ERROR
        """
        view = self.views.get(view_id)
        if view is None:
            return self._missing_view(view_id)

        try:
            result = await view.submit(
                user_id,
                payment_reference=payment_reference,
                payment_status=payment_status,
                guest_name=guest_name,
                guest_phone=guest_phone,
            )
        except BookingError as e:
            return {
                "success": False,
                "code": e.code,
                "message": e.message,
                "committed": [c.model_dump() for c in e.committed_blocks],
                "failed_block": e.failed_block.model_dump() if e.failed_block else None,
                "data": view.selection.to_dict(),
                "notices": self._drain(view_id),
            }

        return {
            "success": True,
            "message": result.message,
            "data": result.model_dump(),
            "notices": self._drain(view_id),
        }

    async def close_view(self, view_id: str) -> dict[str, Any]:
        """Close a view, releasing its subscriptions and timer."""
        view = self.views.get(view_id)
        if view is None:
            return self._missing_view(view_id)
        await view.close()
        await self._discard(view_id)
        return {"success": True, "message": f"Booking view {view_id} closed"}

    async def close_all(self) -> None:
        for view_id in list(self.views):
            await self.close_view(view_id)


# Global booking endpoint instance
booking_endpoint = BookingEndpoint()
