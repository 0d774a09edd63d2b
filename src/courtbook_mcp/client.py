import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import httpx

from .config import config
from .models import (
    OCCUPYING_STATUSES,
    ApiErrorException,
    BlockedSlot,
    Booking,
    BookingStatus,
    ChangeEvent,
    Court,
    ReservationFailureReason,
    ReservationRequest,
    TemplateSlot,
)
from .utils import in_filter

logger = logging.getLogger(__name__)

COURT_COLUMNS = "id,name,venue_id,sport_id,court_group_id,hourly_rate,is_active"

CONFLICT_MARKERS = (
    "conflicts with an existing reservation",
    "already been booked",
)
LOCK_MARKERS = ("another user is currently booking",)


def classify_reservation_error(
    status_code: int | None, body: dict[str, Any] | str | None
) -> ReservationFailureReason:
    """Map a failed reservation response onto a machine-readable reason.

    Args:
        status_code: HTTP status of the failed call, None on transport failure
        body: Parsed error body (PostgREST shape) or raw text

    Returns:
        Failure reason
    """
    if isinstance(body, dict):
        sqlstate = str(body.get("code") or "")
        message = " ".join(
            str(body.get(k) or "") for k in ("message", "details", "hint")
        ).lower()
    else:
        sqlstate = ""
        message = str(body or "").lower()

    if sqlstate == "23P01" or any(m in message for m in CONFLICT_MARKERS):
        return ReservationFailureReason.ALREADY_BOOKED
    if sqlstate == "55P03" or any(m in message for m in LOCK_MARKERS):
        return ReservationFailureReason.LOCK_HELD
    if sqlstate[:2] in ("22", "23") or status_code in (400, 422):
        return ReservationFailureReason.VALIDATION
    return ReservationFailureReason.UNKNOWN


class CourtBookClient:
    """HTTP client for the venue-booking backend REST API."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize HTTP client.

        Args:
            transport: Optional httpx transport (used for testing)
        """
        self.rest_url = config.rest_url
        self.realtime_url = config.realtime_url
        self.timeout = config.request_timeout
        self.retry_attempts = config.retry_attempts
        self.retry_delay = config.retry_delay
        self.transport = transport
        bearer = config.access_token or config.api_key
        self.static_headers = {
            "Accept": "application/json",
            "Accept-Profile": "public",
            "apikey": config.api_key,
            "Authorization": f"Bearer {bearer}",
            "Cache-Control": "no-cache",
        }

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout if timeout is None else timeout,
            transport=self.transport,
        )

    async def with_retry(self, operation: Callable, *args, **kwargs) -> Any:
        """Execute a read operation with retry logic on server errors.

        Args:
            operation: The async function to execute
            *args: Arguments to pass to the operation
            **kwargs: Keyword arguments to pass to the operation

        Returns:
            Result of the operation

        Raises:
            ApiErrorException: If operation fails after retry attempts
        """
        attempt = 0
        while True:
            try:
                return await operation(*args, **kwargs)
            except ApiErrorException as e:
                retryable = e.code == "REQUEST_FAILED" or (
                    e.code == "HTTP_ERROR"
                    and int((e.details or {}).get("status", 0)) >= 500
                )
                if not retryable or attempt >= self.retry_attempts:
                    raise
                attempt += 1
                logger.warning(
                    f"Attempt {attempt} of {operation.__name__} failed: {e.message}. "
                    f"Retrying in {self.retry_delay}s..."
                )
                await asyncio.sleep(self.retry_delay)

    async def _make_request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any | None, dict[str, str] | None]:
        """Make HTTP request against the REST API.

        Args:
            method: HTTP method
            path: Path below the REST root, e.g. "bookings" or "rpc/get_available_slots"
            params: URL parameters (PostgREST filters)
            json_body: JSON request body
            headers: Extra request headers

        Returns:
            Tuple of (response_data, response_headers)
        """
        url = f"{self.rest_url}/{path}"
        request_headers = dict(self.static_headers)
        if headers:
            request_headers.update(headers)

        try:
            async with self._client() as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=request_headers,
                    params=params,
                    json=json_body,
                )
        except httpx.RequestError as e:
            raise ApiErrorException(
                code="REQUEST_FAILED",
                message=f"{method} request failed for {url}",
                details={"error": str(e)},
            ) from e

        response_headers = dict(response.headers)
        content_type = response.headers.get("content-type", "").lower()
        if "application/json" in content_type and response.content:
            response_data = response.json()
        else:
            response_data = response.text

        if 200 <= response.status_code < 300:
            return response_data, response_headers

        body = response_data if isinstance(response_data, dict) else None
        message = (body or {}).get("message") or f"HTTP {response.status_code}"
        raise ApiErrorException(
            code="HTTP_ERROR",
            message=str(message),
            details={
                "status": response.status_code,
                "body": body if body is not None else response.text[:500],
            },
        )

    async def get_court(self, court_id: str) -> Court | None:
        """Get a court by id.

        Args:
            court_id: Court identifier

        Returns:
            Court if found, None otherwise
        """
        rows, _ = await self._make_request(
            "GET",
            "courts",
            params={"id": f"eq.{court_id}", "select": COURT_COLUMNS},
        )
        if not rows:
            return None
        return Court(**rows[0])

    async def list_courts(
        self, venue_id: str, sport_id: str | None = None
    ) -> list[Court]:
        """List active courts of a venue, optionally for one sport."""
        params = {
            "venue_id": f"eq.{venue_id}",
            "is_active": "eq.true",
            "select": COURT_COLUMNS,
            "order": "name.asc",
        }
        if sport_id:
            params["sport_id"] = f"eq.{sport_id}"
        rows, _ = await self._make_request("GET", "courts", params=params)
        return [Court(**row) for row in rows or []]

    async def get_group_court_ids(self, group_id: str) -> list[str]:
        """Get ids of all active courts sharing a court group."""
        rows, _ = await self._make_request(
            "GET",
            "courts",
            params={
                "court_group_id": f"eq.{group_id}",
                "is_active": "eq.true",
                "select": "id",
            },
        )
        return [str(row["id"]) for row in rows or []]

    async def get_available_slots(self, court_id: str, date: str) -> list[TemplateSlot]:
        """Get the template-derived slot schedule of a court for a date.

        Args:
            court_id: Court identifier
            date: Date in YYYY-MM-DD format

        Returns:
            Slots with the backend's own availability flag, no prices
        """
        rows, _ = await self._make_request(
            "POST",
            "rpc/get_available_slots",
            json_body={"p_court_id": court_id, "p_date": date},
        )
        return [TemplateSlot(court_id=court_id, **row) for row in rows or []]

    async def get_template_slots(self, court_id: str) -> list[TemplateSlot]:
        """Get recurring template slots (with prices) of a court."""
        rows, _ = await self._make_request(
            "GET",
            "template_slots",
            params={
                "court_id": f"eq.{court_id}",
                "select": "court_id,start_time,end_time,price,is_available",
            },
        )
        return [TemplateSlot(**row) for row in rows or []]

    async def list_bookings(
        self,
        court_ids: Iterable[str],
        date: str,
        statuses: Iterable[BookingStatus] = OCCUPYING_STATUSES,
    ) -> list[Booking]:
        """List bookings of the given courts on a date, filtered by status."""
        rows, _ = await self._make_request(
            "GET",
            "bookings",
            params={
                "court_id": in_filter(court_ids),
                "booking_date": f"eq.{date}",
                "status": in_filter(s.value for s in statuses),
                "select": "id,court_id,booking_date,start_time,end_time,status",
            },
        )
        return [Booking(**row) for row in rows or []]

    async def list_blocked_slots(
        self, court_ids: Iterable[str], date: str
    ) -> list[BlockedSlot]:
        """List administrative blocks of the given courts on a date."""
        rows, _ = await self._make_request(
            "GET",
            "blocked_slots",
            params={
                "court_id": in_filter(court_ids),
                "date": f"eq.{date}",
                "select": "court_id,date,start_time,end_time,reason",
            },
        )
        return [BlockedSlot(**row) for row in rows or []]

    async def reserve_with_lock(self, request: ReservationRequest) -> str:
        """Create one booking through the backend's locking reservation call.

        Args:
            request: Reservation arguments

        Returns:
            Created booking id

        Raises:
            ApiErrorException: code RESERVATION_REJECTED with details["reason"]
                when the backend refused the reservation, REQUEST_FAILED on
                transport failure
        """
        try:
            booking_id, _ = await self._make_request(
                "POST",
                "rpc/create_booking_with_lock",
                json_body=request.to_rpc_params(),
            )
        except ApiErrorException as e:
            if e.code != "HTTP_ERROR":
                raise
            details = e.details or {}
            reason = classify_reservation_error(details.get("status"), details.get("body"))
            raise ApiErrorException(
                code="RESERVATION_REJECTED",
                message=e.message,
                details={**details, "reason": reason.value},
            ) from e

        if isinstance(booking_id, dict):
            booking_id = booking_id.get("id")
        if not booking_id:
            raise ApiErrorException(
                code="RESERVATION_REJECTED",
                message="Reservation call returned no booking id",
                details={"reason": ReservationFailureReason.UNKNOWN.value},
            )
        return str(booking_id).strip('"')

    async def cancel_booking(self, booking_id: str) -> bool:
        """Cancel a booking.

        Args:
            booking_id: Booking identifier

        Returns:
            True if cancellation successful, False otherwise
        """
        if not booking_id:
            return False

        try:
            await self._make_request(
                "PATCH",
                "bookings",
                params={"id": f"eq.{booking_id}"},
                json_body={"status": BookingStatus.CANCELLED.value},
                headers={"Prefer": "return=minimal"},
            )
            return True

        except ApiErrorException as e:
            logger.error(f"Failed to cancel booking {booking_id}: {e.message}")
            return False

    async def stream_changes(
        self, table: str, filters: dict[str, str]
    ) -> AsyncIterator[ChangeEvent]:
        """Stream row changes of a table from the server-sent change feed.

        Args:
            table: Table name ("bookings" or "blocked_slots")
            filters: PostgREST-style filters, e.g. {"date": "eq.2025-01-01"}

        Yields:
            Change events until the stream closes
        """
        url = f"{self.realtime_url}/{table}"
        headers = dict(self.static_headers)
        headers["Accept"] = "text/event-stream"

        try:
            async with self._client(timeout=None) as client:
                async with client.stream(
                    "GET", url, params=filters, headers=headers
                ) as response:
                    if response.status_code >= 300:
                        raise ApiErrorException(
                            code="HTTP_ERROR",
                            message=f"HTTP {response.status_code}",
                            details={"status": response.status_code},
                        )
                    event_type = "message"
                    data_lines: list[str] = []
                    async for line in response.aiter_lines():
                        if line.startswith("event:"):
                            event_type = line[6:].strip()
                        elif line.startswith("data:"):
                            data_lines.append(line[5:].strip())
                        elif not line:
                            event = _parse_change_event(table, event_type, data_lines)
                            if event is not None:
                                yield event
                            event_type = "message"
                            data_lines = []
        except httpx.RequestError as e:
            raise ApiErrorException(
                code="REQUEST_FAILED",
                message=f"Change stream failed for {url}",
                details={"error": str(e)},
            ) from e


def _parse_change_event(
    table: str, event_type: str, data_lines: list[str]
) -> ChangeEvent | None:
    """Build a change event from one SSE frame; keep-alives yield None."""
    event_type = event_type.upper()
    if event_type not in ("INSERT", "UPDATE", "DELETE") or not data_lines:
        return None
    try:
        payload = json.loads("\n".join(data_lines))
    except json.JSONDecodeError:
        logger.warning(f"Malformed change event on {table}: {data_lines!r}")
        return None
    if not isinstance(payload, dict):
        return None
    record = payload.get("record", payload)
    return ChangeEvent(
        table=table,
        event_type=event_type,
        record=record if isinstance(record, dict) else {},
        old_record=payload.get("old_record") or {},
    )
