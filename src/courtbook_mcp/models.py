"""Data models for CourtBook MCP server."""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from .utils import format_slot_label, normalize_time


class BookingStatus(StrEnum):
    """Lifecycle states of a booking row."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy their time range
OCCUPYING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class ReservationFailureReason(StrEnum):
    """Machine-distinguishable reasons reported by the locking reservation call."""

    ALREADY_BOOKED = "already-booked"
    LOCK_HELD = "lock-held-by-other"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class _TimeRangeModel(BaseModel):
    """Base for rows carrying a wall-clock time range."""

    start_time: str = Field(..., description="Start time in HH:MM:SS format")
    end_time: str = Field(..., description="End time in HH:MM:SS format")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_time(value)

    @property
    def label(self) -> str:
        """Display key, e.g. '9:00 AM - 9:30 AM'."""
        return format_slot_label(self.start_time, self.end_time)


class Court(BaseModel):
    """Represents a court within a venue."""

    id: str = Field(..., description="Court identifier")
    name: str = Field("", description="Court name")
    venue_id: str | None = Field(None, description="Venue identifier")
    sport_id: str | None = Field(None, description="Sport identifier")
    court_group_id: str | None = Field(
        None, description="Shared physical resource group, if any"
    )
    hourly_rate: float = Field(0.0, description="Fallback slot price")
    is_active: bool = Field(True, description="Whether the court accepts bookings")


class CourtGroup(BaseModel):
    """Courts sharing one physical resource."""

    id: str = Field(..., description="Group identifier")
    venue_id: str | None = Field(None, description="Venue identifier")
    court_ids: list[str] = Field(default_factory=list, description="Member courts")


class TemplateSlot(_TimeRangeModel):
    """Recurring offer of a slot and its nominal price."""

    court_id: str | None = Field(None, description="Court identifier")
    price: float | None = Field(None, description="Nominal slot price")
    is_available: bool = Field(True, description="Template's own availability flag")


class Booking(_TimeRangeModel):
    """Booking row as returned by the backend."""

    id: str | None = Field(None, description="Booking identifier")
    court_id: str = Field(..., description="Court identifier")
    booking_date: str | None = Field(None, description="Date in YYYY-MM-DD format")
    status: BookingStatus = Field(BookingStatus.CONFIRMED, description="Status")


class BlockedSlot(_TimeRangeModel):
    """Administrative block occupying a time range."""

    court_id: str = Field(..., description="Court identifier")
    date: str | None = Field(None, description="Date in YYYY-MM-DD format")
    reason: str | None = Field(None, description="Why the slot was blocked")


class AvailableSlot(_TimeRangeModel):
    """Derived per-slot availability for one court and date."""

    is_available: bool = Field(..., description="Whether the slot can be booked")
    price: float = Field(..., description="Slot price")


class BookingBlock(_TimeRangeModel):
    """Maximal contiguous run of selected slots, reserved in one call."""

    slots: list[str] = Field(default_factory=list, description="Slot display keys")
    price: float = Field(0.0, description="Summed price of the slots")


class ReservationRequest(BaseModel):
    """Arguments of the locking reservation call."""

    court_id: str = Field(..., description="Court identifier")
    user_id: str = Field(..., description="Payer identifier")
    booking_date: str = Field(..., description="Date in YYYY-MM-DD format")
    start_time: str = Field(..., description="Block start in HH:MM:SS format")
    end_time: str = Field(..., description="Block end in HH:MM:SS format")
    total_price: float = Field(..., description="Summed block price")
    payment_reference: str | None = Field(None, description="Gateway payment id")
    payment_status: str = Field("completed", description="Payment status")
    guest_name: str | None = Field(None, description="Guest name for on-behalf bookings")
    guest_phone: str | None = Field(None, description="Guest phone for on-behalf bookings")

    def to_rpc_params(self) -> dict:
        """Render the request as backend RPC parameters."""
        params = {
            "p_court_id": self.court_id,
            "p_user_id": self.user_id,
            "p_booking_date": self.booking_date,
            "p_start_time": self.start_time,
            "p_end_time": self.end_time,
            "p_total_price": self.total_price,
            "p_payment_reference": self.payment_reference,
            "p_payment_status": self.payment_status,
        }
        if self.guest_name:
            params["p_guest_name"] = self.guest_name
        if self.guest_phone:
            params["p_guest_phone"] = self.guest_phone
        return params


class CommittedBlock(BaseModel):
    """A block the backend accepted."""

    booking_id: str = Field(..., description="Created booking identifier")
    block: BookingBlock = Field(..., description="Reserved block")


class SubmissionResult(BaseModel):
    """Outcome of a fully successful submission."""

    court_id: str = Field(..., description="Court identifier")
    date: str = Field(..., description="Date in YYYY-MM-DD format")
    bookings: list[CommittedBlock] = Field(..., description="Created bookings")
    total_price: float = Field(..., description="Sum over all blocks")
    message: str = Field("", description="User-facing summary")


class ChangeEvent(BaseModel):
    """Row change pushed by the backend change stream."""

    table: str = Field(..., description="Source table")
    event_type: str = Field(..., description="INSERT, UPDATE or DELETE")
    record: dict = Field(default_factory=dict, description="New row values")
    old_record: dict = Field(default_factory=dict, description="Previous row values")


class Notice(BaseModel):
    """User-facing notification."""

    level: str = Field("info", description="info, success, warning or error")
    title: str = Field(..., description="Short heading")
    message: str = Field(..., description="Notification body")
    time_range: str | None = Field(None, description="Affected slot or block label")


class ApiError(BaseModel):
    """Represents an API error response."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    details: dict | None = Field(None, description="Additional error details")


class ApiErrorException(Exception):
    """Exception class for API errors that uses ApiError model for data."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        """Initialize the exception with error details."""
        super().__init__(f"[{code}] {message}")
        self.error = ApiError(code=code, message=message, details=details)
        self.code = code
        self.message = message
        self.details = details


class BookingError(ApiErrorException):
    """Base class for failures surfaced by the booking flow."""

    code_name = "BOOKING_ERROR"
    title = "Booking failed"
    user_message = "There was an issue creating your booking. Please try again."

    def __init__(
        self,
        message: str | None = None,
        details: dict | None = None,
        failed_block: BookingBlock | None = None,
        committed_blocks: list[CommittedBlock] | None = None,
    ):
        super().__init__(self.code_name, message or self.user_message, details)
        self.failed_block = failed_block
        self.committed_blocks = list(committed_blocks or [])


class BookingValidationError(BookingError):
    """Required fields missing or malformed; detected before any network call."""

    code_name = "VALIDATION_ERROR"
    title = "Missing information"
    user_message = "Please complete all booking details."


class StaleSelectionError(BookingError):
    """The pre-submission re-check emptied the selection."""

    code_name = "STALE_SELECTION"
    title = "Booking failed"
    user_message = (
        "Your selected slots are no longer available. Please select new time slots."
    )


class ConflictError(BookingError):
    """A confirmed reservation already covers the requested range."""

    code_name = "SLOT_CONFLICT"
    title = "Booking unavailable"
    user_message = (
        "Someone just booked one of your selected slots. "
        "Please refresh and select available times."
    )


class LockContentionError(BookingError):
    """Another caller currently holds the reservation lock for the resource."""

    code_name = "LOCK_CONTENTION"
    title = "Booking in progress"
    user_message = (
        "Another user is currently booking this time slot. "
        "Please wait a moment and try again."
    )


class NetworkError(BookingError):
    """Transport failure or unrecognised backend error."""

    code_name = "NETWORK_ERROR"
    title = "Booking failed"
    user_message = "There was an issue creating your booking. Please try again."
