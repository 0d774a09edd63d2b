"""Submission of a slot selection as one locking reservation per contiguous block."""

import logging
from collections.abc import Awaitable, Callable

from .client import CourtBookClient
from .config import config
from .models import (
    ApiErrorException,
    AvailableSlot,
    BookingBlock,
    BookingError,
    BookingValidationError,
    CommittedBlock,
    ConflictError,
    LockContentionError,
    NetworkError,
    Notice,
    ReservationFailureReason,
    ReservationRequest,
    StaleSelectionError,
    SubmissionResult,
)
from .selection import Selection
from .utils import format_price, validate_date

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[Notice], Awaitable[None]]
ReconcileCallback = Callable[[], Awaitable[list[AvailableSlot]]]

REASON_ERRORS: dict[ReservationFailureReason, type[BookingError]] = {
    ReservationFailureReason.ALREADY_BOOKED: ConflictError,
    ReservationFailureReason.LOCK_HELD: LockContentionError,
    ReservationFailureReason.VALIDATION: BookingValidationError,
    ReservationFailureReason.UNKNOWN: NetworkError,
}


def classify_failure(
    error: ApiErrorException,
    block: BookingBlock | None = None,
    committed: list[CommittedBlock] | None = None,
) -> BookingError:
    """Turn a backend or transport failure into a booking error."""
    if isinstance(error, BookingError):
        return error
    details = error.details or {}
    error_class: type[BookingError] = NetworkError
    if error.code == "RESERVATION_REJECTED":
        try:
            reason = ReservationFailureReason(details.get("reason"))
        except ValueError:
            reason = ReservationFailureReason.UNKNOWN
        error_class = REASON_ERRORS[reason]
    return error_class(
        details={"backend_message": error.message, **details},
        failed_block=block,
        committed_blocks=committed,
    )


async def _log_notice(notice: Notice) -> None:
    logger.info(f"{notice.title}: {notice.message}")


class BookingSubmitter:
    """Submits a selection block by block, strictly in ascending time order."""

    def __init__(
        self,
        client: CourtBookClient,
        notify: NotifyCallback | None = None,
        compensate: bool | None = None,
    ):
        """Initialize submitter.

        Args:
            client: Backend client
            notify: Receives user-facing notices
            compensate: Cancel committed blocks when a later block fails,
                defaults to configuration
        """
        self.client = client
        self.notify = notify or _log_notice
        self.compensate = config.compensate_partial if compensate is None else compensate
        self.submitting = False

    async def submit(
        self,
        selection: Selection,
        court_id: str,
        date: str,
        user_id: str,
        reconcile: ReconcileCallback,
        payment_reference: str | None = None,
        payment_status: str = "completed",
        guest_name: str | None = None,
        guest_phone: str | None = None,
    ) -> SubmissionResult:
        """Reserve the selection.

        The selection is reconciled against fresh availability first. Blocks
        are then reserved one at a time; the first failure stops submission
        and blocks already committed stay booked unless compensation is on.

        Args:
            selection: Slots to book
            court_id: Court identifier
            date: Date in YYYY-MM-DD format
            user_id: Payer identifier
            reconcile: Runs a fresh availability pass and evicts stale slots
            payment_reference: Gateway payment id
            payment_status: Payment status stored with each booking
            guest_name: Guest name for bookings made on someone's behalf
            guest_phone: Guest phone for bookings made on someone's behalf

        Returns:
            Submission result

        Raises:
            BookingError: One of its subclasses, after the matching notice
                has been delivered
        """
        if self.submitting:
            error = BookingValidationError(
                "Please wait while we process your booking.",
                details={"reason": "submission_in_progress"},
            )
            error.title = "Booking in progress"
            await self.notify(self._failure_notice(error))
            raise error

        self.submitting = True
        try:
            return await self._submit(
                selection,
                court_id,
                date,
                user_id,
                reconcile,
                payment_reference,
                payment_status,
                guest_name,
                guest_phone,
            )
        except BookingError as e:
            await self.notify(self._failure_notice(e))
            raise
        finally:
            self.submitting = False

    async def _submit(
        self,
        selection: Selection,
        court_id: str,
        date: str,
        user_id: str,
        reconcile: ReconcileCallback,
        payment_reference: str | None,
        payment_status: str,
        guest_name: str | None,
        guest_phone: str | None,
    ) -> SubmissionResult:
        if not court_id or not user_id or not validate_date(date):
            raise BookingValidationError("Please select all required fields to continue.")
        if selection.is_empty:
            raise BookingValidationError("Please select at least one time slot to continue.")

        try:
            await reconcile()
        except ApiErrorException as e:
            raise classify_failure(e) from e
        except ValueError as e:
            raise NetworkError(details={"backend_message": str(e)}) from e
        if selection.is_empty:
            raise StaleSelectionError()

        blocks = selection.blocks()
        committed: list[CommittedBlock] = []
        for block in blocks:
            request = ReservationRequest(
                court_id=court_id,
                user_id=user_id,
                booking_date=date,
                start_time=block.start_time,
                end_time=block.end_time,
                total_price=block.price,
                payment_reference=payment_reference,
                payment_status=payment_status,
                guest_name=guest_name,
                guest_phone=guest_phone,
            )
            try:
                booking_id = await self.client.reserve_with_lock(request)
            except ApiErrorException as e:
                error = classify_failure(e, block, committed)
                error.details = {**(error.details or {}), "total_blocks": len(blocks)}
                logger.warning(
                    f"Block {block.label} on {date} failed ({error.code}) "
                    f"after {len(committed)} of {len(blocks)} block(s): {e.message}"
                )
                if committed and self.compensate:
                    await self._compensate(committed, error)
                # booked slots must not be offered for submission again
                for entry in error.committed_blocks:
                    selection.discard(entry.block.slots)
                raise error from e

            logger.info(f"Booked {block.label} on {date} for court {court_id}: {booking_id}")
            committed.append(CommittedBlock(booking_id=booking_id, block=block))

        selection.clear()
        total = sum(c.block.price for c in committed)
        message = f"You have successfully booked {len(committed)} slot(s)."
        await self.notify(
            Notice(
                level="success",
                title="Booking successful!",
                message=message,
                time_range=", ".join(c.block.label for c in committed),
            )
        )
        return SubmissionResult(
            court_id=court_id,
            date=date,
            bookings=committed,
            total_price=total,
            message=f"{message} Total: {format_price(total)}",
        )

    async def _compensate(self, committed: list[CommittedBlock], error: BookingError) -> None:
        """Cancel committed blocks, newest first; survivors stay in the error."""
        survivors = []
        for entry in reversed(committed):
            if not await self.client.cancel_booking(entry.booking_id):
                survivors.insert(0, entry)
        error.details = {**(error.details or {}), "compensated": True}
        error.committed_blocks = survivors

    def _failure_notice(self, error: BookingError) -> Notice:
        message = error.message
        time_range = error.failed_block.label if error.failed_block else None
        if time_range:
            message = f"{message} ({time_range})"
        if error.committed_blocks:
            ranges = ", ".join(c.block.label for c in error.committed_blocks)
            count = len(error.committed_blocks)
            total = (error.details or {}).get("total_blocks", count + 1)
            message += (
                f" {count} of {total} booking block(s) were confirmed before the failure "
                f"({ranges}) and have not been cancelled."
            )
        elif (error.details or {}).get("compensated"):
            message += " Bookings confirmed before the failure were cancelled."
        return Notice(level="error", title=error.title, message=message, time_range=time_range)
