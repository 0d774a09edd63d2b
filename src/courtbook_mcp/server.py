"""Main MCP server implementation for CourtBook venue booking."""

import asyncio
import logging
import sys
from typing import Any

if "--debug" in sys.argv:
    import debugpy

    debugpy.listen(("127.0.0.1", 5678))
    print("Waiting for debugger to attach on port 5678...", file=sys.stderr, flush=True)
    debugpy.wait_for_client()
    print("Debugger attached!", file=sys.stderr, flush=True)

from fastmcp import FastMCP

from .config import config
from .endpoints.booking import booking_endpoint
from .endpoints.courts import courts_endpoint

# Configure logging
logging.basicConfig(
    filename="courtbook_mcp.log",
    level=logging.DEBUG if config.enable_debug_mode else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create MCP server
mcp = FastMCP("CourtBook Venue Booking Server")


@mcp.tool()
async def list_courts(venue_id: str, sport_id: str | None = None) -> dict[str, Any]:
    """Get active courts of a venue.

    Args:
        venue_id: Venue identifier
        sport_id: Sport identifier to filter by (optional)

    Returns:
        List of courts with their hourly rates
    """
    try:
        return await courts_endpoint.get_courts(venue_id, sport_id)

    except Exception as e:
        logger.error(f"Error listing courts for venue {venue_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def get_court(court_id: str) -> dict[str, Any]:
    """Get a single court.

    Args:
        court_id: Court identifier

    Returns:
        Court details
    """
    try:
        court = await courts_endpoint.get_court_by_id(court_id)
        if court is None:
            return {"success": False, "message": f"Error: unknown court {court_id}"}
        return {"success": True, "message": "Court found", "data": court.model_dump()}

    except Exception as e:
        logger.error(f"Error getting court {court_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def open_booking_view(
    court_id: str, date: str, policy: str | None = None
) -> dict[str, Any]:
    """Open a booking view for a court and date.

    The view keeps availability fresh (periodic refresh plus live change
    notifications) until it is closed. Pass the returned view_id to the
    other booking tools.

    Args:
        court_id: Court identifier
        date: Date in YYYY-MM-DD format (e.g., '2025-09-24')
        policy: Slot selection policy, "partition" (default) allows gaps and
            books each run separately, "strict" only allows one continuous run

    Returns:
        View snapshot with view_id, slots and selection
    """
    try:
        result = await booking_endpoint.open_view(court_id, date, policy)
        if result["success"]:
            logger.debug(f"Opened view {result['data']['view_id']} for {court_id} on {date}")
        return result

    except Exception as e:
        logger.error(f"Error opening booking view for court {court_id} on {date}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def get_availability(view_id: str, refresh: bool = False) -> dict[str, Any]:
    """Get the slots of an open booking view.

    Args:
        view_id: Booking view ID (call open_booking_view to retrieve)
        refresh: Re-fetch availability from the backend first

    Returns:
        Slots with availability and price, plus the current selection
    """
    try:
        if refresh:
            return await booking_endpoint.refresh_view(view_id)
        return await booking_endpoint.get_view(view_id)

    except Exception as e:
        logger.error(f"Error getting availability for view {view_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def toggle_slot(view_id: str, start_time: str, end_time: str) -> dict[str, Any]:
    """Select or deselect a slot.

    Args:
        view_id: Booking view ID (call open_booking_view to retrieve)
        start_time: Slot start in HH:MM format (e.g., "09:00")
        end_time: Slot end in HH:MM format (e.g., "09:30")

    Returns:
        Outcome (added, removed, unavailable, rejected) and the selection
    """
    try:
        return await booking_endpoint.toggle_slot(view_id, start_time, end_time)

    except Exception as e:
        logger.error(f"Error toggling {start_time}-{end_time} in view {view_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def get_selection(view_id: str) -> dict[str, Any]:
    """Get the selected slots, the booking blocks they form and the total price.

    Args:
        view_id: Booking view ID (call open_booking_view to retrieve)
    """
    try:
        return await booking_endpoint.get_selection(view_id)

    except Exception as e:
        logger.error(f"Error getting selection of view {view_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def change_booking_view(
    view_id: str, court_id: str | None = None, date: str | None = None
) -> dict[str, Any]:
    """Switch an open view to another court and/or date. Clears the selection.

    Args:
        view_id: Booking view ID (call open_booking_view to retrieve)
        court_id: New court identifier (optional)
        date: New date in YYYY-MM-DD format (optional)
    """
    try:
        return await booking_endpoint.change_view(view_id, court_id, date)

    except Exception as e:
        logger.error(f"Error changing view {view_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def submit_booking(
    view_id: str,
    user_id: str,
    payment_reference: str | None = None,
    payment_status: str = "completed",
    guest_name: str | None = None,
    guest_phone: str | None = None,
) -> dict[str, Any]:
    """Book the selected slots, one reservation per continuous block.

    Availability is re-checked right before booking; slots taken in the
    meantime are dropped from the selection and reported.

    Args:
        view_id: Booking view ID (call open_booking_view to retrieve)
        user_id: Paying user ID
        payment_reference: Payment gateway reference (optional)
        payment_status: Payment status stored with the bookings
        guest_name: Guest name when booking on someone's behalf (optional)
        guest_phone: Guest phone when booking on someone's behalf (optional)

    Returns:
        Booking result. On failure "code" tells why and "committed" lists
        blocks that were booked before the failure
    """
    try:
        result = await booking_endpoint.submit_booking(
            view_id,
            user_id,
            payment_reference=payment_reference,
            payment_status=payment_status,
            guest_name=guest_name,
            guest_phone=guest_phone,
        )

        if result["success"]:
            logger.debug(f"Submitted view {view_id} for user {user_id}")
        else:
            logger.warning(f"Submission failed for view {view_id}: {result['message']}")

        return result

    except Exception as e:
        logger.error(f"Error submitting view {view_id} for user {user_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}", "data": None}


@mcp.tool()
async def close_booking_view(view_id: str) -> dict[str, Any]:
    """Close a booking view and stop its live updates.

    Args:
        view_id: Booking view ID
    """
    try:
        return await booking_endpoint.close_view(view_id)

    except Exception as e:
        logger.error(f"Error closing view {view_id}: {e}")
        return {"success": False, "message": f"Error: {str(e)}"}


async def initialize() -> None:
    """Initialize the server components."""

    # Get configuration info
    config_info = config.to_dict()
    logger.debug(f"Configuration loaded: {config_info}")


def main() -> None:
    """Main server entry point."""
    asyncio.run(initialize())

    # Run the MCP server (synchronous)
    mcp.run(show_banner=False)


if __name__ == "__main__":
    main()
