"""Utility functions for CourtBook MCP server."""

import logging
import re
from collections.abc import Iterable
from datetime import datetime

logger = logging.getLogger(__name__)

date_regex = re.compile(r"^\d{4}-\d{2}-\d{2}$")
time_regex = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def validate_date(date_str: str) -> bool:
    """Validate date format (YYYY-MM-DD).

    Args:
        date_str: Date string to validate

    Returns:
        True if valid, False otherwise
    """
    try:
        if not re.match(date_regex, date_str):
            return False

        # Try to create a date object to validate
        datetime.strptime(date_str, "%Y-%m-%d")
        return True

    except (ValueError, TypeError):
        return False


def validate_time(time_str: str) -> bool:
    """Validate time format (HH:MM or HH:MM:SS).

    Args:
        time_str: Time string to validate

    Returns:
        True if valid, False otherwise
    """
    try:
        normalize_time(time_str)
        return True
    except (ValueError, TypeError):
        return False


def normalize_time(time_str: str) -> str:
    """Normalize a wall-clock time to canonical HH:MM:SS.

    Missing seconds are padded with zeros and single-digit hours are
    zero-padded, so "9:30" and "09:30:00" compare equal.

    Args:
        time_str: Time in H:MM, HH:MM or HH:MM:SS format

    Returns:
        Time in HH:MM:SS format

    Raises:
        ValueError: If the string is not a valid time of day
    """
    match = re.match(time_regex, str(time_str).strip())
    if not match:
        raise ValueError(f"Invalid time format: {time_str!r}")

    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise ValueError(f"Time out of range: {time_str!r}")

    return f"{hour:02d}:{minute:02d}:{second:02d}"


def time_to_seconds(time_str: str) -> int:
    """Convert a wall-clock time to seconds since midnight."""
    hour, minute, second = map(int, normalize_time(time_str).split(":"))
    return hour * 3600 + minute * 60 + second


def format_time_for_display(time_str: str) -> str:
    """Format time for display (HH:MM[:SS] -> 12-hour clock).

    Args:
        time_str: Time string

    Returns:
        Formatted time string, e.g. "9:30 AM"
    """
    try:
        hour, minute, _ = map(int, normalize_time(time_str).split(":"))
    except ValueError:
        return time_str

    period = "PM" if hour >= 12 else "AM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d} {period}"


def format_slot_label(start_time: str, end_time: str) -> str:
    """Build the display key of a slot, e.g. "9:00 AM - 9:30 AM"."""
    return f"{format_time_for_display(start_time)} - {format_time_for_display(end_time)}"


def format_price(amount: float) -> str:
    """Format a currency amount with two decimals."""
    return f"{amount:.2f}"


def in_filter(values: Iterable[str]) -> str:
    """Render a PostgREST ``in`` filter, e.g. ``in.(a,b)``."""
    return f"in.({','.join(str(v) for v in values)})"
