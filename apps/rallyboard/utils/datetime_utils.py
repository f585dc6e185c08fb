"""
Datetime utility functions.
"""

from datetime import date, datetime
from typing import Optional, Union
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def parse_session_date(date_input: Union[str, date, datetime]) -> date:
    """
    Parse a session date from the formats clients send.

    Accepts ISO dates ("2026-01-21"), ISO datetimes ("2026-01-21T18:00:00Z"),
    US dates ("1/21/2026") or date/datetime objects.

    Raises:
        ValueError: If the input cannot be parsed
    """
    if isinstance(date_input, datetime):
        return date_input.date()
    if isinstance(date_input, date):
        return date_input
    if not isinstance(date_input, str):
        raise ValueError(f"Expected string or date, got {type(date_input)}")

    date_str = date_input.strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            pass

    try:
        return datetime.fromisoformat(date_str.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError("Invalid date format provided.")


def isoformat_or_none(value: Optional[Union[date, datetime]]) -> Optional[str]:
    """Serialize a date/datetime for JSON responses."""
    return value.isoformat() if value else None
