"""Shared validation utilities"""

import re
from datetime import datetime, time
from typing import Optional, Union

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$")


def parse_hhmm(value: Union[str, time]) -> time:
    """
    Parse a wall-clock time in HH:MM (or HH:MM:SS) format.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def format_hhmm(value: Union[time, datetime]) -> str:
    """Format a time as HH:MM (drops seconds, as stored in the schedule tables)"""
    return value.strftime("%H:%M")


def normalize_hhmm(value: Optional[str]) -> Optional[str]:
    """Accept HH:MM or HH:MM:SS and return HH:MM"""
    if value is None:
        return None
    return format_hhmm(parse_hhmm(value))


def is_valid_time_range(start: str, end: str) -> bool:
    """True when end is strictly after start (both HH:MM)"""
    return time_to_minutes(end) > time_to_minutes(start)


def time_to_minutes(value: str) -> int:
    parsed = parse_hhmm(value)
    return parsed.hour * 60 + parsed.minute


def validate_owner_token(token: Optional[str]) -> str:
    """
    Validate an opaque owner token (browsing session id or client identity).

    Raises:
        ValueError: If the token is missing or unreasonably long
    """
    if not token or not token.strip():
        raise ValueError("Owner token is required")
    token = token.strip()
    if len(token) > 255:
        raise ValueError("Owner token is too long")
    return token


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email
