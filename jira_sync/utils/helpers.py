"""
Helper Utilities Module
Common utility functions used across the application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from dateutil import parser as date_parser


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the database columns."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def parse_jira_datetime(dt_string: Optional[str]) -> Optional[datetime]:
    """
    Parse Jira datetime string to Python datetime.

    Offsets are normalized to naive UTC.

    Args:
        dt_string: Jira datetime string (ISO 8601 format)

    Returns:
        datetime object or None if missing or unparsable
    """
    if not dt_string or not isinstance(dt_string, str):
        return None

    try:
        parsed = date_parser.parse(dt_string)
    except (ValueError, TypeError, OverflowError):
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.UTC).replace(tzinfo=None)
    return parsed


def safe_get(data: Dict, *keys, default=None) -> Any:
    """
    Safely get nested dictionary value.

    Args:
        data: Dictionary to traverse
        *keys: Keys to follow
        default: Default value if key not found

    Returns:
        Value at path or default
    """
    result = data
    for key in keys:
        if isinstance(result, dict):
            result = result.get(key)
        else:
            return default
        if result is None:
            return default
    return result


def sanitize_string(text: Optional[str], max_length: int = None) -> Optional[str]:
    """
    Sanitize string for database storage.

    Args:
        text: Text to sanitize
        max_length: Maximum length (truncate if exceeded)

    Returns:
        Sanitized string
    """
    if text is None:
        return None

    text = str(text).replace('\x00', '')

    if max_length and len(text) > max_length:
        text = text[:max_length - 3] + '...'

    return text


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Clamp value into [minimum, maximum]."""
    return min(maximum, max(minimum, value))


def split_scopes(scope: Optional[str]) -> List[str]:
    """Split an OAuth space-separated scope string, dropping blanks."""
    if not scope:
        return []
    return [s for s in scope.split() if s]


def to_jira_id(value: Any) -> str:
    """Jira ids arrive as ints or strings; they are stored as strings."""
    return str(value)
