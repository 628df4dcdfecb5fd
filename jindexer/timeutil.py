"""
RFC3339 helpers.

Chain headers carry nanosecond timestamps ("2024-05-01T12:00:00.123456789Z");
datetime stops at microseconds, so extra fraction digits are truncated.
All returned datetimes are timezone-aware UTC.
"""

import re
from datetime import datetime, timezone

_RFC3339 = re.compile(
    r'^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$'
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime.

    Raises:
        ValueError: if the value is not RFC3339 (date, time and offset required)
    """
    if not isinstance(value, str):
        raise ValueError(f"expected RFC3339 string, got {type(value).__name__}")

    match = _RFC3339.match(value.strip())
    if not match:
        raise ValueError(f"invalid RFC3339 timestamp: {value!r}")

    date_part, time_part, fraction, offset = match.groups()
    if fraction:
        fraction = fraction[:7].ljust(7, "0")  # '.' + 6 digits
    else:
        fraction = ""
    if offset in ("Z", "z"):
        offset = "+00:00"

    parsed = datetime.fromisoformat(f"{date_part}T{time_part}{fraction}{offset}")
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Format a datetime as RFC3339 UTC with a trailing 'Z'."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
