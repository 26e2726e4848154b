"""
Timestamp helpers and the change-detection oracle.

Every timestamp issync stores or compares is an ISO-8601 UTC string in
GitHub's own format (``2024-01-15T10:30:00Z``). With a fixed width and a
fixed zone, lexical order equals chronological order, so "has X changed
since Y" is a plain string comparison.
"""

from datetime import UTC, datetime

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def is_later(a: str | None, b: str | None) -> bool:
    """
    Return True if timestamp ``a`` is strictly later than ``b``.

    A missing timestamp on either side counts as "not later", i.e. no
    modification.
    """
    if not a or not b:
        return False
    return a > b


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as a second-precision UTC ISO-8601 string."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.strftime(TIMESTAMP_FORMAT)


def utc_now() -> str:
    """Current wall-clock time in the canonical format."""
    return format_timestamp(datetime.now(UTC))


def from_epoch(seconds: float) -> str:
    """Convert a POSIX timestamp (e.g. a file mtime) to the canonical format."""
    return format_timestamp(datetime.fromtimestamp(seconds, UTC))


def parse_timestamp(value: str) -> datetime:
    """Parse a canonical (or any ISO-8601) timestamp into an aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
