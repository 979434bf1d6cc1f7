"""
Shared utility functions used throughout the engine.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - generate_id(): UUID4 string generator (for primary keys and claim tokens)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value): Parse a TIMESTAMPTZ value from a Supabase row
    - to_iso(dt): Serialize an optional datetime for a Supabase row
    - Clock: Type alias for injectable ``() -> datetime`` callables
"""

from datetime import datetime, timezone
import uuid
from typing import Any, Callable, Optional

# ---------------------------------------------------------------------------
# Components take a clock argument instead of calling utc_now() directly
# so tests can freeze time.
# ---------------------------------------------------------------------------
Clock = Callable[[], datetime]


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    for Supabase compatibility (TIMESTAMPTZ columns).

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """
    Generate a unique ID for database records.

    Uses UUID4 which is suitable for:
    - Database primary keys
    - Claim tokens written by the dispatch loop

    Returns:
        A unique UUID string (compatible with Supabase UUID type).
    """
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp value coming back from Supabase.

    PostgREST returns ISO-8601 strings, sometimes with a trailing ``Z``.
    ``datetime`` instances are passed through (normalised to UTC).

    Args:
        value: ISO string, datetime, or ``None``.

    Returns:
        Timezone-aware UTC datetime, or ``None`` for empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime as a UTC ISO-8601 string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "Clock",
    "utc_now",
    "generate_id",
    "ensure_utc",
    "parse_timestamp",
    "to_iso",
]
