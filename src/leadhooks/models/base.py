"""Base helpers shared by Leadhooks models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_3f2b9c0e6d1a4b7c8e9f0a1b2c3d4e5f"
        generate_id("evt") -> "evt_0a1b2c3d4e5f60718293a4b5c6d7e8f9"
    """
    return f"{prefix}_{uuid4().hex}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def iso_timestamp(value: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC with millisecond precision.

    Naive datetimes are taken to be UTC.

    Examples:
        iso_timestamp(datetime(2024, 5, 1, 12, 0, tzinfo=UTC)) -> "2024-05-01T12:00:00.000Z"
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
