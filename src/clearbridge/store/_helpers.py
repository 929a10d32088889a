"""Helper functions for the clearance store."""

from datetime import UTC, datetime

SYSTEM_USER = "System"


def now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive timestamp read back from SQLite.

    SQLite drops tzinfo on storage; every timestamp we write is UTC, so a
    naive value coming back is UTC by construction.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
