"""Timestamp helpers. All persisted timestamps are UTC ISO-8601 with a Z suffix."""

from datetime import datetime, timezone


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(now())


def parse_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp; None and unparseable values give None."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def archive_stamp(value: datetime | None = None) -> str:
    """Filesystem-safe timestamp for archive directory names: 2024-05-01T12-30-45."""
    return to_iso(value or now()).replace(":", "-").replace(".", "-")[:19]
