"""Datetime helpers for FIC payloads and database values."""

from __future__ import annotations

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_fic_datetime(raw: str | None) -> datetime | None:
    """
    Parse FIC timestamps.

    FIC sends "2024-01-15 10:30:00" (no zone, Europe/Rome wall time treated
    as UTC here) in resource payloads and RFC 3339 in CloudEvents ``time``.
    """
    if not raw:
        return None
    value = str(raw).strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return as_utc(parsed)


def parse_fic_date(raw: str | None) -> date | None:
    """Parse a FIC document date ("2024-01-15"); tolerates a trailing time."""
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return None
