"""Time helpers. All expiry checks compare timezone-aware UTC datetimes."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from storage as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def has_passed(deadline: datetime | None, now: datetime | None = None) -> bool:
    """True when ``deadline`` is set and not in the future."""
    if deadline is None:
        return False
    return as_utc(deadline) <= (as_utc(now) or utc_now())
