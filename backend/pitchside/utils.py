from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def format_match_day(dt: datetime) -> str:
    """Short human date used in notification texts, e.g. 'Mar 7'."""
    dt = ensure_utc(dt)
    return f"{dt.strftime('%b')} {dt.day}"


def format_amount(amount: float) -> str:
    return f"{amount:.2f}€"
