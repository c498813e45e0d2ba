from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def serialize_datetime(dt: datetime | None) -> str | None:
    if dt is None:
        return None

    return ensure_utc(dt).isoformat().replace("+00:00", "Z")
