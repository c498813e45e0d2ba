from datetime import datetime, timezone
from sqlalchemy.types import TypeDecorator, DateTime as SA_DateTime


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime column that always round-trips as UTC.

    SQLite drops the offset on storage, so values are normalised to UTC on
    the way in and re-tagged as UTC on the way out.
    """

    impl = SA_DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
