"""Column types shared by the KPIWatch tables."""

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from kpiwatch.utils.clock import as_utc


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime.

    Values are normalized to UTC on write. SQLite returns naive values,
    which are read back as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)
