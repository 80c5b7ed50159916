from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from kmerch.common.utils import as_utc


class UTCDateTime(TypeDecorator):
    """timezone aware datetime column; values always come back as aware utc"""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)
