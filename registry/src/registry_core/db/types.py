"""Column types whose storage differs between SQLite and PostgreSQL."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator, TypeEngine

SET_SEPARATOR = ","


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes, normalized to UTC on both backends.

    SQLite has no timezone storage, so values are written as naive UTC and
    re-tagged with ``timezone.utc`` when read back.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class StringSet(TypeDecorator):
    """A set of short strings.

    PostgreSQL stores a native ``TEXT[]``; other backends store a sorted,
    comma-joined string. Members must not contain commas.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(String(255)))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Optional[Iterable[str]], dialect: Dialect) -> Any:
        if value is None:
            return None
        members = sorted({str(item) for item in value})
        if dialect.name == "postgresql":
            return members
        return SET_SEPARATOR.join(members)

    def process_result_value(self, value: Any, dialect: Dialect) -> Optional[frozenset[str]]:
        if value is None:
            return None
        if isinstance(value, str):
            return frozenset(item for item in value.split(SET_SEPARATOR) if item)
        return frozenset(value)


def json_document() -> TypeEngine[Any]:
    """JSON column that becomes JSONB on PostgreSQL."""

    return JSON().with_variant(JSONB(), "postgresql")


__all__ = ["UTCDateTime", "StringSet", "json_document"]
