"""
Portable column types.

The same models run on PostgreSQL (production, asyncpg) and SQLite
(tests and local development, aiosqlite):
- GUID: native UUID on PostgreSQL, 36-char string elsewhere
- JSONType: JSONB on PostgreSQL, JSON elsewhere
- EnumText: stores a str-Enum member as its plain value, loads it back as the member
"""

import uuid
from enum import Enum
from typing import Optional, Type

from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.dialects import postgresql


class GUID(TypeDecorator):
    """UUID column that round-trips ``uuid.UUID`` on every backend."""

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator):
    """JSON document column (JSONB on PostgreSQL)."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB)
        return dialect.type_descriptor(JSON)


class EnumText(TypeDecorator):
    """Store a ``str`` Enum as VARCHAR without a database-level enum type.

    Plain strings are accepted on write, so raw SQL updates and ORM
    assignments both work.
    """

    impl = String(50)
    cache_ok = True

    def __init__(self, enum_cls: Type[Enum], length: int = 50):
        super().__init__(length)
        self.enum_cls = enum_cls

    def process_bind_param(self, value, dialect) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, Enum):
            return value.value
        return self.enum_cls(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self.enum_cls(value)
