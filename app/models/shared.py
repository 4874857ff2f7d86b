"""Shared model utilities used across all models."""

import base64
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.engine import Dialect


class UUIDType(TypeDecorator[uuid.UUID]):
    """Platform-independent UUID type.

    Uses String(36) for SQLite, native UUID for PostgreSQL.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class HeaderListType(TypeDecorator[list[tuple[str, bytes]]]):
    """Ordered list of ``(name, value)`` response headers.

    Stored as JSON with base64-encoded values so arbitrary header bytes
    survive the round trip unchanged. Order and duplicates are preserved.
    """

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> list[list[str]] | None:
        if value is None:
            return None
        return [
            [str(name), base64.b64encode(bytes(raw)).decode("ascii")] for name, raw in value
        ]

    def process_result_value(self, value: Any, dialect: Dialect) -> list[tuple[str, bytes]] | None:
        if value is None:
            return None
        return [(name, base64.b64decode(encoded)) for name, encoded in value]


def generate_uuid() -> uuid.UUID:
    """Generate a new UUID."""
    return uuid.uuid4()


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)
