"""Repository for IdempotencyRecord claims and stored responses."""

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import Insert, delete, update
from sqlalchemy.orm import Session

from app.core.exceptions import InvariantViolation
from app.models.idempotency_record import IdempotencyRecord
from app.models.shared import generate_uuid, utc_now


def _dialect_insert(dialect_name: str) -> Any:
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Idempotency claims are not supported on {dialect_name}")
    return insert


class IdempotencyRepository:
    def __init__(self, db: Session):
        self.db = db

    def claim(self, user_id: UUID, idempotency_key: str) -> bool:
        """Insert a placeholder row for the key.

        Returns True when this call inserted the row, False when a row for
        ``(user_id, idempotency_key)`` already existed. Does not commit.
        """
        insert = _dialect_insert(self.db.get_bind().dialect.name)
        stmt: Insert = (
            insert(IdempotencyRecord)
            .values(
                id=generate_uuid(),
                user_id=user_id,
                idempotency_key=idempotency_key,
                created_at=utc_now(),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "idempotency_key"])
        )
        result = self.db.execute(stmt)
        return int(result.rowcount) == 1  # type: ignore[attr-defined]

    def get_by_key(self, user_id: UUID, idempotency_key: str) -> IdempotencyRecord | None:
        return (
            self.db.query(IdempotencyRecord)
            .filter(
                IdempotencyRecord.user_id == user_id,
                IdempotencyRecord.idempotency_key == idempotency_key,
            )
            .populate_existing()
            .first()
        )

    def save_response(
        self,
        user_id: UUID,
        idempotency_key: str,
        *,
        status: int,
        headers: list[tuple[str, bytes]],
        body: bytes,
    ) -> None:
        """Fill in the placeholder row claimed by this transaction. Does not commit."""
        result = self.db.execute(
            update(IdempotencyRecord)
            .where(
                IdempotencyRecord.user_id == user_id,
                IdempotencyRecord.idempotency_key == idempotency_key,
                IdempotencyRecord.response_status.is_(None),
            )
            .values(response_status=status, response_headers=headers, response_body=body)
            .execution_options(synchronize_session=False)
        )
        if int(result.rowcount) != 1:  # type: ignore[attr-defined]
            raise InvariantViolation(
                f"Expected one unanswered claim for key {idempotency_key!r}, "
                f"found {result.rowcount}"  # type: ignore[attr-defined]
            )

    def delete_expired(self, max_age: timedelta) -> int:
        """Delete records created more than ``max_age`` ago. Does not commit."""
        cutoff = utc_now() - max_age
        result = self.db.execute(
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount)  # type: ignore[attr-defined]
