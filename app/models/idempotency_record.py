"""IdempotencyRecord model for publish request deduplication."""

from sqlalchemy import Column, DateTime, Integer, LargeBinary, String, UniqueConstraint

from app.core.database import Base
from app.models.shared import HeaderListType, UUIDType, generate_uuid, utc_now


class IdempotencyRecord(Base):
    """Claim on an idempotency key plus the response that was sent for it.

    A row without ``response_status`` is a placeholder held by a request that
    has not committed yet.
    """

    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_user_idempotency_key"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(UUIDType, nullable=False, index=True)
    idempotency_key = Column(String(63), nullable=False)
    response_status = Column(Integer, nullable=True)
    response_headers = Column(HeaderListType, nullable=True)
    response_body = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
