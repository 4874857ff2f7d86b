"""SubscriptionToken model - the secret in a subscriber's confirmation link."""

from sqlalchemy import Column, DateTime, ForeignKey, String

from app.core.database import Base
from app.models.shared import UUIDType, utc_now


class SubscriptionToken(Base):
    __tablename__ = "subscription_tokens"

    subscription_token = Column(String(25), primary_key=True)
    subscriber_id = Column(
        UUIDType,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
