from enum import Enum

from sqlalchemy import Column, DateTime, String, Text

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class SubscriberStatus(str, Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"


class Subscriber(Base):
    __tablename__ = "subscriptions"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    email = Column(Text, unique=True, nullable=False)
    name = Column(Text, nullable=False)
    status = Column(
        String(30),
        nullable=False,
        default=SubscriberStatus.PENDING_CONFIRMATION.value,
        index=True,
    )
    subscribed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
