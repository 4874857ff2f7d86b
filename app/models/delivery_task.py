"""DeliveryTask model - "send this issue to this recipient"."""

from sqlalchemy import Column, DateTime, ForeignKey, Text

from app.core.database import Base
from app.models.shared import UUIDType


class DeliveryTask(Base):
    """Queued delivery of one newsletter issue to one subscriber.

    The row is the whole task: it is deleted once the send succeeds.
    ``attempted_at`` is stamped on every failed send and stays NULL until then.
    """

    __tablename__ = "newsletter_delivery_tasks"

    newsletter_issue_id = Column(
        UUIDType,
        ForeignKey("newsletter_issues.id", ondelete="RESTRICT"),
        primary_key=True,
    )
    subscriber_email = Column(Text, primary_key=True)
    attempted_at = Column(DateTime(timezone=True), nullable=True)
