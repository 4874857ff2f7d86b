"""NewsletterIssue model - one publication and its delivery progress."""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class NewsletterIssueStatus(str, Enum):
    AVAILABLE = "available"
    COMPLETED = "completed"


class NewsletterIssue(Base):
    __tablename__ = "newsletter_issues"
    __table_args__ = (
        CheckConstraint(
            "finished_n_tasks <= required_n_tasks", name="ck_newsletter_issues_finished_le_required"
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    title = Column(Text, nullable=False)
    text_content = Column(Text, nullable=False)
    html_content = Column(Text, nullable=False)
    status = Column(
        String(20), nullable=False, default=NewsletterIssueStatus.AVAILABLE.value, index=True
    )
    required_n_tasks = Column(Integer, nullable=False, default=0)
    finished_n_tasks = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)
