"""Pydantic schemas for NewsletterIssue."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class NewsletterIssueResponse(BaseModel):
    id: UUID
    title: str
    status: str
    required_n_tasks: int
    finished_n_tasks: int
    remaining_tasks: int
    published_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}
