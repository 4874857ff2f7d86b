"""Repository for the per-recipient newsletter delivery queue."""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import Select, delete, func, insert, select, update
from sqlalchemy.orm import Session

from app.models.delivery_task import DeliveryTask
from app.models.shared import utc_now


def claim_tasks_stmt(issue_id: UUID, limit: int) -> Select[tuple[str]]:
    """Lock up to ``limit`` queued recipients of an issue, skipping rows other workers hold.

    Never-attempted rows come first, then the ones whose last failure is oldest.
    """
    return (
        select(DeliveryTask.subscriber_email)
        .where(DeliveryTask.newsletter_issue_id == issue_id)
        .order_by(DeliveryTask.attempted_at.asc().nulls_first(), DeliveryTask.subscriber_email)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )


class DeliveryTaskRepository:
    """Repository for DeliveryTask rows. Never commits; callers own the transaction."""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, issue_id: UUID, recipients: Iterable[str]) -> int:
        """Queue one task per distinct recipient and return how many were queued."""
        emails = list(dict.fromkeys(recipients))
        if emails:
            self.db.execute(
                insert(DeliveryTask),
                [{"newsletter_issue_id": issue_id, "subscriber_email": email} for email in emails],
            )
        return len(emails)

    def claim_batch(self, issue_id: UUID, limit: int) -> list[str]:
        return list(self.db.execute(claim_tasks_stmt(issue_id, limit)).scalars())

    def mark_attempted(self, issue_id: UUID, recipients: Iterable[str]) -> int:
        """Stamp a failed send so the row moves behind untried recipients."""
        emails = list(recipients)
        if not emails:
            return 0
        result = self.db.execute(
            update(DeliveryTask)
            .where(
                DeliveryTask.newsletter_issue_id == issue_id,
                DeliveryTask.subscriber_email.in_(emails),
            )
            .values(attempted_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount)  # type: ignore[attr-defined]

    def delete(self, issue_id: UUID, recipients: Iterable[str]) -> int:
        emails = list(recipients)
        if not emails:
            return 0
        result = self.db.execute(
            delete(DeliveryTask)
            .where(
                DeliveryTask.newsletter_issue_id == issue_id,
                DeliveryTask.subscriber_email.in_(emails),
            )
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount)  # type: ignore[attr-defined]

    def count_remaining(self, issue_id: UUID) -> int:
        return int(
            self.db.execute(
                select(func.count())
                .select_from(DeliveryTask)
                .where(DeliveryTask.newsletter_issue_id == issue_id)
            ).scalar_one()
        )

    def list_recipients(self, issue_id: UUID) -> list[str]:
        return list(
            self.db.execute(
                select(DeliveryTask.subscriber_email)
                .where(DeliveryTask.newsletter_issue_id == issue_id)
                .order_by(DeliveryTask.subscriber_email)
            ).scalars()
        )
