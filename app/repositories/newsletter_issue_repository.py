"""Repository for NewsletterIssue rows and their delivery counters."""

from uuid import UUID

from sqlalchemy import Select, case, exists, func, select
from sqlalchemy.orm import Session

from app.core.exceptions import InvariantViolation
from app.models.delivery_task import DeliveryTask
from app.models.newsletter_issue import NewsletterIssue, NewsletterIssueStatus
from app.models.shared import generate_uuid, utc_now


def claimable_issues_stmt(limit: int) -> Select[tuple[UUID]]:
    """Available issues that still have queued tasks.

    Issues with a never-attempted task come first, then those whose oldest
    failed attempt is furthest back, then oldest published. An issue holding
    only failing recipients therefore queues behind fresh work instead of
    winning every batch.

    ``FOR KEY SHARE`` pins each row without blocking other workers that share
    the same issue; ``SKIP LOCKED`` passes over rows held exclusively.
    """
    has_untried = exists().where(
        DeliveryTask.newsletter_issue_id == NewsletterIssue.id,
        DeliveryTask.attempted_at.is_(None),
    )
    oldest_attempt = (
        select(func.min(DeliveryTask.attempted_at))
        .where(DeliveryTask.newsletter_issue_id == NewsletterIssue.id)
        .scalar_subquery()
    )
    return (
        select(NewsletterIssue.id)
        .where(
            NewsletterIssue.status == NewsletterIssueStatus.AVAILABLE.value,
            exists().where(DeliveryTask.newsletter_issue_id == NewsletterIssue.id),
        )
        .order_by(
            case((has_untried, 0), else_=1),
            oldest_attempt.asc().nulls_first(),
            NewsletterIssue.published_at,
        )
        .limit(limit)
        .with_for_update(read=True, key_share=True, skip_locked=True, of=NewsletterIssue)
    )


class NewsletterIssueRepository:
    """Repository for NewsletterIssue. Never commits; callers own the transaction."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, *, title: str, text_content: str, html_content: str) -> NewsletterIssue:
        issue = NewsletterIssue(
            id=generate_uuid(),
            title=title,
            text_content=text_content,
            html_content=html_content,
            status=NewsletterIssueStatus.AVAILABLE.value,
            required_n_tasks=0,
            finished_n_tasks=0,
            published_at=utc_now(),
        )
        self.db.add(issue)
        self.db.flush()
        return issue

    def get_by_id(self, issue_id: UUID) -> NewsletterIssue | None:
        return self.db.query(NewsletterIssue).filter(NewsletterIssue.id == issue_id).first()

    def set_required_tasks(self, issue: NewsletterIssue, required_n_tasks: int) -> NewsletterIssue:
        """Record the queue size taken at publish time.

        An issue with nobody to deliver to is complete from the start.
        """
        issue.required_n_tasks = required_n_tasks  # type: ignore[assignment]
        if required_n_tasks == 0:
            issue.status = NewsletterIssueStatus.COMPLETED.value  # type: ignore[assignment]
            issue.completed_at = utc_now()  # type: ignore[assignment]
        self.db.flush()
        return issue

    def find_claimable_ids(self, limit: int) -> list[UUID]:
        return list(self.db.execute(claimable_issues_stmt(limit)).scalars())

    def record_progress(self, issue_id: UUID, finished: int) -> NewsletterIssue:
        """Add ``finished`` to the issue's counter and complete it when fully drained.

        Takes an exclusive row lock so concurrent workers apply their
        increments one after another. The remaining-task count is read after
        the lock is granted, so it reflects every earlier committed batch.
        """
        issue = (
            self.db.query(NewsletterIssue)
            .filter(NewsletterIssue.id == issue_id)
            .with_for_update(key_share=True)
            .populate_existing()
            .one()
        )
        remaining_tasks = self.db.execute(
            select(func.count())
            .select_from(DeliveryTask)
            .where(DeliveryTask.newsletter_issue_id == issue_id)
        ).scalar_one()
        new_total = int(issue.finished_n_tasks) + finished
        if new_total > int(issue.required_n_tasks):
            raise InvariantViolation(
                f"Issue {issue_id} would finish {new_total} of {issue.required_n_tasks} tasks"
            )
        issue.finished_n_tasks = new_total  # type: ignore[assignment]
        if (
            new_total == int(issue.required_n_tasks)
            and issue.status == NewsletterIssueStatus.AVAILABLE.value
            and remaining_tasks == 0
        ):
            issue.status = NewsletterIssueStatus.COMPLETED.value  # type: ignore[assignment]
            issue.completed_at = utc_now()  # type: ignore[assignment]
        self.db.flush()
        return issue
