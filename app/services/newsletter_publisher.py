"""Idempotent publishing of newsletter issues."""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import IdempotencyConflictError, PersistenceError
from app.core.idempotency import (
    IdempotencyKey,
    ReplayedRequest,
    StoredResponse,
    try_begin,
)
from app.core.wake import WakeSignal
from app.models.newsletter_issue import NewsletterIssue
from app.repositories.delivery_task_repository import DeliveryTaskRepository
from app.repositories.newsletter_issue_repository import NewsletterIssueRepository
from app.repositories.subscriber_repository import SubscriberRepository

logger = logging.getLogger(__name__)

PUBLISHED_REDIRECT_LOCATION = "/admin/newsletters"
PUBLISHED_MESSAGE = "The newsletter issue has been accepted - emails will go out shortly."


@dataclass(frozen=True)
class NewsletterContent:
    title: str
    text_content: str
    html_content: str


def build_published_response(issue: NewsletterIssue) -> StoredResponse:
    """303 back to the newsletter admin page, with the new issue in the body."""
    body = json.dumps(
        {
            "message": PUBLISHED_MESSAGE,
            "newsletter_issue_id": str(issue.id),
            "required_n_tasks": int(issue.required_n_tasks),
        }
    ).encode("utf-8")
    return StoredResponse(
        status_code=303,
        headers=(
            ("location", f"{PUBLISHED_REDIRECT_LOCATION}?published={issue.id}".encode()),
            ("content-type", b"application/json"),
        ),
        body=body,
    )


class NewsletterPublisher:
    """Creates an issue and its delivery queue in one transaction, at most once per key."""

    def __init__(
        self,
        db: Session,
        wake_signal: WakeSignal | None = None,
        retry_after: int | None = None,
    ):
        self.db = db
        self.wake_signal = wake_signal
        self.retry_after = (
            settings.IDEMPOTENCY_RETRY_AFTER_SECONDS if retry_after is None else retry_after
        )

    async def publish(
        self,
        user_id: UUID,
        key: IdempotencyKey,
        content: NewsletterContent,
        confirmed_recipients: Iterable[str] | None = None,
    ) -> StoredResponse:
        """Publish ``content`` once for ``(user_id, key)``.

        Replays return the stored response without touching anything else.
        When ``confirmed_recipients`` is None the confirmed subscriber list is
        read inside the publish transaction.

        Raises:
            IdempotencyConflictError: the key is held by a request still in flight.
            PersistenceError: storage failed; nothing was written.
        """
        try:
            outcome = try_begin(self.db, user_id, key, retry_after=self.retry_after)
        except IdempotencyConflictError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to claim idempotency key") from exc

        if isinstance(outcome, ReplayedRequest):
            self.db.rollback()
            logger.info("Replaying stored publish response for key %s", key)
            return outcome.response

        try:
            db = outcome.session
            if confirmed_recipients is None:
                confirmed_recipients = SubscriberRepository(db).list_confirmed_emails()
            issue_repo = NewsletterIssueRepository(db)
            issue = issue_repo.create(
                title=content.title,
                text_content=content.text_content,
                html_content=content.html_content,
            )
            queued = DeliveryTaskRepository(db).enqueue(issue.id, confirmed_recipients)  # type: ignore[arg-type]
            issue_repo.set_required_tasks(issue, queued)
            issue_id = issue.id
            response = outcome.complete(build_published_response(issue))
        except SQLAlchemyError as exc:
            outcome.abort()
            raise PersistenceError("Failed to publish newsletter issue") from exc
        except Exception:
            outcome.abort()
            raise

        logger.info("Published newsletter issue %s with %d delivery tasks", issue_id, queued)
        if self.wake_signal is not None:
            await self.wake_signal.notify()
        return response
