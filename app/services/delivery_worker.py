"""Background delivery of queued newsletter issues.

Each batch runs in its own transaction: claim queued recipients with
``SKIP LOCKED`` row locks, send, delete what went out, bump the issue's
counter and commit. Any number of workers may run against the same database;
the row locks are the only coordination between them. Recipients whose send
failed keep their row, stamped with the attempt time, and are picked up again
once untried recipients and issues have had their turn.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_session_factory
from app.core.exceptions import TransportError
from app.core.wake import WakeSignal
from app.models.newsletter_issue import NewsletterIssueStatus
from app.repositories.delivery_task_repository import DeliveryTaskRepository
from app.repositories.newsletter_issue_repository import NewsletterIssueRepository
from app.services.email_service import EmailGateway, is_valid_email

logger = logging.getLogger(__name__)

# How many available issues to look at before reporting an empty queue
CANDIDATE_ISSUES = 10


class ExecutionOutcome(str, Enum):
    EMPTY_QUEUE = "empty_queue"
    TASKS_COMPLETED = "tasks_completed"
    PARTIAL_FAILURE = "partial_failure"


@dataclass(frozen=True)
class BatchResult:
    outcome: ExecutionOutcome
    issue_id: UUID | None = None
    delivered: int = 0
    dropped: int = 0
    failed: int = 0
    issue_completed: bool = False


class DeliveryWorker:
    """Drains the delivery queue, one claimed batch per transaction."""

    def __init__(
        self,
        email_gateway: EmailGateway,
        wake_signal: WakeSignal | None = None,
        session_factory: Callable[[], Session] | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        error_backoff: float | None = None,
        name: str = "delivery-worker",
    ):
        self.email_gateway = email_gateway
        self.wake_signal = wake_signal
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.DELIVERY_BATCH_SIZE
        self.poll_interval = (
            settings.DELIVERY_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.error_backoff = (
            settings.DELIVERY_ERROR_BACKOFF_SECONDS if error_backoff is None else error_backoff
        )
        self.name = name

    def _new_session(self) -> Session:
        factory = self.session_factory or get_session_factory()
        return factory()

    async def try_execute_batch(self) -> BatchResult:
        """Claim, send and settle one batch. Rolls back on any error."""
        db = self._new_session()
        try:
            return await self._execute_batch(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _execute_batch(self, db: Session) -> BatchResult:
        issue_repo = NewsletterIssueRepository(db)
        task_repo = DeliveryTaskRepository(db)

        issue_id: UUID | None = None
        recipients: list[str] = []
        for candidate_id in issue_repo.find_claimable_ids(CANDIDATE_ISSUES):
            recipients = task_repo.claim_batch(candidate_id, self.batch_size)
            if recipients:
                issue_id = candidate_id
                break

        if issue_id is None:
            db.rollback()
            return BatchResult(ExecutionOutcome.EMPTY_QUEUE)

        issue = issue_repo.get_by_id(issue_id)
        if issue is None:
            db.rollback()
            return BatchResult(ExecutionOutcome.EMPTY_QUEUE)
        title = str(issue.title)
        text_content = str(issue.text_content)
        html_content = str(issue.html_content)

        delivered: list[str] = []
        dropped: list[str] = []
        failed: list[str] = []
        for recipient in recipients:
            if not is_valid_email(recipient):
                logger.warning(
                    "Dropping delivery of issue %s to invalid address %r", issue_id, recipient
                )
                dropped.append(recipient)
                continue
            try:
                sent = await self.email_gateway.send(recipient, title, text_content, html_content)
            except TransportError as exc:
                logger.warning("Failed to deliver issue %s to %s: %s", issue_id, recipient, exc)
                sent = False
            (delivered if sent else failed).append(recipient)

        task_repo.mark_attempted(issue_id, failed)
        settled = task_repo.delete(issue_id, delivered + dropped)
        issue = issue_repo.record_progress(issue_id, settled)
        completed = issue.status == NewsletterIssueStatus.COMPLETED.value
        progress = (int(issue.finished_n_tasks), int(issue.required_n_tasks))
        db.commit()

        logger.info(
            "%s: issue %s delivered=%d dropped=%d failed=%d progress=%d/%d",
            self.name,
            issue_id,
            len(delivered),
            len(dropped),
            len(failed),
            *progress,
        )
        if completed:
            logger.info("Newsletter issue %s completed", issue_id)

        return BatchResult(
            ExecutionOutcome.PARTIAL_FAILURE if failed else ExecutionOutcome.TASKS_COMPLETED,
            issue_id=issue_id,
            delivered=len(delivered),
            dropped=len(dropped),
            failed=len(failed),
            issue_completed=completed,
        )

    async def _wait_for_work(self) -> None:
        if self.wake_signal is None:
            await asyncio.sleep(self.poll_interval)
            return
        await self.wake_signal.wait(self.poll_interval)

    async def run(self) -> None:
        """Process batches until the hosting task is cancelled."""
        logger.info("%s started", self.name)
        while True:
            try:
                result = await self.try_execute_batch()
            except Exception:
                logger.exception("%s failed to process a batch", self.name)
                await asyncio.sleep(self.error_backoff)
                continue

            if result.outcome is ExecutionOutcome.EMPTY_QUEUE:
                await self._wait_for_work()
            elif result.outcome is ExecutionOutcome.PARTIAL_FAILURE:
                await asyncio.sleep(self.error_backoff)
