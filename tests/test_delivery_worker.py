"""Tests for the delivery worker and its queue/issue queries."""

import asyncio
from unittest.mock import AsyncMock, patch
from uuid import UUID

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from app.core.exceptions import InvariantViolation
from app.core.wake import WakeSignal
from app.models.newsletter_issue import NewsletterIssue, NewsletterIssueStatus
from app.repositories.delivery_task_repository import DeliveryTaskRepository, claim_tasks_stmt
from app.repositories.newsletter_issue_repository import (
    NewsletterIssueRepository,
    claimable_issues_stmt,
)
from app.services.delivery_worker import BatchResult, DeliveryWorker, ExecutionOutcome
from tests.conftest import RecordingGateway


def _publish(db: Session, recipients: list[str], title: str = "Issue") -> UUID:
    issue_repo = NewsletterIssueRepository(db)
    issue = issue_repo.create(title=title, text_content="text", html_content="<p>html</p>")
    queued = DeliveryTaskRepository(db).enqueue(issue.id, recipients)
    issue_repo.set_required_tasks(issue, queued)
    issue_id = issue.id
    db.commit()
    return issue_id


def _issue(db: Session, issue_id: UUID) -> NewsletterIssue:
    db.expire_all()
    issue = db.get(NewsletterIssue, issue_id)
    assert issue is not None
    return issue


def _worker(gateway, session_factory, **kwargs) -> DeliveryWorker:
    return DeliveryWorker(gateway, session_factory=session_factory, **kwargs)


RECIPIENTS = ["ann@zero2prod.com", "bob@zero2prod.com", "cid@zero2prod.com"]


class TestTryExecuteBatch:
    @pytest.mark.asyncio
    async def test_empty_queue(self, gateway: RecordingGateway, session_factory) -> None:
        result = await _worker(gateway, session_factory).try_execute_batch()

        assert result == BatchResult(ExecutionOutcome.EMPTY_QUEUE)
        assert gateway.attempts == []

    @pytest.mark.asyncio
    async def test_drains_issue_to_completion(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        issue_id = _publish(db_session, RECIPIENTS, title="October issue")
        worker = _worker(gateway, session_factory)

        result = await worker.try_execute_batch()

        assert result.outcome is ExecutionOutcome.TASKS_COMPLETED
        assert result.issue_id == issue_id
        assert result.delivered == 3
        assert result.issue_completed is True
        assert sorted(gateway.recipients) == RECIPIENTS
        assert gateway.sent[0][1:] == ("October issue", "text", "<p>html</p>")

        issue = _issue(db_session, issue_id)
        assert issue.status == NewsletterIssueStatus.COMPLETED.value
        assert issue.finished_n_tasks == 3
        assert issue.completed_at is not None
        assert DeliveryTaskRepository(db_session).count_remaining(issue_id) == 0

        assert (await worker.try_execute_batch()).outcome is ExecutionOutcome.EMPTY_QUEUE
        assert len(gateway.attempts) == 3

    @pytest.mark.asyncio
    async def test_batch_size_limits_claim(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        issue_id = _publish(db_session, RECIPIENTS)
        worker = _worker(gateway, session_factory, batch_size=2)

        first = await worker.try_execute_batch()
        assert first.delivered == 2
        assert first.issue_completed is False
        issue = _issue(db_session, issue_id)
        assert issue.status == NewsletterIssueStatus.AVAILABLE.value
        assert issue.finished_n_tasks == 2

        second = await worker.try_execute_batch()
        assert second.delivered == 1
        assert second.issue_completed is True
        assert _issue(db_session, issue_id).finished_n_tasks == 3

    @pytest.mark.asyncio
    async def test_two_workers_send_each_recipient_once(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        issue_id = _publish(db_session, [f"reader{n}@zero2prod.com" for n in range(5)])
        workers = [
            _worker(gateway, session_factory, batch_size=2, name=f"delivery-worker-{n}")
            for n in range(2)
        ]

        outcomes = []
        for _ in range(4):
            for worker in workers:
                outcomes.append((await worker.try_execute_batch()).outcome)

        assert sorted(gateway.recipients) == sorted(set(gateway.recipients))
        assert len(gateway.recipients) == 5
        assert outcomes.count(ExecutionOutcome.TASKS_COMPLETED) == 3
        issue = _issue(db_session, issue_id)
        assert issue.finished_n_tasks == 5
        assert issue.status == NewsletterIssueStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_oldest_issue_first(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        first_id = _publish(db_session, ["ann@zero2prod.com"], title="First")
        _publish(db_session, ["bob@zero2prod.com"], title="Second")

        result = await _worker(gateway, session_factory).try_execute_batch()

        assert result.issue_id == first_id
        assert gateway.sent[0][:2] == ("ann@zero2prod.com", "First")

    @pytest.mark.asyncio
    async def test_failing_old_issue_does_not_starve_newer_issue(
        self, db_session: Session, session_factory
    ) -> None:
        gateway = RecordingGateway(failing={"bounce@zero2prod.com"})
        old_id = _publish(db_session, ["bounce@zero2prod.com"], title="Old")
        new_id = _publish(db_session, ["ann@zero2prod.com"], title="New")
        worker = _worker(gateway, session_factory)

        first = await worker.try_execute_batch()
        second = await worker.try_execute_batch()

        assert {first.issue_id, second.issue_id} == {old_id, new_id}
        assert gateway.recipients == ["ann@zero2prod.com"]
        assert _issue(db_session, new_id).status == NewsletterIssueStatus.COMPLETED.value
        old = _issue(db_session, old_id)
        assert old.status == NewsletterIssueStatus.AVAILABLE.value
        assert DeliveryTaskRepository(db_session).list_recipients(old_id) == [
            "bounce@zero2prod.com"
        ]

    @pytest.mark.asyncio
    async def test_failed_recipient_goes_behind_untried_ones(
        self, db_session: Session, session_factory
    ) -> None:
        gateway = RecordingGateway(failing={"ann@zero2prod.com"})
        issue_id = _publish(db_session, ["ann@zero2prod.com", "bob@zero2prod.com"])
        worker = _worker(gateway, session_factory, batch_size=1)

        first = await worker.try_execute_batch()
        second = await worker.try_execute_batch()

        assert first.outcome is ExecutionOutcome.PARTIAL_FAILURE
        assert second.outcome is ExecutionOutcome.TASKS_COMPLETED
        assert gateway.attempts == ["ann@zero2prod.com", "bob@zero2prod.com"]
        assert DeliveryTaskRepository(db_session).list_recipients(issue_id) == [
            "ann@zero2prod.com"
        ]
        assert _issue(db_session, issue_id).finished_n_tasks == 1

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_task(
        self, db_session: Session, session_factory
    ) -> None:
        gateway = RecordingGateway(failing={"bob@zero2prod.com"})
        issue_id = _publish(db_session, RECIPIENTS)
        worker = _worker(gateway, session_factory)

        result = await worker.try_execute_batch()

        assert result.outcome is ExecutionOutcome.PARTIAL_FAILURE
        assert result.delivered == 2
        assert result.failed == 1
        assert result.issue_completed is False
        assert DeliveryTaskRepository(db_session).list_recipients(issue_id) == ["bob@zero2prod.com"]
        issue = _issue(db_session, issue_id)
        assert issue.finished_n_tasks == 2
        assert issue.status == NewsletterIssueStatus.AVAILABLE.value

        gateway.failing.clear()
        retry = await worker.try_execute_batch()
        assert retry.outcome is ExecutionOutcome.TASKS_COMPLETED
        assert retry.issue_completed is True
        assert gateway.recipients.count("bob@zero2prod.com") == 1
        assert gateway.attempts.count("bob@zero2prod.com") == 2

    @pytest.mark.asyncio
    async def test_rejected_send_keeps_task(
        self, db_session: Session, session_factory
    ) -> None:
        gateway = RecordingGateway(rejecting={"ann@zero2prod.com"})
        issue_id = _publish(db_session, ["ann@zero2prod.com"])

        result = await _worker(gateway, session_factory).try_execute_batch()

        assert result.outcome is ExecutionOutcome.PARTIAL_FAILURE
        assert DeliveryTaskRepository(db_session).count_remaining(issue_id) == 1
        assert _issue(db_session, issue_id).finished_n_tasks == 0

    @pytest.mark.asyncio
    async def test_invalid_address_is_dropped_and_counted(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com", "not-an-email"])

        result = await _worker(gateway, session_factory).try_execute_batch()

        assert result.outcome is ExecutionOutcome.TASKS_COMPLETED
        assert result.delivered == 1
        assert result.dropped == 1
        assert gateway.attempts == ["ann@zero2prod.com"]
        issue = _issue(db_session, issue_id)
        assert issue.finished_n_tasks == 2
        assert issue.status == NewsletterIssueStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_completed_issue_is_skipped(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com"])
        issue = _issue(db_session, issue_id)
        issue.status = NewsletterIssueStatus.COMPLETED.value  # type: ignore[assignment]
        db_session.commit()

        result = await _worker(gateway, session_factory).try_execute_batch()

        assert result.outcome is ExecutionOutcome.EMPTY_QUEUE
        assert gateway.attempts == []

    @pytest.mark.asyncio
    async def test_counter_overflow_rolls_back(
        self, db_session: Session, gateway: RecordingGateway, session_factory
    ) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com", "bob@zero2prod.com"])
        issue = _issue(db_session, issue_id)
        issue.required_n_tasks = 1  # type: ignore[assignment]
        db_session.commit()

        with pytest.raises(InvariantViolation):
            await _worker(gateway, session_factory).try_execute_batch()

        assert DeliveryTaskRepository(db_session).count_remaining(issue_id) == 2
        assert _issue(db_session, issue_id).finished_n_tasks == 0


class TestRecordProgress:
    def test_rejects_more_than_required(self, db_session: Session) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com"])
        with pytest.raises(InvariantViolation):
            NewsletterIssueRepository(db_session).record_progress(issue_id, 2)

    def test_does_not_complete_while_tasks_remain(self, db_session: Session) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com"])
        issue = NewsletterIssueRepository(db_session).record_progress(issue_id, 1)
        assert issue.finished_n_tasks == 1
        assert issue.status == NewsletterIssueStatus.AVAILABLE.value


class TestMarkAttempted:
    def test_stamps_only_named_recipients(self, db_session: Session) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com", "bob@zero2prod.com"])
        repo = DeliveryTaskRepository(db_session)

        assert repo.mark_attempted(issue_id, ["bob@zero2prod.com"]) == 1
        db_session.commit()

        assert repo.claim_batch(issue_id, 2) == ["ann@zero2prod.com", "bob@zero2prod.com"]
        assert repo.claim_batch(issue_id, 1) == ["ann@zero2prod.com"]

    def test_empty_list_is_a_no_op(self, db_session: Session) -> None:
        issue_id = _publish(db_session, ["ann@zero2prod.com"])
        assert DeliveryTaskRepository(db_session).mark_attempted(issue_id, []) == 0


class TestLockingQueries:
    def test_claim_tasks_skips_locked_rows(self) -> None:
        sql = str(claim_tasks_stmt(UUID(int=1), 50).compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "LIMIT" in sql
        assert "newsletter_delivery_tasks.attempted_at ASC NULLS FIRST" in sql

    def test_claimable_issues_take_shared_key_lock(self) -> None:
        sql = str(claimable_issues_stmt(10).compile(dialect=postgresql.dialect()))
        assert "FOR KEY SHARE OF newsletter_issues SKIP LOCKED" in sql
        order_by = sql.split("ORDER BY", 1)[1]
        assert order_by.index("CASE WHEN") < order_by.index("newsletter_issues.published_at")


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_sleeps_poll_interval_on_empty_queue(
        self, gateway: RecordingGateway, session_factory
    ) -> None:
        worker = _worker(gateway, session_factory, poll_interval=7)

        with patch(
            "app.services.delivery_worker.asyncio.sleep",
            new_callable=AsyncMock,
            side_effect=asyncio.CancelledError,
        ) as mock_sleep:
            with pytest.raises(asyncio.CancelledError):
                await worker.run()

        mock_sleep.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_waits_on_wake_signal_when_present(
        self, gateway: RecordingGateway, session_factory
    ) -> None:
        wake_signal = AsyncMock(spec=WakeSignal)
        wake_signal.wait.side_effect = asyncio.CancelledError
        worker = _worker(gateway, session_factory, wake_signal=wake_signal, poll_interval=5)

        with pytest.raises(asyncio.CancelledError):
            await worker.run()

        wake_signal.wait.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_backs_off_after_error(
        self, gateway: RecordingGateway, session_factory
    ) -> None:
        worker = _worker(gateway, session_factory, error_backoff=0.5)

        with (
            patch.object(worker, "try_execute_batch", side_effect=RuntimeError("db down")),
            patch(
                "app.services.delivery_worker.asyncio.sleep",
                new_callable=AsyncMock,
                side_effect=asyncio.CancelledError,
            ) as mock_sleep,
            pytest.raises(asyncio.CancelledError),
        ):
            await worker.run()

        mock_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_backs_off_after_partial_failure(
        self, gateway: RecordingGateway, session_factory
    ) -> None:
        worker = _worker(gateway, session_factory, error_backoff=2)
        partial = BatchResult(ExecutionOutcome.PARTIAL_FAILURE, failed=1)

        with (
            patch.object(worker, "try_execute_batch", new_callable=AsyncMock, return_value=partial),
            patch(
                "app.services.delivery_worker.asyncio.sleep",
                new_callable=AsyncMock,
                side_effect=asyncio.CancelledError,
            ) as mock_sleep,
            pytest.raises(asyncio.CancelledError),
        ):
            await worker.run()

        mock_sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_keeps_going_after_completed_batch(
        self, gateway: RecordingGateway, session_factory
    ) -> None:
        worker = _worker(gateway, session_factory, poll_interval=3)
        results = [
            BatchResult(ExecutionOutcome.TASKS_COMPLETED, delivered=1),
            BatchResult(ExecutionOutcome.EMPTY_QUEUE),
        ]

        with (
            patch.object(worker, "try_execute_batch", new_callable=AsyncMock, side_effect=results),
            patch(
                "app.services.delivery_worker.asyncio.sleep",
                new_callable=AsyncMock,
                side_effect=asyncio.CancelledError,
            ) as mock_sleep,
            pytest.raises(asyncio.CancelledError),
        ):
            await worker.run()

        mock_sleep.assert_awaited_once_with(3)
