"""Newsletter publishing API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.core.auth import get_current_user_id
from app.core.database import get_db
from app.core.exceptions import IdempotencyConflictError, PersistenceError, ValidationError
from app.core.idempotency import IdempotencyKey
from app.core.wake import WakeSignal
from app.repositories.delivery_task_repository import DeliveryTaskRepository
from app.repositories.newsletter_issue_repository import NewsletterIssueRepository
from app.schemas.newsletter_issue import NewsletterIssueResponse
from app.services.newsletter_publisher import NewsletterContent, NewsletterPublisher

router = APIRouter()


def get_wake_signal(request: Request) -> WakeSignal | None:
    return getattr(request.app.state, "wake_signal", None)


@router.post(
    "",
    status_code=303,
    summary="Publish a newsletter issue",
    responses={
        303: {"description": "Issue accepted (or replayed) - redirect to the admin page"},
        400: {"description": "Invalid idempotency key or missing content"},
        401: {"description": "Unauthorized"},
        409: {"description": "Same idempotency key is still being processed"},
        500: {"description": "Storage failure - safe to retry with the same key"},
    },
)
async def publish_newsletter(
    title: str = Form(default=""),
    text_content: str = Form(default=""),
    html_content: str = Form(default=""),
    idempotency_key: str = Form(default=""),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    wake_signal: WakeSignal | None = Depends(get_wake_signal),
) -> Response:
    """Create an issue and queue it for every confirmed subscriber, once per idempotency key."""
    try:
        key = IdempotencyKey(idempotency_key)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None

    missing = [
        name
        for name, value in (
            ("title", title),
            ("text_content", text_content),
            ("html_content", html_content),
        )
        if not value
    ]
    if missing:
        raise HTTPException(
            status_code=400, detail=f"Missing required fields: {', '.join(missing)}"
        )

    publisher = NewsletterPublisher(db, wake_signal=wake_signal)
    try:
        stored = await publisher.publish(
            user_id,
            key,
            NewsletterContent(title=title, text_content=text_content, html_content=html_content),
        )
    except IdempotencyConflictError as exc:
        raise HTTPException(
            status_code=409,
            detail="A request with this idempotency key is still being processed",
            headers={"Retry-After": str(exc.retry_after)},
        ) from None
    except PersistenceError:
        raise HTTPException(
            status_code=500, detail="Failed to publish newsletter issue"
        ) from None

    return stored.to_response()


@router.get(
    "/{issue_id}",
    response_model=NewsletterIssueResponse,
    summary="Get newsletter issue delivery progress",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Newsletter issue not found"},
    },
)
async def get_newsletter_issue(
    issue_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
) -> NewsletterIssueResponse:
    """Return the issue's status and how much of its queue has been delivered."""
    issue = NewsletterIssueRepository(db).get_by_id(issue_id)
    if not issue:
        raise HTTPException(status_code=404, detail="Newsletter issue not found")
    remaining = DeliveryTaskRepository(db).count_remaining(issue_id)
    return NewsletterIssueResponse(
        id=issue.id,
        title=issue.title,
        status=issue.status,
        required_n_tasks=issue.required_n_tasks,
        finished_n_tasks=issue.finished_n_tasks,
        remaining_tasks=remaining,
        published_at=issue.published_at,
        completed_at=issue.completed_at,
    )
