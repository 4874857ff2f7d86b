"""Subscription sign-up and confirmation endpoints."""

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import (
    PersistenceError,
    TransportError,
    UnknownSubscriptionTokenError,
    ValidationError,
)
from app.services.email_service import EmailGateway, SmtpEmailGateway
from app.services.subscription_service import SubscriptionService

router = APIRouter()


def get_email_gateway(request: Request) -> EmailGateway:
    return getattr(request.app.state, "email_gateway", None) or SmtpEmailGateway()


@router.post(
    "",
    summary="Subscribe to the newsletter",
    responses={
        400: {"description": "Invalid name or email"},
        500: {"description": "Storage failure or confirmation email could not be sent"},
    },
)
async def subscribe(
    name: str = Form(default=""),
    email: str = Form(default=""),
    db: Session = Depends(get_db),
    email_gateway: EmailGateway = Depends(get_email_gateway),
) -> dict[str, str]:
    """Store a pending subscriber and email them a confirmation link."""
    service = SubscriptionService(db, email_gateway)
    try:
        outcome = await service.subscribe(name, email)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to store subscriber") from None
    except TransportError:
        raise HTTPException(
            status_code=500, detail="Failed to send confirmation email"
        ) from None
    return {"status": outcome.value}


@router.get(
    "/confirm",
    summary="Confirm a pending subscription",
    responses={
        400: {"description": "Malformed subscription token"},
        401: {"description": "Unknown subscription token"},
        500: {"description": "Storage failure"},
    },
)
async def confirm_subscription(
    subscription_token: str = Query(default=""),
    db: Session = Depends(get_db),
    email_gateway: EmailGateway = Depends(get_email_gateway),
) -> dict[str, str]:
    """Flip the subscriber behind ``subscription_token`` to confirmed."""
    service = SubscriptionService(db, email_gateway)
    try:
        subscriber = service.confirm(subscription_token)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    except UnknownSubscriptionTokenError:
        raise HTTPException(status_code=401, detail="Unknown subscription token") from None
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to confirm subscriber") from None
    return {"status": str(subscriber.status)}
