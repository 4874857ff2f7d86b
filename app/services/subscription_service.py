"""Double opt-in sign-up: store a pending subscriber, email a link, confirm on click."""

import logging
import secrets
import string
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    PersistenceError,
    TransportError,
    UnknownSubscriptionTokenError,
    ValidationError,
)
from app.models.subscriber import Subscriber, SubscriberStatus
from app.repositories.subscriber_repository import SubscriberRepository
from app.repositories.subscription_token_repository import SubscriptionTokenRepository
from app.services.email_service import EmailGateway, is_valid_email

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 25
TOKEN_ALPHABET = string.ascii_letters + string.digits
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 30
FORBIDDEN_NAME_CHARACTERS = frozenset('/()"<>\\{}')
CONFIRMATION_SUBJECT = "Confirmation"


class SubscribeOutcome(str, Enum):
    CONFIRMATION_SENT = "confirmation_sent"
    ALREADY_CONFIRMED = "already_confirmed"


def parse_subscriber_name(raw: str) -> str:
    name = raw.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(
            f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
        )
    if any(ch in FORBIDDEN_NAME_CHARACTERS for ch in name):
        raise ValidationError("Name contains forbidden characters")
    return name


def parse_subscriber_email(raw: str) -> str:
    email = raw.strip()
    if not is_valid_email(email):
        raise ValidationError(f"{raw!r} is not a valid email address")
    return email


def generate_subscription_token() -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def is_well_formed_token(token: str) -> bool:
    return len(token) == TOKEN_LENGTH and all(ch in TOKEN_ALPHABET for ch in token)


def build_confirmation_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/subscriptions/confirm?subscription_token={token}"


class SubscriptionService:
    """Signs up and confirms subscribers. Only confirmed ones receive newsletter issues."""

    def __init__(self, db: Session, email_gateway: EmailGateway, base_url: str | None = None):
        self.db = db
        self.email_gateway = email_gateway
        self.base_url = base_url or settings.APP_BASE_URL

    async def subscribe(self, name: str, email: str) -> SubscribeOutcome:
        """Store ``email`` as pending and send it a confirmation link.

        A still-pending address gets a fresh token and a new email; an already
        confirmed address is left alone.

        Raises:
            ValidationError: name or email is malformed; nothing was written.
            PersistenceError: storage failed; nothing was written.
            TransportError: the confirmation email could not be sent. The
                subscriber and token are already committed.
        """
        name = parse_subscriber_name(name)
        email = parse_subscriber_email(email)

        try:
            subscriber_repo = SubscriberRepository(self.db)
            subscriber = subscriber_repo.get_by_email(email)
            if subscriber is None:
                subscriber = subscriber_repo.create(email=email, name=name)
            elif subscriber.status == SubscriberStatus.CONFIRMED.value:
                self.db.rollback()
                logger.info("Ignoring sign-up for already confirmed subscriber %s", subscriber.id)
                return SubscribeOutcome.ALREADY_CONFIRMED
            token = generate_subscription_token()
            SubscriptionTokenRepository(self.db).create(subscriber.id, token)  # type: ignore[arg-type]
            subscriber_id = subscriber.id
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to store new subscriber") from exc

        await self._send_confirmation(email, token)
        logger.info("Sent confirmation email to subscriber %s", subscriber_id)
        return SubscribeOutcome.CONFIRMATION_SENT

    async def _send_confirmation(self, email: str, token: str) -> None:
        link = build_confirmation_link(self.base_url, token)
        html_body = (
            "Welcome to our newsletter!<br />"
            f'Click <a href="{link}">here</a> to confirm your subscription.'
        )
        text_body = f"Welcome to our newsletter!\nVisit {link} to confirm your subscription."
        sent = await self.email_gateway.send(email, CONFIRMATION_SUBJECT, text_body, html_body)
        if not sent:
            raise TransportError(f"Failed to send confirmation email to {email}")

    def confirm(self, token: str) -> Subscriber:
        """Mark the token's subscriber as confirmed. Confirming twice is harmless.

        Raises:
            ValidationError: the token is malformed.
            UnknownSubscriptionTokenError: no such token was issued.
            PersistenceError: storage failed.
        """
        if not is_well_formed_token(token):
            raise ValidationError("Malformed subscription token")
        try:
            subscriber_id = SubscriptionTokenRepository(self.db).get_subscriber_id(token)
            subscriber = (
                SubscriberRepository(self.db).get_by_id(subscriber_id)
                if subscriber_id is not None
                else None
            )
            if subscriber is None:
                self.db.rollback()
                raise UnknownSubscriptionTokenError("Unknown subscription token")
            if subscriber.status != SubscriberStatus.CONFIRMED.value:
                SubscriberRepository(self.db).confirm(subscriber)
                self.db.commit()
                logger.info("Confirmed subscriber %s", subscriber.id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to confirm subscriber") from exc
        return subscriber
