"""Email gateway used to deliver newsletter issues."""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib
from email_validator import EmailNotValidError, validate_email

from app.core.config import settings
from app.core.exceptions import TransportError

logger = logging.getLogger(__name__)


def is_valid_email(address: str) -> bool:
    """Syntactic check only; deliverability is left to the transport."""
    try:
        validate_email(address, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


class EmailGateway(Protocol):
    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        """Send one email.

        Returns True on success. Failures are reported by returning False or
        raising ``TransportError``; implementations never retry.
        """
        ...


class SmtpEmailGateway:
    """Sends multipart (plain text + HTML) email via SMTP."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool | None = None,
        timeout: float | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
    ):
        self.host = settings.SMTP_HOST if host is None else host
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USERNAME
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = timeout or settings.SMTP_TIMEOUT_SECONDS
        self.from_email = from_email or settings.SMTP_FROM_EMAIL
        self.from_name = from_name or settings.SMTP_FROM_NAME

    def build_message(
        self, recipient: str, subject: str, text_body: str, html_body: str
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")
        return msg

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        if not self.host:
            logger.info("SMTP not configured, skipping email to %s: %s", recipient, subject)
            return True

        msg = self.build_message(recipient, subject, text_body, html_body)
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise TransportError(f"Failed to send email to {recipient}: {exc}") from exc
        logger.info("Email sent to %s: %s", recipient, subject)
        return True
