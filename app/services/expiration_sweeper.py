"""Periodic removal of expired idempotency records."""

import asyncio
import logging
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_session_factory
from app.repositories.idempotency_repository import IdempotencyRepository

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """Deletes idempotency records older than the TTL, then sleeps for the TTL."""

    def __init__(
        self,
        ttl: timedelta | None = None,
        session_factory: Callable[[], Session] | None = None,
        error_backoff: float | None = None,
    ):
        self.ttl = ttl or timedelta(seconds=settings.IDEMPOTENCY_TTL_SECONDS)
        self.session_factory = session_factory
        self.error_backoff = (
            settings.DELIVERY_ERROR_BACKOFF_SECONDS if error_backoff is None else error_backoff
        )

    def sweep(self) -> int:
        db = (self.session_factory or get_session_factory())()
        try:
            count = IdempotencyRepository(db).delete_expired(self.ttl)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if count > 0:
            logger.info("Deleted %d expired idempotency records", count)
        return count

    async def run(self) -> None:
        while True:
            try:
                self.sweep()
            except Exception:
                logger.exception("Failed to sweep expired idempotency records")
                await asyncio.sleep(self.error_backoff)
                continue
            await asyncio.sleep(self.ttl.total_seconds())
