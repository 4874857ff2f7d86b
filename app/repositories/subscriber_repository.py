"""Subscriber repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.subscriber import Subscriber, SubscriberStatus


class SubscriberRepository:
    """Repository for Subscriber model."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        email: str,
        name: str,
        status: SubscriberStatus = SubscriberStatus.PENDING_CONFIRMATION,
    ) -> Subscriber:
        subscriber = Subscriber(email=email, name=name, status=status.value)
        self.db.add(subscriber)
        self.db.flush()
        return subscriber

    def get_by_id(self, subscriber_id: UUID) -> Subscriber | None:
        return self.db.query(Subscriber).filter(Subscriber.id == subscriber_id).first()

    def get_by_email(self, email: str) -> Subscriber | None:
        return self.db.query(Subscriber).filter(Subscriber.email == email).first()

    def confirm(self, subscriber: Subscriber) -> Subscriber:
        subscriber.status = SubscriberStatus.CONFIRMED.value  # type: ignore[assignment]
        self.db.flush()
        return subscriber

    def list_confirmed_emails(self) -> list[str]:
        """Snapshot of the addresses a newly published issue goes to."""
        rows = (
            self.db.query(Subscriber.email)
            .filter(Subscriber.status == SubscriberStatus.CONFIRMED.value)
            .order_by(Subscriber.subscribed_at)
            .all()
        )
        return [row.email for row in rows]
