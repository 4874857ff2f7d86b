"""SubscriptionToken repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.subscription_token import SubscriptionToken


class SubscriptionTokenRepository:
    """Repository for SubscriptionToken. Never commits; callers own the transaction."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, subscriber_id: UUID, token: str) -> SubscriptionToken:
        row = SubscriptionToken(subscription_token=token, subscriber_id=subscriber_id)
        self.db.add(row)
        self.db.flush()
        return row

    def get_subscriber_id(self, token: str) -> UUID | None:
        row = (
            self.db.query(SubscriptionToken.subscriber_id)
            .filter(SubscriptionToken.subscription_token == token)
            .first()
        )
        return row.subscriber_id if row else None
