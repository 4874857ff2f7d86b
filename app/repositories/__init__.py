from app.repositories.delivery_task_repository import DeliveryTaskRepository
from app.repositories.idempotency_repository import IdempotencyRepository
from app.repositories.newsletter_issue_repository import NewsletterIssueRepository
from app.repositories.subscriber_repository import SubscriberRepository
from app.repositories.subscription_token_repository import SubscriptionTokenRepository

__all__ = [
    "DeliveryTaskRepository",
    "IdempotencyRepository",
    "NewsletterIssueRepository",
    "SubscriberRepository",
    "SubscriptionTokenRepository",
]
