from app.models.delivery_task import DeliveryTask
from app.models.idempotency_record import IdempotencyRecord
from app.models.newsletter_issue import NewsletterIssue, NewsletterIssueStatus
from app.models.subscriber import Subscriber, SubscriberStatus
from app.models.subscription_token import SubscriptionToken

__all__ = [
    "DeliveryTask",
    "IdempotencyRecord",
    "NewsletterIssue",
    "NewsletterIssueStatus",
    "Subscriber",
    "SubscriberStatus",
    "SubscriptionToken",
]
