"""Domain exceptions for publishing and delivering newsletter issues."""


class NewsletterError(Exception):
    """Base class for newsletter publishing and delivery errors."""


class ValidationError(NewsletterError):
    """Raised when request input is malformed; nothing has been written."""


class PersistenceError(NewsletterError):
    """Raised when storage fails during publish; the transaction was rolled back."""


class IdempotencyConflictError(NewsletterError):
    """Raised when an idempotency key is held by a request that has not finished yet."""

    def __init__(self, key: str, retry_after: int = 1):
        super().__init__(f"Idempotency key {key!r} is being processed by another request")
        self.key = key
        self.retry_after = retry_after


class TransportError(NewsletterError):
    """Raised by an email gateway when a single send fails."""


class InvariantViolation(NewsletterError):
    """Raised when internal bookkeeping reaches a state that should be impossible."""


class UnknownSubscriptionTokenError(NewsletterError):
    """Raised when a confirmation link carries a token that was never issued."""
