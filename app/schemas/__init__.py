from app.schemas.newsletter_issue import NewsletterIssueResponse

__all__ = ["NewsletterIssueResponse"]
