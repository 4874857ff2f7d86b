"""Shared test fixtures for all test modules."""

import contextlib
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core import database as db_module
from app.core.database import Base, get_db
from app.core.exceptions import TransportError
from app.models.subscriber import Subscriber, SubscriberStatus

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

# Well-known user publishing in most tests
DEFAULT_USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for direct testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def session_factory():
    return _TestSessionLocal


@pytest.fixture
def default_user_id():
    return DEFAULT_USER_ID


def add_subscribers(
    db: Session,
    emails: list[str],
    status: SubscriberStatus = SubscriberStatus.CONFIRMED,
) -> None:
    for email in emails:
        db.add(Subscriber(email=email, name=email.split("@")[0], status=status.value))
    db.commit()


class RecordingGateway:
    """EmailGateway double that records every send.

    Addresses in ``failing`` raise ``TransportError``; addresses in
    ``rejecting`` make ``send`` return False.
    """

    def __init__(self, failing: set[str] | None = None, rejecting: set[str] | None = None):
        self.failing = set(failing or ())
        self.rejecting = set(rejecting or ())
        self.sent: list[tuple[str, str, str, str]] = []
        self.attempts: list[str] = []

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        self.attempts.append(recipient)
        if recipient in self.failing:
            raise TransportError(f"connection refused for {recipient}")
        if recipient in self.rejecting:
            return False
        self.sent.append((recipient, subject, text_body, html_body))
        return True

    @property
    def recipients(self) -> list[str]:
        return [sent[0] for sent in self.sent]


@pytest.fixture
def gateway():
    return RecordingGateway()
