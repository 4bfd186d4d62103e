"""Pytest configuration and fixtures."""
import os
from datetime import datetime, timedelta
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test settings BEFORE importing the app so nothing touches a real database
os.environ["DB_TYPE"] = "sqlite"
os.environ["SQLITE_PATH"] = ":memory:"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["VERIFICATION_PROVIDER"] = "mock"
os.environ["DEBUG"] = "False"

from bulkverify.main import app
from bulkverify.api.deps import get_db
from bulkverify.db.base import Base
from bulkverify.db.models import EmailGlobal, strip_email_modifiers, UserBatchStatus, VerificationMode
from bulkverify.db.modes import get_mode_schema

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


class RecordingScheduler:
    """Stands in for JobScheduler and remembers what was scheduled."""

    def __init__(self):
        self.once = []
        self.periodic = {}

    def schedule_once(self, func, delay_seconds, kwargs=None, job_id=None):
        self.once.append({"func": func, "delay": delay_seconds, "kwargs": kwargs or {}, "job_id": job_id})

    def add_periodic(self, job_id, func, seconds, kwargs=None, name=None):
        self.periodic[job_id] = {"func": func, "seconds": seconds, "kwargs": kwargs or {}, "name": name}


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with database override."""
    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def recording_scheduler():
    return RecordingScheduler()


@pytest.fixture
def make_emails(db_session):
    """Get or create global emails, returning them in the given order."""
    def _make(addresses):
        emails = []
        for address in addresses:
            stripped = strip_email_modifiers(address)
            email = db_session.query(EmailGlobal).filter(EmailGlobal.email_stripped == stripped).first()
            if email is None:
                email = EmailGlobal(email=address, email_stripped=stripped)
                db_session.add(email)
                db_session.flush()
            emails.append(email)
        db_session.commit()
        return emails
    return _make


@pytest.fixture
def make_user_batch(db_session, make_emails):
    """Create a queued user batch linked to the given addresses.

    ``offset`` is seconds after BASE_TIME used as the batch's created_at.
    Addresses in ``cached`` are linked with used_cached set.
    """
    def _make(mode, addresses, offset=0, cached=(), status=UserBatchStatus.QUEUED, user_id=1):
        schema = get_mode_schema(mode)
        created_at = BASE_TIME + timedelta(seconds=offset)
        batch = schema.user_batch(
            user_id=user_id,
            title=f"batch-{offset}",
            status=status,
            created_at=created_at,
            updated_at=created_at,
        )
        db_session.add(batch)
        db_session.flush()
        for address, email in zip(addresses, make_emails(addresses)):
            db_session.add(schema.batch_email(
                batch_id=batch.id,
                email_global_id=email.global_id,
                used_cached=address in cached,
            ))
        db_session.commit()
        return batch
    return _make


@pytest.fixture
def deliverable():
    return VerificationMode.DELIVERABLE


@pytest.fixture
def catchall():
    return VerificationMode.CATCHALL
