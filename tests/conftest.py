"""
Test configuration and fixtures for Subscription Tracker.

Provides shared fixtures for unit and integration tests.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, List, Optional
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel


# Fixed "now" used across tests
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Test Doubles
# =============================================================================

class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class RecordingSender:
    """Notification sender that records deliveries and can fail on demand."""

    backend = "test"

    def __init__(self, failures: Optional[List[Exception]] = None):
        self.sent: List[dict] = []
        self.attempts = 0
        self._failures = list(failures or [])

    def fail_with(self, *errors: Exception) -> None:
        self._failures.extend(errors)

    async def send(self, destination, subject, body, html=None):
        self.attempts += 1
        if self._failures:
            raise self._failures.pop(0)
        self.sent.append(
            {"destination": destination, "subject": subject, "body": body, "html": html}
        )


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with every table created."""
    import subscription_tracker.infrastructure.db.models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def user_repo(session_factory):
    from subscription_tracker.infrastructure.db.repositories import UserRepository
    return UserRepository(session_factory)


@pytest.fixture
def subscription_repo(session_factory):
    from subscription_tracker.infrastructure.db.repositories import SubscriptionRepository
    return SubscriptionRepository(session_factory)


@pytest.fixture
def run_repo(session_factory):
    from subscription_tracker.infrastructure.db.repositories import WorkflowRunRepository
    return WorkflowRunRepository(session_factory)


@pytest.fixture
async def owner(user_repo):
    """Persisted subscription owner."""
    return await user_repo.create("Ada Lovelace", "Ada@Example.com")


@pytest.fixture
def make_subscription(subscription_repo, owner):
    """Factory persisting a subscription renewing relative to T0."""

    async def _make(renews_in: timedelta = timedelta(days=10), **overrides):
        fields = {
            "user_id": owner.id,
            "name": "Netflix Premium",
            "price": Decimal("15.99"),
            "payment_method": "Visa ending 4242",
            "start_date": T0 - timedelta(days=20),
            "renewal_date": T0 + renews_in,
            "now": T0,
        }
        fields.update(overrides)
        return await subscription_repo.create(**fields)

    return _make


# =============================================================================
# Workflow Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def backoff_sleep():
    """Replaces asyncio.sleep for in-step retry backoff."""
    return AsyncMock()


@pytest.fixture
def runtime(run_repo, subscription_repo, sender, clock, backoff_sleep):
    """Workflow runtime with the reminder workflow registered."""
    from subscription_tracker.infrastructure.exceptions import TransientDeliveryError
    from subscription_tracker.infrastructure.workflow import RetryPolicy, WorkflowRuntime
    from subscription_tracker.services.reminder_workflow import ReminderWorkflow

    runtime = WorkflowRuntime(run_repo, clock=clock, lease_seconds=300, sleep=backoff_sleep)
    workflow = ReminderWorkflow(
        store=subscription_repo,
        sender=sender,
        account_url="https://tracker.example.com/account",
        retry_policy=RetryPolicy(max_attempts=3, retry_on=(TransientDeliveryError,)),
    )
    runtime.register(workflow.name, workflow)
    return runtime


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def mock_runtime():
    """Mock for WorkflowRuntime."""
    mock = MagicMock()
    mock.start = AsyncMock()
    mock.get_run = AsyncMock()
    mock.cancel = AsyncMock()
    mock.repository = MagicMock()
    mock.repository.list_steps = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def mock_scheduler():
    """Mock for WorkflowScheduler."""
    return MagicMock()


@pytest.fixture
def mock_subscription_repo():
    """Mock for SubscriptionRepository."""
    mock = MagicMock()
    mock.get_by_id = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def app(mock_runtime, mock_scheduler, mock_subscription_repo):
    """FastAPI application with workflow collaborators overridden."""
    from subscription_tracker.api.dependencies import (
        get_subscription_repo,
        get_workflow_runtime,
        get_workflow_scheduler,
    )
    from subscription_tracker.main import app

    app.dependency_overrides[get_subscription_repo] = lambda: mock_subscription_repo
    app.dependency_overrides[get_workflow_runtime] = lambda: mock_runtime
    app.dependency_overrides[get_workflow_scheduler] = lambda: mock_scheduler
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Synchronous test client (lifespan not started)."""
    return TestClient(app)
