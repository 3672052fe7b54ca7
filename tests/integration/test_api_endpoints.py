"""
Integration tests for the workflow API endpoints.

Tests the full request/response cycle with the runtime, scheduler and
subscription repository overridden.
"""

import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

from fastapi.testclient import TestClient

from subscription_tracker.infrastructure.exceptions import DataIntegrityError, RunNotFoundError


NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
TRIGGER_URL = "/api/v1/workflows/subscription/reminder"


def fake_run(status="pending", **overrides):
    fields = {
        "id": uuid4(),
        "workflow": "subscription-reminder",
        "workflow_key": "sub-1",
        "status": status,
        "wake_at": NOW,
        "cancel_requested": False,
        "executions": 0,
        "result": None,
        "error": None,
        "created_at": NOW,
        "completed_at": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        """Root endpoint should return welcome message."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "message" in data

    def test_health_endpoint(self, client: TestClient):
        """Health endpoint should return healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"


class TestTriggerEndpoint:
    """Tests for the reminder trigger endpoint."""

    def test_trigger_accepts_and_returns_immediately(
        self,
        client: TestClient,
        mock_runtime,
        mock_scheduler,
        mock_subscription_repo,
    ):
        """Trigger should start a run and answer 202 without waiting for it."""
        subscription_id = str(uuid4())
        run = fake_run(workflow_key=subscription_id)
        mock_subscription_repo.get_by_id.return_value = SimpleNamespace(id=subscription_id)
        mock_runtime.start.return_value = (run, True)

        response = client.post(TRIGGER_URL, json={"subscription_id": subscription_id})

        assert response.status_code == 202
        data = response.json()
        assert data["run_id"] == str(run.id)
        assert data["subscription_id"] == subscription_id
        assert data["deduplicated"] is False
        mock_runtime.start.assert_awaited_once_with(
            "subscription-reminder",
            subscription_id,
            {"subscription_id": subscription_id},
        )
        mock_scheduler.wake.assert_called_once()

    def test_repeated_trigger_is_deduplicated(
        self,
        client: TestClient,
        mock_runtime,
        mock_scheduler,
        mock_subscription_repo,
    ):
        subscription_id = str(uuid4())
        mock_subscription_repo.get_by_id.return_value = SimpleNamespace(id=subscription_id)
        mock_runtime.start.return_value = (fake_run(status="sleeping"), False)

        response = client.post(TRIGGER_URL, json={"subscription_id": subscription_id})

        assert response.status_code == 202
        assert response.json()["deduplicated"] is True
        assert response.json()["status"] == "sleeping"
        mock_scheduler.wake.assert_not_called()

    def test_unknown_subscription_returns_404(self, client: TestClient, mock_runtime):
        response = client.post(TRIGGER_URL, json={"subscription_id": str(uuid4())})

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"
        mock_runtime.start.assert_not_called()

    def test_unreadable_subscription_is_still_accepted(
        self,
        client: TestClient,
        mock_runtime,
        mock_subscription_repo,
    ):
        """A corrupt row starts a run that fails in the background, not a 500."""
        subscription_id = str(uuid4())
        mock_subscription_repo.get_by_id.side_effect = DataIntegrityError(
            "Invalid subscription data", field="price"
        )
        mock_runtime.start.return_value = (fake_run(workflow_key=subscription_id), True)

        response = client.post(TRIGGER_URL, json={"subscription_id": subscription_id})

        assert response.status_code == 202
        mock_runtime.start.assert_awaited_once()

    def test_trigger_requires_subscription_id(self, client: TestClient):
        response = client.post(TRIGGER_URL, json={})
        assert response.status_code == 422  # Validation error

    def test_trigger_rejects_malformed_id(self, client: TestClient):
        response = client.post(TRIGGER_URL, json={"subscription_id": "not-a-uuid"})
        assert response.status_code == 422


class TestRunEndpoints:
    """Tests for run status and cancellation."""

    def test_get_run_with_steps(self, client: TestClient, mock_runtime):
        run = fake_run(status="sleeping", executions=1)
        mock_runtime.get_run.return_value = run
        mock_runtime.repository.list_steps.return_value = [
            SimpleNamespace(name="load-subscription", status="completed", attempts=1, error=None),
        ]

        response = client.get(f"/api/v1/workflows/runs/{run.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "sleeping"
        assert data["steps"] == [
            {"name": "load-subscription", "status": "completed", "attempts": 1, "error": None}
        ]

    def test_get_unknown_run_returns_404(self, client: TestClient, mock_runtime):
        mock_runtime.get_run.side_effect = RunNotFoundError("Workflow run not found")

        response = client.get(f"/api/v1/workflows/runs/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"] == "RunNotFoundError"

    def test_cancel_run(self, client: TestClient, mock_runtime):
        run = fake_run(status="cancelled", cancel_requested=True, completed_at=NOW)
        mock_runtime.cancel.return_value = run

        response = client.delete(f"/api/v1/workflows/runs/{run.id}")

        assert response.status_code == 202
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancel_requested"] is True


@pytest.mark.asyncio
async def test_trigger_end_to_end(session_factory, make_subscription, clock, sender):
    """Trigger through the API, then let the scheduler run the first pass."""
    from subscription_tracker.api.dependencies import (
        get_subscription_repo,
        get_workflow_runtime,
        get_workflow_scheduler,
    )
    from subscription_tracker.config.settings import Settings
    from subscription_tracker.infrastructure.db.repositories import SubscriptionRepository
    from subscription_tracker.main import app
    from subscription_tracker.services.workflow_setup import (
        create_workflow_runtime,
        create_workflow_scheduler,
    )
    from httpx import ASGITransport, AsyncClient

    settings = Settings(_env_file=None)
    subscription = await make_subscription()
    runtime = create_workflow_runtime(settings, session_factory, sender=sender)
    runtime.clock = clock
    scheduler = create_workflow_scheduler(settings, runtime)

    app.dependency_overrides[get_subscription_repo] = lambda: SubscriptionRepository(session_factory)
    app.dependency_overrides[get_workflow_runtime] = lambda: runtime
    app.dependency_overrides[get_workflow_scheduler] = lambda: scheduler
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(TRIGGER_URL, json={"subscription_id": subscription.id})
            assert response.status_code == 202
            run_id = response.json()["run_id"]

            assert await scheduler.tick() == 1

            response = await ac.get(f"/api/v1/workflows/runs/{run_id}")
            data = response.json()
            assert data["status"] == "sleeping"
            assert [step["name"] for step in data["steps"]] == [
                "load-subscription",
                "evaluate-0",
            ]
    finally:
        app.dependency_overrides.clear()
