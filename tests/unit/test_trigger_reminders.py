"""
Unit tests for the reminder backfill script (in-memory SQLite).
"""

import pytest
from datetime import datetime, timedelta, timezone

from scripts.trigger_reminders import trigger_reminders
from subscription_tracker.domain.subscription import SubscriptionStatus
from subscription_tracker.infrastructure.db.models import RunStatus
from subscription_tracker.services.reminder_workflow import REMINDER_WORKFLOW


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestTriggerReminders:
    """Tests for trigger_reminders."""

    @pytest.mark.asyncio
    async def test_expires_lapsed_and_starts_upcoming(
        self, session_factory, subscription_repo, run_repo, make_subscription
    ):
        lapsing = await make_subscription(renews_in=timedelta(days=2))
        upcoming = await make_subscription(renews_in=timedelta(days=20), name="Disney Plus")

        stats = await trigger_reminders(session_factory=session_factory, now=T0 + timedelta(days=3))

        assert stats["expired"] == 1
        assert stats["eligible"] == 1
        assert stats["started"] == 1
        assert stats["already_active"] == 0
        assert (await subscription_repo.get_by_id(lapsing.id)).status == SubscriptionStatus.EXPIRED

        run = await run_repo.get_active(REMINDER_WORKFLOW, upcoming.id)
        assert run.status == RunStatus.PENDING.value
        assert run.payload == {"subscription_id": upcoming.id}
        assert await run_repo.get_active(REMINDER_WORKFLOW, lapsing.id) is None

    @pytest.mark.asyncio
    async def test_second_backfill_joins_active_runs(self, session_factory, make_subscription):
        await make_subscription()
        await make_subscription(name="Spotify")

        first = await trigger_reminders(session_factory=session_factory, now=T0)
        second = await trigger_reminders(session_factory=session_factory, now=T0)

        assert first["started"] == 2
        assert second["started"] == 0
        assert second["already_active"] == 2

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(
        self, session_factory, subscription_repo, run_repo, make_subscription
    ):
        lapsing = await make_subscription(renews_in=timedelta(days=2))
        upcoming = await make_subscription(renews_in=timedelta(days=20), name="Disney Plus")

        stats = await trigger_reminders(
            dry_run=True,
            session_factory=session_factory,
            now=T0 + timedelta(days=3),
        )

        assert stats["eligible"] == 1
        assert stats["expired"] == 0
        assert stats["started"] == 0
        assert (await subscription_repo.get_by_id(lapsing.id)).status == SubscriptionStatus.ACTIVE
        assert await run_repo.get_active(REMINDER_WORKFLOW, upcoming.id) is None

    @pytest.mark.asyncio
    async def test_limit_caps_started_runs(self, session_factory, make_subscription):
        for name in ("Netflix", "Spotify", "Hulu"):
            await make_subscription(name=name)

        stats = await trigger_reminders(limit=2, session_factory=session_factory, now=T0)

        assert stats["eligible"] == 2
        assert stats["started"] == 2
