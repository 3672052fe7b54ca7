"""
Unit tests for the durable workflow runtime.

Runs the reminder workflow against an in-memory SQLite checkpoint store,
advancing a fake clock between scheduler passes.
"""

import pytest
from datetime import timedelta

from subscription_tracker.infrastructure.db.models import RunStatus, StepStatus
from subscription_tracker.infrastructure.exceptions import (
    RunNotFoundError,
    TransientDeliveryError,
    ValidationError,
)
from subscription_tracker.infrastructure.workflow import WorkflowScheduler
from subscription_tracker.services.reminder_workflow import REMINDER_WORKFLOW


async def start_run(runtime, subscription):
    return await runtime.start(
        REMINDER_WORKFLOW,
        subscription.id,
        {"subscription_id": subscription.id},
    )


async def execute_due(runtime):
    """Claim and execute every due run once."""
    runs = await runtime.claim_due(limit=10)
    return [await runtime.execute(run) for run in runs]


class TestSuspendResume:
    """Tests for durable sleep across passes."""

    @pytest.mark.asyncio
    async def test_first_pass_sleeps_until_seven_day_reminder(
        self, runtime, make_subscription, clock, sender
    ):
        subscription = await make_subscription(renews_in=timedelta(days=10))
        run, created = await start_run(runtime, subscription)

        assert created is True
        assert run.status == RunStatus.PENDING.value

        [run] = await execute_due(runtime)

        assert run.status == RunStatus.SLEEPING.value
        assert run.wake_at == subscription.renewal_date - timedelta(days=7)
        assert run.lease_expires_at is None
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_not_due_before_wake_time(self, runtime, make_subscription, clock):
        subscription = await make_subscription()
        await start_run(runtime, subscription)
        await execute_due(runtime)

        clock.advance(days=2, hours=23)

        assert await runtime.claim_due(limit=10) == []

    @pytest.mark.asyncio
    async def test_resumes_and_sends_each_reminder_once(
        self, runtime, run_repo, make_subscription, clock, sender
    ):
        subscription = await make_subscription(renews_in=timedelta(days=10))
        run, _ = await start_run(runtime, subscription)
        await execute_due(runtime)

        for days in (7, 5, 2, 1):
            clock.set(subscription.renewal_date - timedelta(days=days))
            [run] = await execute_due(runtime)

        assert run.status == RunStatus.COMPLETED.value
        assert run.result["sent"] == [7, 5, 2, 1]
        assert run.result["reason"] == "complete"
        assert run.executions == 5
        assert len(sender.sent) == 4

        steps = {step.name: step for step in await run_repo.list_steps(run.id)}
        assert steps["send-7-days-reminder"].status == StepStatus.COMPLETED.value
        assert steps["sleep-1-days"].output["wake_at"] == (
            subscription.renewal_date - timedelta(days=1)
        ).isoformat()

    @pytest.mark.asyncio
    async def test_replayed_pass_does_not_resend(
        self, runtime, run_repo, make_subscription, clock, sender
    ):
        """A pass interrupted after sending is replayed from checkpoints."""
        subscription = await make_subscription()
        run, _ = await start_run(runtime, subscription)
        await execute_due(runtime)

        clock.set(subscription.renewal_date - timedelta(days=7))
        [run] = await execute_due(runtime)
        assert len(sender.sent) == 1

        # Execute the same run again as if the process had crashed before
        # releasing it: the 7-day send is replayed, not repeated
        run = await runtime.execute_by_id(run.id)

        assert run.status == RunStatus.SLEEPING.value
        assert len(sender.sent) == 1


class TestRetry:
    """Tests for retried delivery steps."""

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_checkpointed_as_missed(
        self, runtime, run_repo, make_subscription, clock, sender, backoff_sleep
    ):
        sender.fail_with(*[TransientDeliveryError("SMTP 451") for _ in range(3)])
        subscription = await make_subscription()
        run, _ = await start_run(runtime, subscription)
        await execute_due(runtime)

        clock.set(subscription.renewal_date - timedelta(days=7))
        [run] = await execute_due(runtime)

        # Run continues towards the 5-day reminder
        assert run.status == RunStatus.SLEEPING.value
        assert run.wake_at == subscription.renewal_date - timedelta(days=5)
        assert sender.attempts == 3
        assert [call.args[0] for call in backoff_sleep.await_args_list] == [1.0, 2.0]

        steps = {step.name: step for step in await run_repo.list_steps(run.id)}
        failed = steps["send-7-days-reminder"]
        assert failed.status == StepStatus.FAILED.value
        assert failed.attempts == 3
        assert failed.error_type == "TransientDeliveryError"

        # Replay keeps the recorded failure instead of retrying again
        await runtime.execute_by_id(run.id)
        assert sender.attempts == 3

        for days in (5, 2, 1):
            clock.set(subscription.renewal_date - timedelta(days=days))
            [run] = await execute_due(runtime)

        assert run.result["missed"] == [7]
        assert run.result["sent"] == [5, 2, 1]


class TestTrigger:
    """Tests for starting runs."""

    @pytest.mark.asyncio
    async def test_active_run_is_deduplicated(self, runtime, make_subscription):
        subscription = await make_subscription()

        first, created = await start_run(runtime, subscription)
        second, created_again = await start_run(runtime, subscription)

        assert created is True
        assert created_again is False
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_new_run_after_previous_finished(self, runtime, make_subscription, clock):
        subscription = await make_subscription(renews_in=timedelta(hours=12))
        first, _ = await start_run(runtime, subscription)
        [finished] = await execute_due(runtime)
        assert finished.status == RunStatus.COMPLETED.value

        second, created = await start_run(runtime, subscription)

        assert created is True
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_unknown_workflow_rejected(self, runtime):
        with pytest.raises(ValidationError):
            await runtime.start("no-such-workflow", "key", {})

    @pytest.mark.asyncio
    async def test_missing_subscription_completes_as_skipped(self, runtime, sender):
        run, _ = await runtime.start(
            REMINDER_WORKFLOW,
            "00000000-0000-0000-0000-000000000000",
            {"subscription_id": "00000000-0000-0000-0000-000000000000"},
        )

        [run] = await execute_due(runtime)

        assert run.status == RunStatus.COMPLETED.value
        assert run.result["reason"] == "skipped"


class TestCancellation:
    """Tests for run cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_sleeping_run(self, runtime, make_subscription, clock, sender):
        subscription = await make_subscription()
        run, _ = await start_run(runtime, subscription)
        await execute_due(runtime)

        run = await runtime.cancel(run.id)

        assert run.status == RunStatus.CANCELLED.value
        assert run.cancel_requested is True

        clock.set(subscription.renewal_date - timedelta(days=7))
        assert await runtime.claim_due(limit=10) == []
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_cancel_running_run_stops_at_next_check(self, runtime, make_subscription):
        subscription = await make_subscription()
        await start_run(runtime, subscription)
        [claimed] = await runtime.claim_due(limit=10)

        run = await runtime.cancel(claimed.id)
        assert run.status == RunStatus.RUNNING.value

        run = await runtime.execute(claimed)

        assert run.status == RunStatus.CANCELLED.value
        assert run.result["reason"] == "aborted"

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, runtime):
        with pytest.raises(RunNotFoundError):
            await runtime.cancel("00000000-0000-0000-0000-000000000000")


class TestLeases:
    """Tests for crash recovery through expired leases."""

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, runtime, make_subscription, clock):
        subscription = await make_subscription()
        await start_run(runtime, subscription)

        [claimed] = await runtime.claim_due(limit=10)
        assert claimed.status == RunStatus.RUNNING.value

        # Lease still held
        assert await runtime.claim_due(limit=10) == []

        clock.advance(seconds=301)
        [reclaimed] = await runtime.claim_due(limit=10)

        assert reclaimed.id == claimed.id
        assert reclaimed.executions == 2

    @pytest.mark.asyncio
    async def test_cancelled_run_with_dead_worker_is_closed(self, runtime, make_subscription, clock):
        """A cancel that no worker will observe still frees the subscription."""
        subscription = await make_subscription()
        await start_run(runtime, subscription)
        [claimed] = await runtime.claim_due(limit=10)
        await runtime.cancel(claimed.id)

        clock.advance(seconds=301)
        assert await runtime.claim_due(limit=10) == []

        run = await runtime.get_run(claimed.id)
        assert run.status == RunStatus.CANCELLED.value
        assert run.lease_expires_at is None

        retriggered, created = await start_run(runtime, subscription)
        assert created is True
        assert retriggered.id != claimed.id

    @pytest.mark.asyncio
    async def test_stale_pass_cannot_write_after_reclaim(
        self, runtime, run_repo, make_subscription, clock
    ):
        subscription = await make_subscription()
        await start_run(runtime, subscription)
        [stale] = await runtime.claim_due(limit=10)

        clock.advance(seconds=301)
        [current] = await runtime.claim_due(limit=10)

        # The stalled worker wakes up and tries to run its pass
        run = await runtime.execute(stale)

        assert run.status == RunStatus.RUNNING.value
        assert run.executions == 2
        assert await run_repo.list_steps(current.id) == []

        # Late outcomes from the old claim are dropped
        run = await run_repo.complete(stale.id, {"late": True}, executions=stale.executions)
        assert run.status == RunStatus.RUNNING.value
        assert run.result is None

        run = await runtime.execute(current)
        assert run.status == RunStatus.SLEEPING.value
        assert [step.name for step in await run_repo.list_steps(current.id)] == [
            "load-subscription",
            "evaluate-0",
        ]


class TestScheduler:
    """Tests for WorkflowScheduler."""

    @pytest.mark.asyncio
    async def test_tick_executes_due_runs(self, runtime, make_subscription):
        subscription = await make_subscription()
        run, _ = await start_run(runtime, subscription)
        scheduler = WorkflowScheduler(runtime, poll_interval_seconds=0.1)

        processed = await scheduler.tick()

        assert processed == 1
        assert (await runtime.get_run(run.id)).status == RunStatus.SLEEPING.value
        assert await scheduler.tick() == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, runtime):
        scheduler = WorkflowScheduler(runtime, poll_interval_seconds=0.1)

        scheduler.start()
        assert scheduler.running is True
        scheduler.wake()
        await scheduler.stop()

        assert scheduler.running is False
