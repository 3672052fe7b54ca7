"""
Durable Workflow Context

Replay-based execution context handed to workflow handlers.

A handler is re-executed from the top every time its run is claimed. Steps
that already have a checkpoint return their stored outcome instead of running
again, so only the first unfinished step does real work. A durable sleep
whose wake time has not arrived raises WorkflowSuspended; the runtime stores
the wake time and the scheduler resumes the run once it passes.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from subscription_tracker.domain.subscription import ensure_utc
from subscription_tracker.infrastructure.db.models import StepStatus, WorkflowStep
from subscription_tracker.infrastructure.db.repositories.workflow_repository import (
    WorkflowRunRepository,
)
from subscription_tracker.infrastructure.exceptions import StepFailedError, WorkflowSuspended
from subscription_tracker.infrastructure.workflow.retry import NO_RETRY, RetryPolicy


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[None]]


class DurableContext:
    """
    Durable primitives for one execution pass of a run.

    Args:
        run_id: Run being executed
        steps: Checkpoints recorded by earlier passes
        repository: Checkpoint store
        clock: Source of the current time
        lease_seconds: Lease extension granted on every checkpoint
        executions: Claim this pass holds; checkpoints are refused once the run is reclaimed
        sleep: Coroutine used for in-process retry backoff
    """

    def __init__(
        self,
        run_id,
        steps: Iterable[WorkflowStep],
        repository: WorkflowRunRepository,
        clock: Clock,
        lease_seconds: int = 300,
        sleep: Sleeper = asyncio.sleep,
        executions: Optional[int] = None,
    ):
        self.run_id = str(run_id)
        self._steps: Dict[str, WorkflowStep] = {step.name: step for step in steps}
        self._repository = repository
        self._clock = clock
        self._lease_seconds = lease_seconds
        self._sleep = sleep
        self._executions = executions
        self.replayed = 0

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    async def is_cancelled(self) -> bool:
        return await self._repository.is_cancel_requested(self.run_id)

    async def sleep_until(self, name: str, wake_at: datetime) -> None:
        """
        Durably wait until ``wake_at``.

        Returns immediately when the sleep already ended in an earlier pass or
        the wake time is not in the future.

        Raises:
            WorkflowSuspended: wake time not reached yet
        """
        if name in self._steps:
            self.replayed += 1
            return

        wake_at = ensure_utc(wake_at)
        now = self.now()
        if wake_at > now:
            raise WorkflowSuspended(wake_at, name)

        await self._checkpoint(
            name,
            StepStatus.COMPLETED,
            output={"wake_at": wake_at.isoformat(), "resumed_at": now.isoformat()},
        )

    async def run_step(
        self,
        name: str,
        fn: Callable[[], Any],
        retry: Optional[RetryPolicy] = None,
    ) -> Any:
        """
        Execute ``fn`` once for this run and checkpoint its outcome.

        ``fn`` may be sync or async and must return a JSON-serializable value.
        Failures matching the retry policy are retried with exponential
        backoff; the final failure is checkpointed too, so a replay raises the
        same StepFailedError without calling ``fn`` again.

        Raises:
            StepFailedError: fn failed permanently or exhausted its retries
        """
        recorded = self._steps.get(name)
        if recorded is not None:
            self.replayed += 1
            return self._replay(recorded)

        policy = retry or NO_RETRY
        attempt = 0
        while True:
            attempt += 1
            try:
                value = fn()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                if policy.should_retry(e, attempt):
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        f"[{self.run_id}] Step {name} failed (attempt {attempt}/"
                        f"{policy.max_attempts}): {e}. Retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue

                logger.error(f"[{self.run_id}] Step {name} failed after {attempt} attempt(s): {e}")
                step = await self._checkpoint(
                    name,
                    StepStatus.FAILED,
                    error=str(e),
                    error_type=type(e).__name__,
                    attempts=attempt,
                )
                raise self._failure(step, original_error=e) from e

            await self._checkpoint(name, StepStatus.COMPLETED, output={"value": value}, attempts=attempt)
            return value

    # =========================================================================
    # Helpers
    # =========================================================================

    def _replay(self, step: WorkflowStep) -> Any:
        if step.status == StepStatus.COMPLETED.value:
            return (step.output or {}).get("value")
        raise self._failure(step)

    def _failure(self, step: WorkflowStep, original_error: Optional[Exception] = None) -> StepFailedError:
        return StepFailedError(
            f"Step {step.name} failed: {step.error}",
            run_id=self.run_id,
            step=step.name,
            attempts=step.attempts,
            error_type=step.error_type,
            original_error=original_error,
        )

    async def _checkpoint(self, name: str, status: StepStatus, **fields) -> WorkflowStep:
        step = await self._repository.record_step(
            self.run_id,
            name,
            status,
            lease_until=self.now() + timedelta(seconds=self._lease_seconds),
            executions=self._executions,
            **fields,
        )
        self._steps[name] = step
        return step
