"""
Durable Workflow Runtime

Registry of workflow handlers plus the logic that executes one pass of a
run and maps its outcome onto the run's persisted status:

- handler returned        -> completed (or cancelled when a cancel was requested)
- WorkflowSuspended       -> sleeping until the requested wake time
- any other exception     -> failed
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from subscription_tracker.infrastructure.db.models import WorkflowRun, utc_now
from subscription_tracker.infrastructure.db.repositories.workflow_repository import (
    WorkflowRunRepository,
)
from subscription_tracker.infrastructure.exceptions import (
    LeaseLostError,
    ValidationError,
    WorkflowSuspended,
)
from subscription_tracker.infrastructure.workflow.context import Clock, DurableContext, Sleeper


logger = logging.getLogger(__name__)

WorkflowHandler = Callable[[DurableContext, Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


class WorkflowRuntime:
    """
    Executes registered workflows against the checkpoint store.

    Args:
        repository: Run/step checkpoint store
        clock: Source of the current time
        lease_seconds: How long a claimed run stays reserved for this process
        sleep: Coroutine used for in-step retry backoff
    """

    def __init__(
        self,
        repository: WorkflowRunRepository,
        clock: Clock = utc_now,
        lease_seconds: int = 300,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.repository = repository
        self.clock = clock
        self.lease_seconds = lease_seconds
        self._sleep = sleep
        self._handlers: Dict[str, WorkflowHandler] = {}

    def register(self, name: str, handler: WorkflowHandler) -> None:
        """Register the handler executed for runs of workflow ``name``."""
        self._handlers[name] = handler
        logger.debug(f"Registered workflow handler: {name}")

    @property
    def workflows(self) -> List[str]:
        return sorted(self._handlers)

    async def start(
        self,
        workflow: str,
        key: str,
        payload: Dict[str, Any],
    ) -> Tuple[WorkflowRun, bool]:
        """
        Start a run of ``workflow`` keyed by ``key``.

        At most one active run exists per key; triggering again while a run is
        active returns that run instead.

        Returns:
            (run, created)
        """
        if workflow not in self._handlers:
            raise ValidationError(
                f"Unknown workflow: {workflow}",
                details={"registered": self.workflows},
            )
        return await self.repository.create_or_get_active(
            workflow, key, payload, now=self.clock()
        )

    async def claim_due(self, limit: int) -> List[WorkflowRun]:
        return await self.repository.claim_due(self.clock(), self.lease_seconds, limit)

    async def execute(self, run: WorkflowRun) -> WorkflowRun:
        """
        Execute one pass of a claimed run and persist its outcome.

        Returns:
            The run with its updated status
        """
        handler = self._handlers.get(run.workflow)
        if handler is None:
            logger.error(f"No handler registered for workflow {run.workflow} (run {run.id})")
            return await self.repository.fail(run.id, f"Unknown workflow: {run.workflow}")

        steps = await self.repository.list_steps(run.id)
        ctx = DurableContext(
            run.id,
            steps,
            self.repository,
            clock=self.clock,
            lease_seconds=self.lease_seconds,
            sleep=self._sleep,
            executions=run.executions,
        )

        claim = run.executions
        try:
            result = await handler(ctx, dict(run.payload or {}))
        except WorkflowSuspended as suspended:
            if await ctx.is_cancelled():
                return await self.repository.mark_cancelled(run.id, executions=claim)
            logger.info(
                f"Run {run.id} sleeping at {suspended.step} until {suspended.wake_at.isoformat()}"
            )
            return await self.repository.suspend(run.id, suspended.wake_at, executions=claim)
        except LeaseLostError as e:
            logger.warning(f"Abandoning pass of run {run.id}: {e.message}")
            return await self.repository.get(run.id)
        except Exception as e:
            logger.exception(f"Run {run.id} ({run.workflow}) failed: {e}")
            return await self.repository.fail(run.id, f"{type(e).__name__}: {e}", executions=claim)

        if await ctx.is_cancelled():
            return await self.repository.mark_cancelled(run.id, result, executions=claim)

        logger.info(f"Run {run.id} ({run.workflow}) completed after replaying {ctx.replayed} step(s)")
        return await self.repository.complete(run.id, result, executions=claim)

    async def execute_by_id(self, run_id) -> WorkflowRun:
        return await self.execute(await self.repository.get(run_id))

    async def get_run(self, run_id) -> WorkflowRun:
        return await self.repository.get(run_id)

    async def cancel(self, run_id) -> WorkflowRun:
        return await self.repository.request_cancel(run_id)

