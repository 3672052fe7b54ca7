"""
Workflow Scheduler

Background asyncio task that polls the checkpoint store for due runs and
executes them with bounded concurrency.

- due = pending/sleeping with wake_at <= now, or running with an expired lease
- a run found due is claimed (status -> running) before it executes
- wake() skips the remaining poll wait, e.g. right after a trigger
"""

import asyncio
import logging
from typing import Optional

from subscription_tracker.infrastructure.db.models import WorkflowRun
from subscription_tracker.infrastructure.workflow.runtime import WorkflowRuntime


logger = logging.getLogger(__name__)


class WorkflowScheduler:
    """Polls for due workflow runs and executes them."""

    def __init__(
        self,
        runtime: WorkflowRuntime,
        poll_interval_seconds: float = 5.0,
        batch_size: int = 20,
        max_concurrent_runs: int = 10,
    ):
        self.runtime = runtime
        self.poll_interval_seconds = max(0.05, float(poll_interval_seconds))
        self.batch_size = max(1, int(batch_size))
        self._semaphore = asyncio.Semaphore(max(1, int(max_concurrent_runs)))
        self._wake_event = asyncio.Event()
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling in the background (idempotent)."""
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="workflow-scheduler")
        logger.info(
            f"Workflow scheduler started (poll every {self.poll_interval_seconds}s, "
            f"batch {self.batch_size})"
        )

    def wake(self) -> None:
        """Poll now instead of waiting for the next interval."""
        self._wake_event.set()

    async def stop(self) -> None:
        """Stop polling and wait for the current tick to finish."""
        if self._task is None:
            return
        self._stopping = True
        self._wake_event.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("Workflow scheduler stopped")

    async def tick(self) -> int:
        """
        Claim and execute one batch of due runs.

        Returns:
            Number of runs executed
        """
        runs = await self.runtime.claim_due(self.batch_size)
        if runs:
            await asyncio.gather(*(self._execute(run) for run in runs))
        return len(runs)

    async def _execute(self, run: WorkflowRun) -> None:
        async with self._semaphore:
            try:
                await self.runtime.execute(run)
            except Exception as e:
                # Run stays claimed; its lease expiry makes it due again
                logger.exception(f"Executing run {run.id} failed: {e}")

    async def _loop(self) -> None:
        while not self._stopping:
            processed = 0
            try:
                processed = await self.tick()
            except Exception as e:
                logger.exception(f"Workflow scheduler tick failed: {e}")

            if processed >= self.batch_size:
                # More due runs are likely waiting
                continue

            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake_event.clear()
