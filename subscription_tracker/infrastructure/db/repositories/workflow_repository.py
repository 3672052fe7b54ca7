"""
Workflow Run Repository

Checkpoint store for the durable workflow runtime. Runs are claimed with
conditional updates so several scheduler processes can poll the same table
without executing a run twice.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from subscription_tracker.domain.subscription import ensure_utc
from subscription_tracker.infrastructure.db.database import SessionFactory, get_session_context
from subscription_tracker.infrastructure.db.models import (
    ACTIVE_RUN_STATUSES,
    RunStatus,
    StepStatus,
    WorkflowRun,
    WorkflowStep,
    utc_now,
)
from subscription_tracker.infrastructure.db.repositories.subscription_repository import parse_uuid
from subscription_tracker.infrastructure.exceptions import LeaseLostError, RunNotFoundError


logger = logging.getLogger(__name__)

_ACTIVE = [status.value for status in ACTIVE_RUN_STATUSES]


class WorkflowRunRepository:
    """
    Repository for workflow runs and their step checkpoints.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    # =========================================================================
    # Runs
    # =========================================================================

    async def create_or_get_active(
        self,
        workflow: str,
        workflow_key: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Tuple[WorkflowRun, bool]:
        """
        Start a run unless one is already active for the same key.

        Returns:
            (run, created) where created is False for a deduplicated trigger
        """
        existing = await self.get_active(workflow, workflow_key)
        if existing:
            return existing, False

        async with self._session_factory() as session:
            run = WorkflowRun(
                workflow=workflow,
                workflow_key=workflow_key,
                payload=payload,
                status=RunStatus.PENDING.value,
                wake_at=now or utc_now(),
            )
            session.add(run)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent trigger won the race for this key
                await session.rollback()
                existing = await self.get_active(workflow, workflow_key)
                if existing:
                    return existing, False
                raise
            await session.refresh(run)

        logger.info(f"Created {workflow} run {run.id} for {workflow_key}")
        return self._normalize(run), True

    async def get(self, run_id) -> WorkflowRun:
        """
        Get a run by ID.

        Raises:
            RunNotFoundError: run does not exist
        """
        run_uuid = parse_uuid(run_id)
        async with self._session_factory() as session:
            run = await session.get(WorkflowRun, run_uuid) if run_uuid else None
        if run is None:
            raise RunNotFoundError(
                f"Workflow run {run_id} not found",
                operation="get",
                table="workflow_runs",
            )
        return self._normalize(run)

    async def get_active(self, workflow: str, workflow_key: str) -> Optional[WorkflowRun]:
        async with self._session_factory() as session:
            statement = (
                select(WorkflowRun)
                .where(WorkflowRun.workflow == workflow)
                .where(WorkflowRun.workflow_key == workflow_key)
                .where(WorkflowRun.status.in_(_ACTIVE))
            )
            result = await session.execute(statement)
            run = result.scalars().first()
        return self._normalize(run) if run else None

    async def claim_due(
        self,
        now: datetime,
        lease_seconds: int,
        limit: int = 20,
    ) -> List[WorkflowRun]:
        """
        Claim runs that are ready to execute.

        Due runs are pending/sleeping runs whose wake time has arrived, plus
        running runs whose lease expired (the process executing them died).
        Expired runs that were asked to cancel are closed as cancelled instead
        of being claimed.
        """
        abandoned = (
            update(WorkflowRun)
            .where(WorkflowRun.status == RunStatus.RUNNING.value)
            .where(WorkflowRun.cancel_requested.is_(True))
            .where(WorkflowRun.lease_expires_at <= now)
            .values(
                status=RunStatus.CANCELLED.value,
                wake_at=None,
                lease_expires_at=None,
                completed_at=now,
                updated_at=now,
            )
        )

        due = or_(
            and_(
                WorkflowRun.status.in_([RunStatus.PENDING.value, RunStatus.SLEEPING.value]),
                or_(WorkflowRun.wake_at.is_(None), WorkflowRun.wake_at <= now),
            ),
            and_(
                WorkflowRun.status == RunStatus.RUNNING.value,
                WorkflowRun.lease_expires_at <= now,
            ),
        )

        async with self._session_factory() as session:
            swept = (await session.execute(abandoned)).rowcount
            if swept:
                logger.info(f"Cancelled {swept} abandoned run(s) with pending cancel requests")

            statement = (
                select(WorkflowRun.id)
                .where(due)
                .where(WorkflowRun.cancel_requested.is_(False))
                .order_by(WorkflowRun.wake_at)
                .limit(limit)
            )
            candidates = list((await session.execute(statement)).scalars().all())

            claimed_ids = []
            lease_until = now + timedelta(seconds=lease_seconds)
            for run_id in candidates:
                claim = (
                    update(WorkflowRun)
                    .where(WorkflowRun.id == run_id)
                    .where(due)
                    .values(
                        status=RunStatus.RUNNING.value,
                        lease_expires_at=lease_until,
                        executions=WorkflowRun.executions + 1,
                        updated_at=now,
                    )
                )
                result = await session.execute(claim)
                if result.rowcount == 1:
                    claimed_ids.append(run_id)
            await session.commit()

            if not claimed_ids:
                return []

            result = await session.execute(
                select(WorkflowRun).where(WorkflowRun.id.in_(claimed_ids))
            )
            runs = list(result.scalars().all())

        runs = [self._normalize(run) for run in runs]
        logger.debug(f"Claimed {len(runs)} due workflow runs")
        return runs

    async def suspend(self, run_id, wake_at: datetime, executions: Optional[int] = None) -> WorkflowRun:
        """Release a run until its durable sleep ends."""
        return await self._finish(
            run_id,
            executions=executions,
            status=RunStatus.SLEEPING,
            wake_at=ensure_utc(wake_at),
            lease_expires_at=None,
        )

    async def complete(
        self,
        run_id,
        result: Optional[dict[str, Any]],
        executions: Optional[int] = None,
    ) -> WorkflowRun:
        return await self._finish(
            run_id,
            executions=executions,
            status=RunStatus.COMPLETED,
            result=result,
            wake_at=None,
            lease_expires_at=None,
            completed_at=utc_now(),
        )

    async def fail(self, run_id, error: str, executions: Optional[int] = None) -> WorkflowRun:
        return await self._finish(
            run_id,
            executions=executions,
            status=RunStatus.FAILED,
            error=error,
            wake_at=None,
            lease_expires_at=None,
            completed_at=utc_now(),
        )

    async def mark_cancelled(
        self,
        run_id,
        result: Optional[dict[str, Any]] = None,
        executions: Optional[int] = None,
    ) -> WorkflowRun:
        return await self._finish(
            run_id,
            executions=executions,
            status=RunStatus.CANCELLED,
            result=result,
            wake_at=None,
            lease_expires_at=None,
            completed_at=utc_now(),
        )

    async def request_cancel(self, run_id) -> WorkflowRun:
        """
        Ask a run to stop.

        Idle runs (pending/sleeping) are cancelled immediately; a running run
        observes the flag at its next cancellation check.
        """
        run = await self.get(run_id)
        async with self._session_factory() as session:
            values = {"cancel_requested": True, "updated_at": utc_now()}
            if run.status in (RunStatus.PENDING.value, RunStatus.SLEEPING.value):
                values.update(
                    status=RunStatus.CANCELLED.value,
                    wake_at=None,
                    completed_at=utc_now(),
                )
            await session.execute(
                update(WorkflowRun).where(WorkflowRun.id == run.id).values(**values)
            )
            await session.commit()

        logger.info(f"Cancellation requested for run {run.id}")
        return await self.get(run.id)

    async def is_cancel_requested(self, run_id) -> bool:
        return (await self.get(run_id)).cancel_requested

    async def _finish(
        self,
        run_id,
        status: RunStatus,
        executions: Optional[int] = None,
        **values,
    ) -> WorkflowRun:
        """
        Persist a run outcome.

        With ``executions`` set, the write only applies while the run is still
        on that claim; an outcome from a reclaimed pass is dropped.
        """
        run_uuid = parse_uuid(run_id)
        statement = update(WorkflowRun).where(WorkflowRun.id == run_uuid)
        if executions is not None:
            statement = statement.where(WorkflowRun.executions == executions)

        async with self._session_factory() as session:
            result = await session.execute(
                statement.values(status=status.value, updated_at=utc_now(), **values)
            )
            await session.commit()

        if result.rowcount == 0:
            logger.warning(
                f"Run {run_uuid} was reclaimed after execution {executions}; "
                f"dropping {status.value} outcome"
            )
        return await self.get(run_uuid)

    # =========================================================================
    # Steps
    # =========================================================================

    async def list_steps(self, run_id) -> List[WorkflowStep]:
        run_uuid = parse_uuid(run_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowStep)
                .where(WorkflowStep.run_id == run_uuid)
                .order_by(WorkflowStep.created_at)
            )
            return list(result.scalars().all())

    async def record_step(
        self,
        run_id,
        name: str,
        status: StepStatus,
        output: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
        attempts: int = 1,
        lease_until: Optional[datetime] = None,
        executions: Optional[int] = None,
    ) -> WorkflowStep:
        """
        Checkpoint a step outcome and extend the run's lease.

        A step is recorded once; replays read the stored outcome.

        Raises:
            LeaseLostError: ``executions`` no longer matches the run's claim
        """
        run_uuid = parse_uuid(run_id)
        async with self._session_factory() as session:
            if executions is not None:
                owned = await session.execute(
                    update(WorkflowRun)
                    .where(WorkflowRun.id == run_uuid)
                    .where(WorkflowRun.executions == executions)
                    .values(updated_at=utc_now())
                )
                if owned.rowcount == 0:
                    await session.rollback()
                    raise LeaseLostError(
                        f"Run {run_uuid} was reclaimed after execution {executions}",
                        run_id=str(run_uuid),
                        step=name,
                    )

            step = WorkflowStep(
                run_id=run_uuid,
                name=name,
                status=status.value,
                output=output,
                error=error,
                error_type=error_type,
                attempts=attempts,
            )
            session.add(step)
            if lease_until is not None:
                await session.execute(
                    update(WorkflowRun)
                    .where(WorkflowRun.id == run_uuid)
                    .values(lease_expires_at=lease_until, updated_at=utc_now())
                )
            await session.commit()
            await session.refresh(step)
            return step

    # =========================================================================
    # Mapping
    # =========================================================================

    def _normalize(self, run: WorkflowRun) -> WorkflowRun:
        """SQLite drops tzinfo; expose every timestamp as aware UTC."""
        for field in ("wake_at", "lease_expires_at", "completed_at", "created_at", "updated_at"):
            value = getattr(run, field)
            if value is not None:
                setattr(run, field, ensure_utc(value))
        return run
