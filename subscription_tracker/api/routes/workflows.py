"""
Workflow API Routes

Trigger boundary for the renewal reminder workflow.

POST starts (or joins) the reminder run for a subscription and returns at
once; the run itself executes in the background scheduler.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from subscription_tracker.api.dependencies import (
    SubscriptionRepoDep,
    WorkflowRuntimeDep,
    WorkflowSchedulerDep,
)
from subscription_tracker.infrastructure.db.models import WorkflowRun
from subscription_tracker.infrastructure.exceptions import DataIntegrityError, NotFoundError
from subscription_tracker.services.reminder_workflow import REMINDER_WORKFLOW


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response DTOs
# =============================================================================

class TriggerReminderRequest(BaseModel):
    """Request DTO for starting a reminder run."""
    subscription_id: UUID = Field(..., description="Subscription to send renewal reminders for")


class TriggerReminderResponse(BaseModel):
    """Acknowledgement; the run continues in the background."""
    run_id: str
    subscription_id: str
    status: str
    deduplicated: bool = Field(description="True when an active run already existed")


class StepResponse(BaseModel):
    name: str
    status: str
    attempts: int
    error: Optional[str] = None


class RunResponse(BaseModel):
    """Response DTO for a workflow run."""
    run_id: str
    workflow: str
    key: str
    status: str
    wake_at: Optional[datetime] = None
    cancel_requested: bool = False
    executions: int = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    steps: List[StepResponse] = Field(default_factory=list)


def _run_to_response(run: WorkflowRun, steps=()) -> RunResponse:
    return RunResponse(
        run_id=str(run.id),
        workflow=run.workflow,
        key=run.workflow_key,
        status=run.status,
        wake_at=run.wake_at,
        cancel_requested=run.cancel_requested,
        executions=run.executions,
        result=run.result,
        error=run.error,
        created_at=run.created_at,
        completed_at=run.completed_at,
        steps=[
            StepResponse(name=s.name, status=s.status, attempts=s.attempts, error=s.error)
            for s in steps
        ],
    )


# =============================================================================
# Trigger Endpoint
# =============================================================================

@router.post(
    "/workflows/subscription/reminder",
    response_model=TriggerReminderResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_subscription_reminder(
    request: TriggerReminderRequest,
    repo: SubscriptionRepoDep,
    runtime: WorkflowRuntimeDep,
    scheduler: WorkflowSchedulerDep,
):
    """
    Start the renewal reminder workflow for a subscription.

    Returns 202 without waiting for the workflow. At most one active run
    exists per subscription; a repeated trigger returns the active run.
    """
    subscription_id = str(request.subscription_id)

    try:
        exists = await repo.get_by_id(subscription_id) is not None
    except DataIntegrityError as e:
        # Row exists but is unreadable; the run fails at load-subscription
        logger.warning(f"Subscription {subscription_id} has invalid data: {e.message}")
        exists = True
    if not exists:
        raise NotFoundError(
            f"Subscription {subscription_id} not found",
            operation="trigger",
            table="subscriptions",
        )

    run, created = await runtime.start(
        REMINDER_WORKFLOW,
        subscription_id,
        {"subscription_id": subscription_id},
    )

    if created:
        scheduler.wake()
        logger.info(f"Started reminder run {run.id} for subscription {subscription_id}")
    else:
        logger.info(f"Reminder run {run.id} already active for subscription {subscription_id}")

    return TriggerReminderResponse(
        run_id=str(run.id),
        subscription_id=subscription_id,
        status=run.status,
        deduplicated=not created,
    )


# =============================================================================
# Run Endpoints
# =============================================================================

@router.get("/workflows/runs/{run_id}", response_model=RunResponse)
async def get_workflow_run(run_id: UUID, runtime: WorkflowRuntimeDep):
    """Get the status and checkpointed steps of a workflow run."""
    run = await runtime.get_run(run_id)
    steps = await runtime.repository.list_steps(run.id)
    return _run_to_response(run, steps)


@router.delete(
    "/workflows/runs/{run_id}",
    response_model=RunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_workflow_run(run_id: UUID, runtime: WorkflowRuntimeDep):
    """
    Request cancellation of a workflow run.

    Sleeping runs stop immediately; a run that is executing stops at its
    next cancellation check.
    """
    run = await runtime.cancel(run_id)
    return _run_to_response(run)
