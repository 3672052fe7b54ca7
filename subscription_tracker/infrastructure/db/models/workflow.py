"""
Workflow Checkpoint Models

SQLModel tables backing the durable workflow runtime:
- workflow_runs: one row per run with its execution status and wake time
- workflow_steps: checkpointed outcome of every named step of a run
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint, text
from sqlmodel import Field

from subscription_tracker.infrastructure.db.models.base import BaseModel


class RunStatus(str, Enum):
    """Workflow run lifecycle status."""
    PENDING = "pending"
    SLEEPING = "sleeping"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Checkpointed step outcome."""
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_RUN_STATUSES = (RunStatus.PENDING, RunStatus.SLEEPING, RunStatus.RUNNING)

_ACTIVE_RUN_CONDITION = text("status IN ('pending', 'sleeping', 'running')")


class WorkflowRun(BaseModel, table=True):
    """
    Durable workflow run.

    At most one active (pending/sleeping/running) run exists per
    (workflow, workflow_key), enforced by a partial unique index.
    """

    __tablename__ = "workflow_runs"
    __table_args__ = (
        Index(
            "uq_workflow_runs_active_key",
            "workflow",
            "workflow_key",
            unique=True,
            postgresql_where=_ACTIVE_RUN_CONDITION,
            sqlite_where=_ACTIVE_RUN_CONDITION,
        ),
    )

    workflow: str = Field(max_length=100, index=True)
    workflow_key: str = Field(max_length=255, index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    status: str = Field(default=RunStatus.PENDING.value, max_length=20, index=True)
    wake_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True), index=True)
    lease_expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_requested: bool = Field(default=False)

    # Number of times the run has been claimed for execution
    executions: int = Field(default=0)

    result: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    error: Optional[str] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class WorkflowStep(BaseModel, table=True):
    """Checkpoint for one named step of a run."""

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("run_id", "name", name="uq_workflow_steps_run_name"),
    )

    run_id: UUID = Field(foreign_key="workflow_runs.id", index=True, nullable=False)
    name: str = Field(max_length=255)
    status: str = Field(max_length=20)
    output: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    error: Optional[str] = Field(default=None)
    error_type: Optional[str] = Field(default=None, max_length=100)
    attempts: int = Field(default=1)
