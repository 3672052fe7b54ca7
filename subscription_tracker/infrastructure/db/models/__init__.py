"""
SQLModel ORM Models for Subscription Tracker

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from subscription_tracker.infrastructure.db.models.base import (
    BaseModel,
    TimestampMixin,
    UUIDMixin,
    utc_now,
)
from subscription_tracker.infrastructure.db.models.subscription import (
    SubscriptionModel,
    UserModel,
)
from subscription_tracker.infrastructure.db.models.workflow import (
    ACTIVE_RUN_STATUSES,
    RunStatus,
    StepStatus,
    WorkflowRun,
    WorkflowStep,
)


__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "utc_now",
    # Subscriptions
    "SubscriptionModel",
    "UserModel",
    # Workflow checkpoints
    "ACTIVE_RUN_STATUSES",
    "RunStatus",
    "StepStatus",
    "WorkflowRun",
    "WorkflowStep",
]
