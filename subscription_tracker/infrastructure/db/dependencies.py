"""
Dependency Injection Providers for Subscription Tracker

Provides FastAPI dependencies for repositories and the workflow runtime.
Routers declare what they need; tests swap implementations through
``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from subscription_tracker.infrastructure.db.repositories import (
    SubscriptionRepository,
    get_subscription_repository,
)
from subscription_tracker.infrastructure.workflow import WorkflowRuntime, WorkflowScheduler


def get_subscription_repo() -> SubscriptionRepository:
    """Dependency provider for SubscriptionRepository."""
    return get_subscription_repository()


def get_workflow_runtime(request: Request) -> WorkflowRuntime:
    """Workflow runtime created during application startup."""
    return request.app.state.workflow_runtime


def get_workflow_scheduler(request: Request) -> WorkflowScheduler:
    """Scheduler created during application startup."""
    return request.app.state.workflow_scheduler


# Type aliases for dependencies
SubscriptionRepoDep = Annotated[SubscriptionRepository, Depends(get_subscription_repo)]
WorkflowRuntimeDep = Annotated[WorkflowRuntime, Depends(get_workflow_runtime)]
WorkflowSchedulerDep = Annotated[WorkflowScheduler, Depends(get_workflow_scheduler)]
