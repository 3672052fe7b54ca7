"""
API Dependencies

FastAPI dependency injection for repositories and the workflow runtime.

Routers should import from api.dependencies, not db.dependencies directly.
"""

from subscription_tracker.infrastructure.db.dependencies import (  # noqa: F401
    SubscriptionRepoDep,
    WorkflowRuntimeDep,
    WorkflowSchedulerDep,
    get_subscription_repo,
    get_workflow_runtime,
    get_workflow_scheduler,
)
