"""
Durable Workflow Runtime

Checkpointed workflow execution on top of the application database:
durable sleeps, exactly-once-observable steps with bounded retry, and a
polling scheduler that resumes runs across process restarts.
"""

from subscription_tracker.infrastructure.workflow.context import DurableContext
from subscription_tracker.infrastructure.workflow.retry import NO_RETRY, RetryPolicy
from subscription_tracker.infrastructure.workflow.runtime import WorkflowRuntime
from subscription_tracker.infrastructure.workflow.scheduler import WorkflowScheduler

__all__ = [
    "DurableContext",
    "NO_RETRY",
    "RetryPolicy",
    "WorkflowRuntime",
    "WorkflowScheduler",
]
