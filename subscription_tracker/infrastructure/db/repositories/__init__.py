"""
Repository Layer for Subscription Tracker

Exports all repository classes for dependency injection.
"""

from subscription_tracker.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    UserRepository,
    get_subscription_repository,
)
from subscription_tracker.infrastructure.db.repositories.workflow_repository import (
    WorkflowRunRepository,
)


__all__ = [
    "SubscriptionRepository",
    "UserRepository",
    "WorkflowRunRepository",
    "get_subscription_repository",
]
