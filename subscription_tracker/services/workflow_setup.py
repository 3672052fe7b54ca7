"""
Workflow Composition

Wires the reminder engine into the durable runtime from application settings.
Settings are read here, at process start, and handed to the collaborators.
"""

import logging
from typing import Optional

from subscription_tracker.config.settings import Settings
from subscription_tracker.infrastructure.db.database import SessionFactory, get_session_context
from subscription_tracker.infrastructure.db.repositories import (
    SubscriptionRepository,
    WorkflowRunRepository,
)
from subscription_tracker.infrastructure.exceptions import TransientDeliveryError
from subscription_tracker.infrastructure.notifications import get_notification_sender
from subscription_tracker.infrastructure.workflow import (
    RetryPolicy,
    WorkflowRuntime,
    WorkflowScheduler,
)
from subscription_tracker.services.reminder_workflow import (
    NotificationSender,
    ReminderWorkflow,
    SubscriptionStore,
)


logger = logging.getLogger(__name__)


def notification_retry_policy(settings: Settings) -> RetryPolicy:
    """Bounded retry for reminder delivery; only transient failures are retried."""
    return RetryPolicy(
        max_attempts=settings.notification_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        retry_on=(TransientDeliveryError,),
    )


def create_reminder_workflow(
    settings: Settings,
    store: SubscriptionStore,
    sender: Optional[NotificationSender] = None,
) -> ReminderWorkflow:
    return ReminderWorkflow(
        store=store,
        sender=sender or get_notification_sender(settings),
        account_url=settings.account_url,
        support_url=settings.support_url,
        milestones=settings.reminder_milestones,
        retry_policy=notification_retry_policy(settings),
    )


def create_workflow_runtime(
    settings: Settings,
    session_factory: SessionFactory = get_session_context,
    sender: Optional[NotificationSender] = None,
) -> WorkflowRuntime:
    """Runtime with every workflow of the application registered."""
    runtime = WorkflowRuntime(
        WorkflowRunRepository(session_factory),
        lease_seconds=settings.scheduler_lease_seconds,
    )
    workflow = create_reminder_workflow(settings, SubscriptionRepository(session_factory), sender)
    runtime.register(workflow.name, workflow)

    logger.info(f"Workflow runtime ready: {', '.join(runtime.workflows)}")
    return runtime


def create_workflow_scheduler(settings: Settings, runtime: WorkflowRuntime) -> WorkflowScheduler:
    return WorkflowScheduler(
        runtime,
        poll_interval_seconds=settings.scheduler_poll_interval_seconds,
        batch_size=settings.scheduler_batch_size,
        max_concurrent_runs=settings.scheduler_max_concurrent_runs,
    )
