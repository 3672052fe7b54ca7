"""
Subscription Renewal Reminder Workflow

Drives one subscription's reminder lifecycle as a durable state machine:

    START -> EVALUATE -> SLEEPING(fire_at) -> NOTIFY -> EVALUATE -> ... -> TERMINATED

Every read, clock reading and delivery happens inside a named durable step,
so a replay after a crash or a resumed sleep sees the same values and never
re-sends a reminder that was already delivered. The only suspension points
are the durable sleep and the delivery step.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from subscription_tracker.domain.notifications import RenderedMessage, render_reminder
from subscription_tracker.domain.reminders import (
    REMINDER_MILESTONES,
    Milestone,
    next_milestone,
)
from subscription_tracker.domain.subscription import Subscription, SubscriptionOwner
from subscription_tracker.infrastructure.exceptions import (
    DataIntegrityError,
    StepFailedError,
    TransientDeliveryError,
)
from subscription_tracker.infrastructure.workflow.retry import RetryPolicy


logger = logging.getLogger(__name__)

REMINDER_WORKFLOW = "subscription-reminder"


# =============================================================================
# Collaborator Interfaces
# =============================================================================

class SubscriptionStore(Protocol):
    """Read access to subscription records."""

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]: ...

    async def get_owner_contact(self, user_id: str) -> Optional[SubscriptionOwner]: ...


class NotificationSender(Protocol):
    """Delivers a rendered message; raises Transient/PermanentDeliveryError."""

    async def send(
        self,
        destination: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
    ) -> None: ...


class WorkflowContext(Protocol):
    """Durable execution primitives provided by the workflow runtime."""

    run_id: str

    def now(self) -> datetime: ...

    async def sleep_until(self, name: str, wake_at: datetime) -> None: ...

    async def run_step(
        self,
        name: str,
        fn: Callable[[], Any],
        retry: Optional[RetryPolicy] = None,
    ) -> Any: ...

    async def is_cancelled(self) -> bool: ...


# =============================================================================
# States and Outcome
# =============================================================================

class RunState(str, Enum):
    START = "start"
    EVALUATE = "evaluate"
    SLEEPING = "sleeping"
    NOTIFY = "notify"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    SKIPPED = "skipped"        # missing or inactive at start
    COMPLETE = "complete"      # no milestones remain
    CANCELLED = "cancelled"    # no longer active when a sleep ended
    ABORTED = "aborted"        # run cancelled through the runtime
    FAILED = "failed"          # data integrity error


class ReminderOutcome(BaseModel):
    """Result persisted with the run once it terminates."""
    subscription_id: str
    reason: Optional[TerminationReason] = None
    sent: List[int] = Field(default_factory=list)
    missed: List[int] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def fired(self) -> List[int]:
        return self.sent + self.missed


# =============================================================================
# Engine
# =============================================================================

class ReminderWorkflow:
    """
    Reminder workflow engine for a single subscription.

    Configuration is injected at construction; nothing is read from global
    settings while a run executes.
    """

    name = REMINDER_WORKFLOW

    def __init__(
        self,
        store: SubscriptionStore,
        sender: NotificationSender,
        account_url: str,
        support_url: Optional[str] = None,
        milestones: Sequence[int] = REMINDER_MILESTONES,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.sender = sender
        self.account_url = account_url
        self.support_url = support_url
        self.milestones = tuple(milestones)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            retry_on=(TransientDeliveryError,),
        )

    async def __call__(self, ctx: WorkflowContext, payload: dict) -> dict:
        """Runtime entry point: payload carries the subscription id."""
        outcome = await self.run(ctx, str(payload["subscription_id"]))
        return outcome.model_dump(mode="json")

    async def run(self, ctx: WorkflowContext, subscription_id: str) -> ReminderOutcome:
        """
        Drive the reminder lifecycle until a terminal state.

        Raises:
            StepFailedError: the subscription could not be read (fatal to the run)
        """
        outcome = ReminderOutcome(subscription_id=subscription_id)
        state = RunState.START

        # --- START ---
        subscription = await self._load(ctx, "load-subscription", subscription_id)
        if subscription is None or not subscription.is_active:
            logger.info(
                f"[{ctx.run_id}] Subscription {subscription_id} missing or inactive, skipping"
            )
            return self._terminate(ctx, outcome, state, TerminationReason.SKIPPED)

        evaluation = 0
        while True:
            # --- EVALUATE ---
            state = self._transition(ctx, state, RunState.EVALUATE)
            if await ctx.is_cancelled():
                return self._terminate(ctx, outcome, state, TerminationReason.ABORTED)

            now = await ctx.run_step(
                f"evaluate-{evaluation}", lambda: ctx.now().isoformat()
            )
            evaluation += 1

            try:
                milestone = next_milestone(
                    now, subscription.renewal_date, outcome.fired, self.milestones
                )
            except DataIntegrityError as e:
                return self._fail(ctx, outcome, state, e)

            if milestone is None:
                return self._terminate(ctx, outcome, state, TerminationReason.COMPLETE)

            # --- SLEEPING ---
            state = self._transition(ctx, state, RunState.SLEEPING)
            logger.info(
                f"[{ctx.run_id}] Next reminder for {subscription_id}: "
                f"{milestone.label} at {milestone.fire_at.isoformat()}"
            )
            await ctx.sleep_until(f"sleep-{milestone.days}-days", milestone.fire_at)

            # --- NOTIFY ---
            state = self._transition(ctx, state, RunState.NOTIFY)
            current = await self._load(ctx, f"reload-{milestone.days}-days", subscription_id)
            if current is None or not current.is_active:
                logger.info(
                    f"[{ctx.run_id}] Subscription {subscription_id} no longer active, "
                    f"stopping before {milestone.label}"
                )
                return self._terminate(ctx, outcome, state, TerminationReason.CANCELLED)
            subscription = current

            try:
                message = render_reminder(
                    subscription, milestone, self.account_url, self.support_url
                )
            except DataIntegrityError as e:
                return self._fail(ctx, outcome, state, e)

            if await self._deliver(ctx, subscription, milestone, message):
                outcome.sent.append(milestone.days)
            else:
                outcome.missed.append(milestone.days)

    # =========================================================================
    # Steps
    # =========================================================================

    async def _load(
        self,
        ctx: WorkflowContext,
        step: str,
        subscription_id: str,
    ) -> Optional[Subscription]:
        """Durably read the subscription with its owner's contact identity."""

        async def read() -> Optional[dict]:
            subscription = await self.store.get_by_id(subscription_id)
            if subscription is None:
                return None
            if subscription.owner is None:
                subscription.owner = await self.store.get_owner_contact(subscription.user_id)
            return subscription.model_dump(mode="json")

        snapshot = await ctx.run_step(step, read)
        if snapshot is None:
            return None
        return Subscription.model_validate(snapshot)

    async def _deliver(
        self,
        ctx: WorkflowContext,
        subscription: Subscription,
        milestone: Milestone,
        message: RenderedMessage,
    ) -> bool:
        """Send one reminder as a retried durable step; False when it was missed."""
        destination = subscription.owner.email

        async def send() -> dict:
            await self.sender.send(destination, message.subject, message.body, message.html)
            return {"destination": destination, "days": milestone.days}

        try:
            await ctx.run_step(
                f"send-{milestone.days}-days-reminder", send, retry=self.retry_policy
            )
        except StepFailedError as e:
            logger.warning(
                f"[{ctx.run_id}] {milestone.label} for {subscription.id} missed "
                f"after {e.attempts} attempt(s): {e.message}"
            )
            return False

        logger.info(f"[{ctx.run_id}] Sent {milestone.label} for {subscription.id} to {destination}")
        return True

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(self, ctx: WorkflowContext, current: RunState, target: RunState) -> RunState:
        logger.debug(f"[{ctx.run_id}] {current.value} -> {target.value}")
        return target

    def _terminate(
        self,
        ctx: WorkflowContext,
        outcome: ReminderOutcome,
        state: RunState,
        reason: TerminationReason,
    ) -> ReminderOutcome:
        self._transition(ctx, state, RunState.TERMINATED)
        outcome.reason = reason
        logger.info(
            f"[{ctx.run_id}] Reminder run for {outcome.subscription_id} terminated "
            f"({reason.value}); sent={outcome.sent} missed={outcome.missed}"
        )
        return outcome

    def _fail(
        self,
        ctx: WorkflowContext,
        outcome: ReminderOutcome,
        state: RunState,
        error: DataIntegrityError,
    ) -> ReminderOutcome:
        logger.error(
            f"[{ctx.run_id}] Data integrity error for subscription "
            f"{outcome.subscription_id}: {error.message}"
        )
        outcome.error = error.message
        return self._terminate(ctx, outcome, state, TerminationReason.FAILED)
