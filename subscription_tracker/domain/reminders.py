"""
Renewal Reminder Milestones

Pure date arithmetic deciding which reminder fires next for a subscription.
No I/O: callers pass the current time so results are reproducible.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence, Union

from subscription_tracker.domain.subscription import ensure_utc
from subscription_tracker.infrastructure.exceptions import DataIntegrityError


# Days before renewal, furthest from renewal first
REMINDER_MILESTONES: tuple[int, ...] = (7, 5, 2, 1)

SECONDS_PER_DAY = 86400

Timestamp = Union[datetime, str]


@dataclass(frozen=True)
class Milestone:
    """A reminder point `days` before renewal, due at `fire_at` (UTC)."""
    days: int
    fire_at: datetime

    @property
    def label(self) -> str:
        return f"{self.days} days before reminder"

    def is_due(self, now: datetime) -> bool:
        return self.fire_at <= ensure_utc(now)


def resolve_timestamp(value: Timestamp, field: str) -> datetime:
    """
    Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Raises:
        DataIntegrityError: value is missing or not a resolvable point in time
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.strip()))
        except ValueError as e:
            raise DataIntegrityError(
                f"Cannot interpret {field} '{value}' as a timestamp",
                field=field,
                original_error=e,
            )
    raise DataIntegrityError(f"{field} is missing or not a timestamp", field=field)


def days_until(now: Timestamp, renewal_date: Timestamp) -> int:
    """Whole days until renewal, rounded up (negative once renewal has passed)."""
    delta = resolve_timestamp(renewal_date, "renewal_date") - resolve_timestamp(now, "now")
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def milestone_for(days: int, renewal_date: Timestamp) -> Milestone:
    """Build the milestone `days` before the given renewal date."""
    renewal = resolve_timestamp(renewal_date, "renewal_date")
    return Milestone(days=days, fire_at=renewal - timedelta(days=days))


def next_milestone(
    now: Timestamp,
    renewal_date: Timestamp,
    fired: Iterable[int] = (),
    milestones: Sequence[int] = REMINDER_MILESTONES,
) -> Optional[Milestone]:
    """
    Next reminder milestone to wait for, or None when nothing remains.

    Milestones are walked furthest-first and never revisited: once a milestone
    has fired, only milestones closer to renewal are eligible. Among eligible
    milestones the furthest one still ahead of `now` wins. When every eligible
    milestone is already behind `now` (e.g. after downtime) the nearest past one
    is returned so the caller can fire it immediately instead of dropping it.

    Args:
        now: Current time
        renewal_date: Subscription renewal date
        fired: Day counts already fired (or recorded as missed) in this run
        milestones: Day counts to consider

    Returns:
        Milestone or None when renewal has passed or all milestones fired

    Raises:
        DataIntegrityError: now or renewal_date is not a resolvable timestamp
    """
    current = resolve_timestamp(now, "now")
    renewal = resolve_timestamp(renewal_date, "renewal_date")

    if renewal <= current:
        return None

    fired_days = set(fired)
    closest_fired = min(fired_days, default=None)

    candidates = [
        Milestone(days=days, fire_at=renewal - timedelta(days=days))
        for days in sorted(set(milestones), reverse=True)
        if days not in fired_days and (closest_fired is None or days < closest_fired)
    ]
    if not candidates:
        return None

    for milestone in candidates:
        if milestone.fire_at >= current:
            return milestone

    # All eligible milestones are in the past: catch up on the nearest one
    return candidates[-1]
