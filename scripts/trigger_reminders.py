#!/usr/bin/env python3
"""
Reminder Backfill Script

Starts renewal reminder runs for every active subscription with a future
renewal date, and expires subscriptions whose renewal date has passed.
Run after a deploy or as a cron job: python -m scripts.trigger_reminders

Subscriptions that already have an active run are left alone.

Usage:
    python -m scripts.trigger_reminders               # Up to 1000 subscriptions
    python -m scripts.trigger_reminders --limit 200   # Up to 200 subscriptions
    python -m scripts.trigger_reminders --dry-run     # Only list what would start
"""

import asyncio
import argparse
import logging
from datetime import datetime
from typing import Optional

from subscription_tracker.config.settings import settings
from subscription_tracker.infrastructure.db.database import (
    SessionFactory,
    close_db,
    get_session_context,
    init_db,
)
from subscription_tracker.infrastructure.db.models import utc_now
from subscription_tracker.infrastructure.db.repositories import SubscriptionRepository
from subscription_tracker.services.reminder_workflow import REMINDER_WORKFLOW
from subscription_tracker.services.workflow_setup import create_workflow_runtime

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def trigger_reminders(
    limit: int = 1000,
    dry_run: bool = False,
    session_factory: Optional[SessionFactory] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Start reminder runs in bulk.

    Args:
        limit: Maximum subscriptions to process
        dry_run: Only list eligible subscriptions
        session_factory: Session source; the configured database is opened
            and closed around the backfill when omitted
        now: Reference time for expiry and eligibility

    Returns:
        Dict with backfill statistics
    """
    now = now or utc_now()
    stats = {
        "started_at": now.isoformat(),
        "expired": 0,
        "eligible": 0,
        "started": 0,
        "already_active": 0,
    }

    owns_db = session_factory is None
    if owns_db:
        await init_db(create_tables=settings.is_sqlite)
        session_factory = get_session_context
    try:
        repo = SubscriptionRepository(session_factory)

        if not dry_run:
            stats["expired"] = await repo.expire_lapsed(now)

        subscriptions = await repo.list_remindable(now, limit=limit)
        stats["eligible"] = len(subscriptions)
        logger.info(f"Found {len(subscriptions)} subscriptions with upcoming renewals")

        if dry_run:
            for subscription in subscriptions:
                logger.info(
                    f"[dry-run] {subscription.id} {subscription.name} "
                    f"renews {subscription.renewal_date.isoformat()}"
                )
            return stats

        runtime = create_workflow_runtime(settings, session_factory)
        for subscription in subscriptions:
            run, created = await runtime.start(
                REMINDER_WORKFLOW,
                subscription.id,
                {"subscription_id": subscription.id},
            )
            if created:
                stats["started"] += 1
            else:
                stats["already_active"] += 1
    finally:
        if owns_db:
            await close_db()

    logger.info(f"Backfill complete: {stats}")
    return stats


def main():
    parser = argparse.ArgumentParser(description="Start renewal reminder runs in bulk")
    parser.add_argument("--limit", type=int, default=1000, help="Maximum subscriptions to process")
    parser.add_argument("--dry-run", action="store_true", help="List eligible subscriptions only")
    args = parser.parse_args()

    asyncio.run(trigger_reminders(limit=args.limit, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
