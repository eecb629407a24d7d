#!/usr/bin/env python3
"""
Scheduled Subscription Changes

Applies downgrades and end-of-period cancellations whose period has ended.
Run as a cron job or manually: python -m scripts.apply_scheduled_changes

Usage:
    python -m scripts.apply_scheduled_changes
    python -m scripts.apply_scheduled_changes --at 2026-11-01T00:00:00
"""

import asyncio
import argparse
import logging
from datetime import datetime

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings
from app.domain.proration import as_naive_utc, utcnow
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.ledger import LedgerStore
from app.infrastructure.services.subscription_lifecycle_service import (
    DueChangesSummary,
    SubscriptionLifecycleService,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def apply_scheduled_changes(at: datetime) -> DueChangesSummary:
    """
    Apply every scheduled change due at ``at``.

    Args:
        at: Evaluation time (naive UTC)

    Returns:
        Counts of downgraded and expired subscriptions
    """
    logger.info(f"Applying scheduled subscription changes due at {at.isoformat()}...")

    db_manager = DatabaseManager.from_settings(settings)
    try:
        service = SubscriptionLifecycleService(
            LedgerStore(db_manager.session_factory),
            settings,
        )
        summary = await service.apply_due_changes(at)
    finally:
        await db_manager.close()

    logger.info(f"Scheduled changes applied: {summary}")
    return summary


async def main():
    parser = argparse.ArgumentParser(description="Apply scheduled subscription changes")
    parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluation time in ISO format (default: now, UTC)"
    )
    args = parser.parse_args()

    at = as_naive_utc(args.at) if args.at else utcnow()
    summary = await apply_scheduled_changes(at)

    print("\n=== Scheduled Changes Applied ===")
    print(f"Downgraded: {summary.downgraded}")
    print(f"Expired: {summary.expired}")


if __name__ == "__main__":
    asyncio.run(main())
