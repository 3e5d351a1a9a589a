#!/usr/bin/env python3
"""
Refresh Meal Plans
==================

Walks every stored plan and runs it through the refresh decision, so weekly
and daily content stays fresh even for users who have not opened the app.
Meant for cron; generation itself happens in the huey consumer.

USAGE:
    python refresh_meal_plans.py                  # Refresh what is due
    python refresh_meal_plans.py --force-weekly   # Regenerate every week
    python refresh_meal_plans.py --batch-size 100
"""

import argparse
import sys
from typing import List, Optional

from config import get_refresh_batch_size
from meal_plan_service import MealPlanService
from tools.logging_utils import get_logger, log_with_emoji

logger = get_logger(__name__)


def refresh_all(service: MealPlanService, force_weekly: bool = False,
                batch_size: Optional[int] = None) -> dict:
    """
    Run ensure_plan over every stored plan.

    Each plan is refreshed with the preferences it was last asked for.

    Returns:
        {'weekly_regenerated': int, 'daily_refreshed': int, 'checked': int}
    """
    batch_size = batch_size or get_refresh_batch_size()
    counts = {'weekly_regenerated': 0, 'daily_refreshed': 0, 'checked': 0}

    for plan in service.store.iter_plans(batch_size=batch_size):
        prefs = plan.requested_preferences or plan.applied_preferences or {}
        result = service.ensure_plan(plan, prefs, force_weekly)
        counts['checked'] += 1

        if result.weekly_regenerated:
            counts['weekly_regenerated'] += 1
            print(f"Weekly plan regenerated for ID {plan.id}")

        if result.daily_refreshed:
            counts['daily_refreshed'] += 1

    log_with_emoji(logger, f"📊 Refresh pass complete: {counts}")
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Refresh weekly and daily meal plans according to their schedules.",
    )
    parser.add_argument(
        "--force-weekly",
        action="store_true",
        help="Regenerate weekly plans even if not expired"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Plans loaded per chunk (default: planner.refresh_batch_size)"
    )
    args = parser.parse_args(argv)

    service = MealPlanService()
    counts = refresh_all(service, force_weekly=args.force_weekly, batch_size=args.batch_size)

    print(
        f"Meal plans refreshed. Weekly regenerated: {counts['weekly_regenerated']}, "
        f"daily refreshed: {counts['daily_refreshed']}."
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
