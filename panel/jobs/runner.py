"""Generation worker - runs one weekly or daily plan generation per task."""
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from meal_plan_service import merge_daily_meals
from plan_generator import PlanGenerator
from plan_store import PlanRecord, PlanStore, get_plan_store
from preferences import fingerprint, normalize_preferences
from tools.logging_utils import get_logger

from .huey_config import huey

logger = get_logger(__name__)


def get_plan_generator() -> PlanGenerator:
    """Generator used by queued tasks."""
    return PlanGenerator()


def run_generation(plan_id: int, preferences: Dict[str, Any], daily_only: bool, version: int,
                   store: Optional[PlanStore] = None,
                   generator: Optional[PlanGenerator] = None,
                   clock: Callable[[], datetime] = datetime.now) -> Optional[PlanRecord]:
    """
    Execute one generation and commit its outcome to the plan record.

    The record is re-read first since the task may have been queued from a
    stale snapshot. `version` identifies the dispatch: if the record was
    re-stamped since, this task is superseded and does nothing.

    A daily task on a record without content generates the full week.

    Raises:
        Whatever the generator raised, after the record was set to `error`.
        Failures are not retried here; the next ensure_plan cycle redispatches.
    """
    store = store or get_plan_store()
    plan = store.get_plan(plan_id)
    if plan is None:
        logger.warning(f"⚠️ Plan {plan_id} no longer exists; dropping generation task")
        return None

    if not store.mark_running(plan_id, version, clock()):
        logger.info(
            f"⏭️ Plan {plan_id} task v{version} superseded "
            f"(record v{plan.version}, status {plan.status})"
        )
        return None

    generator = generator or get_plan_generator()
    prefs = normalize_preferences(preferences)
    daily = daily_only and plan.has_content

    try:
        if daily:
            today = clock().date()
            meals = generator.generate_daily(prefs, today=today)
            content = merge_daily_meals(plan.content, meals, today)
            committed = store.commit_daily(plan_id, version, content, clock())
        else:
            content = generator.generate_weekly(prefs, today=clock().date())
            committed = store.commit_weekly(
                plan_id, version, content, prefs.to_dict(), fingerprint(prefs),
                date.fromisoformat(content['week_start']), clock()
            )
    except Exception as e:
        logger.error(
            f"❌ Meal plan generation failed: plan_id={plan_id} daily_only={daily_only} "
            f"kind={getattr(e, 'kind', type(e).__name__)} error={e}"
        )
        store.mark_error(plan_id, version, str(e), clock())
        raise

    if not committed:
        logger.warning(f"⚠️ Plan {plan_id} was re-stamped during generation; v{version} result discarded")
        return store.get_plan(plan_id)

    logger.info(f"✅ Plan {plan_id} {'daily' if daily else 'weekly'} generation committed (v{version})")
    return store.get_plan(plan_id)


@huey.task(retries=0)
def generate_meal_plan(plan_id: int, preferences: Dict[str, Any], daily_only: bool, version: int):
    """
    Queued entry point. Errors propagate to huey so the consumer logs them;
    there is no automatic retry.
    """
    run_generation(plan_id, preferences, daily_only, version)
