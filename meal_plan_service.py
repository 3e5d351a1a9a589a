"""
Meal Plan Refresh Service
=========================

Decides, per request, whether a user's cached weekly plan is still good:

    nothing to do      -> return the record as is
    today is stale     -> dispatch a daily refresh (today's three slots only)
    week is stale      -> dispatch a full weekly regeneration

A week is stale when it has expired, when the preferences that produced it
changed, when it has no content yet, or when the caller forces it. Work is
handed to a Dispatcher and never awaited; the caller gets the current record
back immediately and re-reads it on its next request.

The pending stamp that precedes every dispatch is a compare-and-swap on the
record's version, so concurrent callers holding the same snapshot dispatch at
most one task between them.
"""

import copy
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from config import get_daily_refresh_hours, get_stale_job_minutes
from plan_generator import day_key_for, week_start_for
from plan_store import (
    PlanRecord,
    PlanStore,
    STATUS_ERROR,
    STATUS_PENDING,
    STATUS_RUNNING,
    get_plan_store,
)
from preferences import PreferenceSet, fingerprint, normalize_preferences
from tools.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationTask:
    """One unit of background work for a plan record."""
    plan_id: int
    preferences: Dict[str, Any]
    daily_only: bool
    version: int

    @property
    def kind(self) -> str:
        return 'daily' if self.daily_only else 'weekly'


class Dispatcher:
    """Fire-and-forget task queue seen by the service. Only enqueue is needed."""

    def enqueue(self, task: GenerationTask) -> None:
        raise NotImplementedError


@dataclass
class EnsureResult:
    record: PlanRecord
    weekly_regenerated: bool = False
    daily_refreshed: bool = False


def merge_daily_meals(content: Dict[str, Any], meals: Dict[str, Any], today: date) -> Dict[str, Any]:
    """
    Put today's freshly generated slots into an existing weekly content.

    Only today's day entry and the `daily` snapshot are replaced. Existing
    week boundaries are kept; they are filled from today's week only when
    absent.
    """
    data = copy.deepcopy(content or {})
    entry = {'date': today.isoformat(), 'meals': meals}

    days = data.get('days')
    if not isinstance(days, dict):
        days = {}
    days[day_key_for(today)] = dict(entry)
    data['days'] = days
    data['daily'] = dict(entry)

    week_start = week_start_for(today)
    if not data.get('week_start'):
        data['week_start'] = week_start.isoformat()
    if not data.get('week_end'):
        data['week_end'] = (week_start + timedelta(days=6)).isoformat()
    return data


class MealPlanService:
    """Refresh decision engine for stored weekly plans."""

    def __init__(self, store: Optional[PlanStore] = None,
                 dispatcher: Optional[Dispatcher] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store or get_plan_store()
        if dispatcher is None:
            from panel.jobs.dispatch import HueyDispatcher
            dispatcher = HueyDispatcher()
        self.dispatcher = dispatcher
        self.clock = clock

    def ensure_plan(self, existing: Optional[PlanRecord],
                    preferences: Optional[Mapping[str, Any]],
                    force_weekly: bool = False,
                    user_key: Optional[str] = None) -> EnsureResult:
        """
        Make sure a weekly plan exists and schedule whatever refresh it needs.

        Args:
            existing: The caller's current record, or None for a first request
            preferences: Raw or normalized preferences
            force_weekly: Regenerate the whole week regardless of freshness
            user_key: Owner of a newly created record (None = anonymous)

        Returns:
            EnsureResult with the record and the intent flags. After a weekly
            dispatch both flags are True even though content only lands when
            the worker commits.
        """
        now = self.clock()
        prefs = normalize_preferences(preferences)
        new_fingerprint = fingerprint(prefs)

        plan = existing
        if plan is None:
            if user_key is None and isinstance(preferences, Mapping):
                user_key = preferences.get('user_email')
            plan = self.store.get_or_create(user_key, new_fingerprint, now)

        if not force_weekly and self.has_outstanding_job(plan, now) and plan.fingerprint == new_fingerprint:
            logger.debug(f"Plan {plan.id} already has a {plan.status} generation for these preferences")
            return EnsureResult(plan)

        weekly_expired = self.weekly_expired(plan, now)
        preferences_changed = self.preferences_changed(plan, new_fingerprint)

        if force_weekly or weekly_expired or preferences_changed or not plan.has_content:
            logger.info(
                f"📅 Weekly regeneration for plan {plan.id}: force={force_weekly} "
                f"expired={weekly_expired} prefs_changed={preferences_changed} "
                f"empty={not plan.has_content}"
            )
            record = self._dispatch(plan, prefs, new_fingerprint, daily_only=False, now=now)
            if record is None:
                return EnsureResult(self._reload(plan))
            return EnsureResult(record, weekly_regenerated=True, daily_refreshed=True)

        if self.should_refresh_daily(plan, now):
            logger.info(f"🌅 Daily refresh for plan {plan.id} (last: {plan.daily_refreshed_at})")
            record = self._dispatch(plan, prefs, new_fingerprint, daily_only=True, now=now)
            if record is None:
                return EnsureResult(self._reload(plan))
            return EnsureResult(record, daily_refreshed=True)

        return EnsureResult(plan)

    # -----------------------
    # Decision predicates
    # -----------------------
    def weekly_expired(self, plan: PlanRecord, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        if not plan.week_start or not plan.expires_at:
            return True
        return plan.expires_at <= now

    def preferences_changed(self, plan: PlanRecord, new_fingerprint: str) -> bool:
        """
        Compare against what produced the content.

        While a generation is outstanding or has failed, a request that
        differs from the stamped target is a change too, including a revert
        to the applied preferences.
        """
        if plan.status in (STATUS_PENDING, STATUS_RUNNING, STATUS_ERROR) and plan.fingerprint \
                and plan.fingerprint != new_fingerprint:
            return True
        if plan.applied_preferences:
            applied = fingerprint(plan.applied_preferences)
        else:
            applied = plan.fingerprint
        return applied != new_fingerprint

    def should_refresh_daily(self, plan: PlanRecord, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        if not plan.daily_refreshed_at:
            return True
        if plan.daily_date != now.date().isoformat():
            return True
        return now - plan.daily_refreshed_at > timedelta(hours=get_daily_refresh_hours())

    def has_outstanding_job(self, plan: PlanRecord, now: Optional[datetime] = None) -> bool:
        """
        True while a dispatched generation is queued or running.

        A freshly created record is `pending` without ever having been
        stamped, so it has no outstanding job. Stamps older than
        planner.stale_job_minutes are ignored (consumer died mid-task).
        """
        now = now or self.clock()
        if plan.status == STATUS_PENDING:
            marker = plan.queued_at
        elif plan.status == STATUS_RUNNING:
            marker = plan.last_started_at or plan.queued_at
        else:
            return False
        if marker is None:
            return False
        return now - marker < timedelta(minutes=get_stale_job_minutes())

    # -----------------------
    # Dispatch
    # -----------------------
    def _reload(self, plan: PlanRecord) -> PlanRecord:
        return self.store.get_plan(plan.id) or plan

    def _dispatch(self, plan: PlanRecord, prefs: PreferenceSet, new_fingerprint: str,
                  daily_only: bool, now: datetime) -> Optional[PlanRecord]:
        """
        Stamp the record pending and enqueue the task.

        Returns the stamped record, or None when another caller stamped the
        record first (nothing is enqueued in that case).
        """
        stamped = self.store.stamp_pending(plan.id, plan.version, new_fingerprint, prefs.to_dict(), now)
        if not stamped:
            logger.debug(f"Plan {plan.id} v{plan.version} was stamped by another caller; not dispatching")
            return None

        task = GenerationTask(
            plan_id=plan.id,
            preferences=prefs.to_dict(),
            daily_only=daily_only,
            version=plan.version + 1,
        )
        try:
            self.dispatcher.enqueue(task)
        except Exception as e:
            logger.exception(f"❌ Failed to enqueue {task.kind} generation for plan {plan.id}: {e}")
            self.store.mark_error(plan.id, task.version, f"Failed to enqueue generation: {e}", self.clock())
            return None

        logger.info(f"📤 Enqueued {task.kind} generation for plan {plan.id} (v{task.version})")
        return self._reload(plan)
