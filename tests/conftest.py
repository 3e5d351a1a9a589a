"""
Pytest Configuration and Fixtures
=================================

Provides shared fixtures for the test suite:
- Isolated data directory (config.yaml, SQLite files, logs) per session
- Fresh PlanStore per test
- Recording dispatcher (counts enqueued tasks, never runs them)
- Fake plan generator (no network)
- Frozen clock

SAFETY: Nothing here talks to a real LLM. OPENROUTER_API_KEY is removed from
the environment before any project module is imported.
"""

import os
import tempfile
import threading
from datetime import date, datetime, timedelta

# Must happen before config.py is imported anywhere
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="meal_planner_test_")
os.environ["MEAL_PLANNER_DATA_DIR"] = _TEST_DATA_DIR
os.environ.pop("OPENROUTER_API_KEY", None)

import pytest

import plan_store
from meal_plan_service import Dispatcher, MealPlanService
from plan_generator import day_key_for, map_days, map_meals_for_day, week_start_for
from plan_store import PlanStore
from preferences import fingerprint, normalize_preferences


# Wednesday morning; the week runs Mon 2026-10-12 .. Sun 2026-10-18
FROZEN_NOW = datetime(2026, 10, 14, 10, 0, 0)

VEGAN_PREFS = {"diet": "Vegan", "goal": "Eat Healthier", "allergens": ["peanut"]}


# =============================================================================
# Test doubles
# =============================================================================

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher(Dispatcher):
    """Dispatcher that records tasks instead of queueing them."""

    def __init__(self):
        self.tasks = []
        self._lock = threading.Lock()

    def enqueue(self, task):
        with self._lock:
            self.tasks.append(task)

    @property
    def count(self) -> int:
        return len(self.tasks)


def raw_day(label: str) -> dict:
    return {
        "day": label,
        "meals": {
            "breakfast": {"name": f"{label} Oats", "category": "Breakfast", "area": "British", "thumb": None},
            "lunch": {"name": f"{label} Lentil Soup", "category": "Soup", "area": "Turkish"},
            "dinner": {"name": f"{label} Tofu Stir Fry", "category": "Vegan", "area": "Chinese"},
        },
    }


class FakeGenerator:
    """In-memory stand-in for PlanGenerator with the same method contract."""

    def __init__(self, fail_with: Exception = None):
        self.fail_with = fail_with
        self.weekly_calls = []
        self.daily_calls = []

    def generate_weekly(self, preferences, today: date = None):
        self.weekly_calls.append((normalize_preferences(preferences), today))
        if self.fail_with:
            raise self.fail_with
        today = today or date.today()
        week_start = week_start_for(today)
        labels = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
        days = map_days([raw_day(label) for label in labels], week_start)
        return {
            "week_start": week_start.isoformat(),
            "week_end": (week_start + timedelta(days=6)).isoformat(),
            "days": days,
            "daily": dict(days[day_key_for(today)]),
        }

    def generate_daily(self, preferences, today: date = None):
        self.daily_calls.append((normalize_preferences(preferences), today))
        if self.fail_with:
            raise self.fail_with
        today = today or date.today()
        return map_meals_for_day(
            {"breakfast": {"name": "Fresh Smoothie"}, "lunch": None, "dinner": {"name": "Fresh Curry"}},
            today.isoformat(),
            day_key_for(today),
        )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store(tmp_path, monkeypatch):
    """Fresh plan database, also installed as the process-wide default store."""
    s = PlanStore(tmp_path / "meal_plans.db")
    monkeypatch.setattr(plan_store, "_default_store", s)
    return s


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def service(store, dispatcher, clock):
    return MealPlanService(store=store, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def seed_plan(store, generator):
    """
    Factory: store a successfully generated plan as if a worker committed it
    at `committed_at` for `prefs`.
    """
    def _seed(prefs=None, committed_at=FROZEN_NOW, user_key=None):
        prefs = normalize_preferences(prefs or VEGAN_PREFS)
        fp = fingerprint(prefs)
        record = store.get_or_create(user_key, fp, committed_at)
        assert store.stamp_pending(record.id, record.version, fp, prefs.to_dict(), committed_at)
        version = record.version + 1
        assert store.mark_running(record.id, version, committed_at)
        content = generator.generate_weekly(prefs, today=committed_at.date())
        assert store.commit_weekly(
            record.id, version, content, prefs.to_dict(), fp,
            date.fromisoformat(content["week_start"]), committed_at
        )
        return store.get_plan(record.id)

    return _seed


# =============================================================================
# Test Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "readonly: marks test as pure logic (no database writes)"
    )
    config.addinivalue_line(
        "markers", "slow: marks test as slow (threads, timing)"
    )
