"""
Tests for the SQLite plan store: creation, version-guarded transitions and
the expiry invariant.

Run: pytest tests/test_plan_store.py -v
"""

import sqlite3
from datetime import date, datetime, timedelta

import pytest

from plan_store import (
    PlanStore,
    STATUS_ERROR,
    STATUS_PENDING,
    STATUS_RUNNING,
    STATUS_SUCCESS,
    expiry_for,
)
from preferences import fingerprint, normalize_preferences

from conftest import FROZEN_NOW, VEGAN_PREFS


FP = fingerprint(VEGAN_PREFS)
PREFS = normalize_preferences(VEGAN_PREFS).to_dict()


@pytest.mark.readonly
class TestExpiry:
    """Tests for expiry_for()"""

    def test_midnight_after_sunday(self):
        assert expiry_for(date(2026, 10, 12)) == datetime(2026, 10, 19, 0, 0, 0)


class TestGetOrCreate:
    """Tests for PlanStore.get_or_create()"""

    def test_creates_empty_pending_record(self, store):
        record = store.get_or_create("alice@example.com", FP, FROZEN_NOW)
        assert record.id > 0
        assert record.user_key == "alice@example.com"
        assert record.status == STATUS_PENDING
        assert record.content == {}
        assert not record.has_content
        assert record.fingerprint == FP
        assert record.version == 0
        assert record.attempts == 0
        assert record.queued_at is None
        assert record.created_at == FROZEN_NOW

    def test_same_user_same_row(self, store):
        a = store.get_or_create("alice@example.com", FP, FROZEN_NOW)
        b = store.get_or_create("alice@example.com", "other", FROZEN_NOW)
        assert a.id == b.id
        assert b.fingerprint == FP

    def test_anonymous_slot_is_single(self, store):
        a = store.get_or_create(None, FP, FROZEN_NOW)
        b = store.get_or_create(None, FP, FROZEN_NOW)
        assert a.id == b.id
        assert store.find_by_user(None).id == a.id
        assert len(store.list_plans()) == 1

    def test_users_are_separate(self, store):
        a = store.get_or_create("alice@example.com", FP, FROZEN_NOW)
        b = store.get_or_create("bob@example.com", FP, FROZEN_NOW)
        anon = store.get_or_create(None, FP, FROZEN_NOW)
        assert len({a.id, b.id, anon.id}) == 3

    def test_find_by_user_missing(self, store):
        assert store.find_by_user("nobody@example.com") is None

    def test_blank_user_key_is_anonymous(self, store):
        anon = store.get_or_create(None, FP, FROZEN_NOW)
        assert store.get_or_create("", FP, FROZEN_NOW).id == anon.id
        assert store.get_or_create("   ", FP, FROZEN_NOW).id == anon.id
        assert store.find_by_user("").id == anon.id
        assert store.find_by_user(" ").id == anon.id
        assert len(store.list_plans()) == 1

    def test_blank_user_key_first(self, store):
        created = store.get_or_create("", FP, FROZEN_NOW)
        assert created.user_key is None
        assert store.get_or_create(None, FP, FROZEN_NOW).id == created.id

    def test_reopen_keeps_rows(self, store):
        record = store.get_or_create("alice@example.com", FP, FROZEN_NOW)
        reopened = PlanStore(store.db_path)
        assert reopened.get_plan(record.id).user_key == "alice@example.com"


class TestStampPending:
    """Tests for the compare-and-swap stamp"""

    def test_stamp_bumps_version(self, store):
        record = store.get_or_create(None, FP, FROZEN_NOW)
        assert store.stamp_pending(record.id, 0, FP, PREFS, FROZEN_NOW)
        stamped = store.get_plan(record.id)
        assert stamped.version == 1
        assert stamped.status == STATUS_PENDING
        assert stamped.queued_at == FROZEN_NOW
        assert stamped.requested_preferences == PREFS

    def test_stale_version_rejected(self, store):
        record = store.get_or_create(None, FP, FROZEN_NOW)
        assert store.stamp_pending(record.id, 0, FP, PREFS, FROZEN_NOW)
        assert not store.stamp_pending(record.id, 0, "other", PREFS, FROZEN_NOW)
        assert store.get_plan(record.id).fingerprint == FP

    def test_stamp_clears_previous_error(self, store):
        record = store.get_or_create(None, FP, FROZEN_NOW)
        store.stamp_pending(record.id, 0, FP, PREFS, FROZEN_NOW)
        store.mark_error(record.id, 1, "AI meal planner error: 500", FROZEN_NOW)
        assert store.get_plan(record.id).status == STATUS_ERROR

        assert store.stamp_pending(record.id, 1, FP, PREFS, FROZEN_NOW)
        restamped = store.get_plan(record.id)
        assert restamped.status == STATUS_PENDING
        assert restamped.last_error is None


class TestTransitions:
    """Tests for running/commit/error transitions keyed on version"""

    @pytest.fixture
    def stamped(self, store):
        record = store.get_or_create("alice@example.com", FP, FROZEN_NOW)
        store.stamp_pending(record.id, record.version, FP, PREFS, FROZEN_NOW)
        return store.get_plan(record.id)

    def test_mark_running_counts_attempt(self, store, stamped):
        assert store.mark_running(stamped.id, stamped.version, FROZEN_NOW)
        running = store.get_plan(stamped.id)
        assert running.status == STATUS_RUNNING
        assert running.attempts == 1
        assert running.last_started_at == FROZEN_NOW

    def test_mark_running_wrong_version(self, store, stamped):
        assert not store.mark_running(stamped.id, stamped.version + 1, FROZEN_NOW)
        assert store.get_plan(stamped.id).status == STATUS_PENDING

    def test_mark_running_twice(self, store, stamped):
        assert store.mark_running(stamped.id, stamped.version, FROZEN_NOW)
        assert not store.mark_running(stamped.id, stamped.version, FROZEN_NOW)
        assert store.get_plan(stamped.id).attempts == 1

    def test_attempts_accumulate_across_dispatches(self, store, stamped):
        store.mark_running(stamped.id, 1, FROZEN_NOW)
        store.mark_error(stamped.id, 1, "boom", FROZEN_NOW)
        store.stamp_pending(stamped.id, 1, FP, PREFS, FROZEN_NOW)
        store.mark_running(stamped.id, 2, FROZEN_NOW)
        assert store.get_plan(stamped.id).attempts == 2

    def test_commit_requires_running(self, store, stamped):
        content = {"week_start": "2026-10-12", "days": {}}
        assert not store.commit_weekly(
            stamped.id, stamped.version, content, PREFS, FP, date(2026, 10, 12), FROZEN_NOW
        )

    def test_commit_weekly_sets_expiry(self, store, stamped):
        store.mark_running(stamped.id, stamped.version, FROZEN_NOW)
        content = {"week_start": "2026-10-12", "week_end": "2026-10-18", "days": {"Mon": {}}}
        assert store.commit_weekly(
            stamped.id, stamped.version, content, PREFS, FP, date(2026, 10, 12), FROZEN_NOW
        )
        plan = store.get_plan(stamped.id)
        assert plan.status == STATUS_SUCCESS
        assert plan.content == content
        assert plan.week_start == date(2026, 10, 12)
        assert plan.expires_at == datetime.combine(plan.week_start + timedelta(days=7), datetime.min.time())
        assert plan.generated_at == FROZEN_NOW
        assert plan.daily_refreshed_at == FROZEN_NOW
        assert plan.applied_preferences == PREFS
        assert plan.last_finished_at == FROZEN_NOW

    def test_commit_daily_keeps_week(self, store, seed_plan):
        plan = seed_plan()
        store.stamp_pending(plan.id, plan.version, plan.fingerprint, PREFS, FROZEN_NOW)
        version = plan.version + 1
        store.mark_running(plan.id, version, FROZEN_NOW)

        later = FROZEN_NOW + timedelta(hours=2)
        content = dict(plan.content, daily={"date": "2026-10-14", "meals": {}})
        assert store.commit_daily(plan.id, version, content, later)

        updated = store.get_plan(plan.id)
        assert updated.daily_refreshed_at == later
        assert updated.generated_at == plan.generated_at
        assert updated.expires_at == plan.expires_at
        assert updated.status == STATUS_SUCCESS

    def test_superseded_commit_rejected(self, store, stamped):
        store.mark_running(stamped.id, 1, FROZEN_NOW)
        store.stamp_pending(stamped.id, 1, FP, PREFS, FROZEN_NOW)
        assert not store.commit_weekly(stamped.id, 1, {"days": {}}, PREFS, FP, date(2026, 10, 12), FROZEN_NOW)
        assert not store.mark_error(stamped.id, 1, "late failure", FROZEN_NOW)
        assert store.get_plan(stamped.id).status == STATUS_PENDING

    def test_mark_error_records_message(self, store, stamped):
        store.mark_running(stamped.id, 1, FROZEN_NOW)
        assert store.mark_error(stamped.id, 1, "AI meal planner returned invalid JSON.", FROZEN_NOW)
        plan = store.get_plan(stamped.id)
        assert plan.status == STATUS_ERROR
        assert plan.last_error == "AI meal planner returned invalid JSON."
        assert plan.last_finished_at == FROZEN_NOW


class TestListing:
    """Tests for list_plans() and iter_plans()"""

    def test_iter_plans_spans_batches(self, store):
        ids = [store.get_or_create(f"user{i}@example.com", FP, FROZEN_NOW).id for i in range(7)]
        assert [p.id for p in store.iter_plans(batch_size=3)] == ids

    def test_iter_plans_empty(self, store):
        assert list(store.iter_plans()) == []

    def test_list_plans_pagination(self, store):
        for i in range(5):
            store.get_or_create(f"user{i}@example.com", FP, FROZEN_NOW)
        assert len(store.list_plans(limit=2)) == 2
        assert [p.user_key for p in store.list_plans(limit=2, offset=3)] == [
            "user3@example.com", "user4@example.com"
        ]


class TestSchema:
    """Tests for schema creation and upgrades"""

    def test_adds_columns_to_older_table(self, tmp_path):
        db_path = tmp_path / "old.db"
        conn = sqlite3.connect(db_path)
        conn.execute("""
            CREATE TABLE meal_plans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_key TEXT,
                week_start_date TEXT,
                content TEXT NOT NULL DEFAULT '{}',
                applied_preferences TEXT,
                requested_preferences TEXT,
                fingerprint TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                generated_at TEXT,
                daily_refreshed_at TEXT,
                expires_at TEXT,
                last_error TEXT,
                last_started_at TEXT,
                last_finished_at TEXT,
                attempts INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
        conn.close()

        store = PlanStore(db_path)
        record = store.get_or_create(None, FP, FROZEN_NOW)
        assert record.version == 0
        assert record.queued_at is None
