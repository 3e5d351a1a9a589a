"""Plan record persistence with SQLite.

One row per user key (NULL is the anonymous slot). Every state transition is
a single conditional UPDATE keyed on the row's `version`, which is bumped each
time a new generation is stamped pending. A task carries the version it was
dispatched with, so a superseded task can never overwrite a newer outcome.
"""
import json
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from config import PLAN_DB_PATH, WEEK_LENGTH_DAYS
from tools.logging_utils import get_logger

logger = get_logger(__name__)

STATUS_PENDING = 'pending'
STATUS_RUNNING = 'running'
STATUS_SUCCESS = 'success'
STATUS_ERROR = 'error'

IN_FLIGHT_STATUSES = (STATUS_PENDING, STATUS_RUNNING)

# Columns added after the first schema; applied with ALTER TABLE on startup
_MIGRATIONS = [
    ('version', 'INTEGER NOT NULL DEFAULT 0'),
    ('queued_at', 'TEXT'),
]


class PlanStoreError(Exception):
    """Raised when the plan store is used with an unknown plan."""


def _fmt_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _clean_user_key(user_key: Optional[str]) -> Optional[str]:
    """Blank keys share the anonymous slot, like NULL does in the unique index."""
    if user_key is None:
        return None
    return user_key.strip() or None


def _load_json(value: Optional[str]) -> Any:
    if not value:
        return None
    return json.loads(value)


def expiry_for(week_start: date) -> datetime:
    """A weekly plan expires at midnight seven days after its Monday."""
    return datetime.combine(week_start + timedelta(days=WEEK_LENGTH_DAYS), time.min)


@dataclass
class PlanRecord:
    """One user's weekly plan plus its refresh/job bookkeeping."""
    id: int
    user_key: Optional[str]
    status: str
    content: Dict[str, Any] = field(default_factory=dict)
    week_start: Optional[date] = None
    applied_preferences: Optional[Dict[str, Any]] = None
    requested_preferences: Optional[Dict[str, Any]] = None
    fingerprint: Optional[str] = None
    generated_at: Optional[datetime] = None
    daily_refreshed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    attempts: int = 0
    version: int = 0
    queued_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    @property
    def daily_date(self) -> Optional[str]:
        """Date string of the stored daily snapshot, if any."""
        daily = (self.content or {}).get('daily') or {}
        return daily.get('date')

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'PlanRecord':
        return cls(
            id=row['id'],
            user_key=row['user_key'],
            status=row['status'],
            content=_load_json(row['content']) or {},
            week_start=_parse_date(row['week_start_date']),
            applied_preferences=_load_json(row['applied_preferences']),
            requested_preferences=_load_json(row['requested_preferences']),
            fingerprint=row['fingerprint'],
            generated_at=_parse_dt(row['generated_at']),
            daily_refreshed_at=_parse_dt(row['daily_refreshed_at']),
            expires_at=_parse_dt(row['expires_at']),
            last_error=row['last_error'],
            last_started_at=_parse_dt(row['last_started_at']),
            last_finished_at=_parse_dt(row['last_finished_at']),
            attempts=row['attempts'] or 0,
            version=row['version'] or 0,
            queued_at=_parse_dt(row['queued_at']),
            created_at=_parse_dt(row['created_at']),
            updated_at=_parse_dt(row['updated_at']),
        )


class PlanStore:
    """SQLite-backed storage for plan records. One connection per operation."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path) if db_path else PLAN_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_db(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_db()
        try:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS meal_plans (
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
            ''')
            for column, ddl in _MIGRATIONS:
                try:
                    conn.execute(f'ALTER TABLE meal_plans ADD COLUMN {column} {ddl}')
                except sqlite3.OperationalError:
                    pass  # Column already exists
            # NULL user keys share one anonymous slot
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_meal_plans_user "
                "ON meal_plans (IFNULL(user_key, ''))"
            )
            conn.execute('CREATE INDEX IF NOT EXISTS idx_meal_plans_status ON meal_plans (status)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_meal_plans_fingerprint ON meal_plans (fingerprint)')
            conn.commit()
        finally:
            conn.close()

    def _fetch_one(self, query: str, params=()) -> Optional[PlanRecord]:
        conn = self._get_db()
        try:
            row = conn.execute(query, params).fetchone()
        finally:
            conn.close()
        return PlanRecord.from_row(row) if row else None

    def _update(self, query: str, params) -> bool:
        """Run one conditional UPDATE. True when a row matched."""
        conn = self._get_db()
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    # -----------------------
    # Reads
    # -----------------------
    def get_plan(self, plan_id: int) -> Optional[PlanRecord]:
        """Get plan by ID."""
        return self._fetch_one('SELECT * FROM meal_plans WHERE id = ?', (plan_id,))

    def find_by_user(self, user_key: Optional[str]) -> Optional[PlanRecord]:
        """Get the plan for a user key; None selects the anonymous slot."""
        user_key = _clean_user_key(user_key)
        return self._fetch_one('SELECT * FROM meal_plans WHERE user_key IS ?', (user_key,))

    def list_plans(self, limit: int = 50, offset: int = 0) -> List[PlanRecord]:
        """List plans in id order."""
        conn = self._get_db()
        try:
            rows = conn.execute(
                'SELECT * FROM meal_plans ORDER BY id LIMIT ? OFFSET ?',
                (limit, offset)
            ).fetchall()
        finally:
            conn.close()
        return [PlanRecord.from_row(row) for row in rows]

    def iter_plans(self, batch_size: int = 50) -> Iterator[PlanRecord]:
        """Walk every plan in id-ordered chunks (keyset pagination)."""
        last_id = 0
        while True:
            conn = self._get_db()
            try:
                rows = conn.execute(
                    'SELECT * FROM meal_plans WHERE id > ? ORDER BY id LIMIT ?',
                    (last_id, batch_size)
                ).fetchall()
            finally:
                conn.close()
            if not rows:
                return
            for row in rows:
                yield PlanRecord.from_row(row)
            last_id = rows[-1]['id']

    # -----------------------
    # Writes
    # -----------------------
    def get_or_create(self, user_key: Optional[str], fingerprint: str,
                      now: Optional[datetime] = None) -> PlanRecord:
        """
        Return the plan for user_key, creating an empty pending one if needed.

        Concurrent first requests converge on a single row through the unique
        index; the loser's INSERT is ignored.
        """
        user_key = _clean_user_key(user_key)
        now = now or datetime.now()
        conn = self._get_db()
        try:
            cursor = conn.execute(
                'INSERT OR IGNORE INTO meal_plans '
                '(user_key, content, fingerprint, status, attempts, version, created_at, updated_at) '
                'VALUES (?, ?, ?, ?, 0, 0, ?, ?)',
                (user_key, '{}', fingerprint, STATUS_PENDING, _fmt_dt(now), _fmt_dt(now))
            )
            conn.commit()
            if cursor.rowcount == 1:
                logger.info(f"🆕 Created meal plan for {user_key or 'anonymous'}")
        finally:
            conn.close()

        record = self.find_by_user(user_key)
        if record is None:
            raise PlanStoreError(f"Plan for {user_key!r} vanished after insert")
        return record

    def stamp_pending(self, plan_id: int, expected_version: int, fingerprint: str,
                      preferences: Dict[str, Any], now: datetime) -> bool:
        """
        Compare-and-swap the record into `pending` for a new generation.

        Succeeds only if the row still has expected_version; the version is
        bumped so older tasks become superseded.
        """
        return self._update(
            'UPDATE meal_plans SET status = ?, requested_preferences = ?, fingerprint = ?, '
            'last_error = NULL, last_started_at = NULL, last_finished_at = NULL, '
            'version = version + 1, queued_at = ?, updated_at = ? '
            'WHERE id = ? AND version = ?',
            (STATUS_PENDING, json.dumps(preferences), fingerprint,
             _fmt_dt(now), _fmt_dt(now), plan_id, expected_version)
        )

    def mark_running(self, plan_id: int, version: int, now: datetime) -> bool:
        """pending -> running for the dispatch identified by version; counts the attempt."""
        return self._update(
            'UPDATE meal_plans SET status = ?, last_started_at = ?, last_error = NULL, '
            'attempts = attempts + 1, updated_at = ? '
            'WHERE id = ? AND version = ? AND status = ?',
            (STATUS_RUNNING, _fmt_dt(now), _fmt_dt(now), plan_id, version, STATUS_PENDING)
        )

    def commit_weekly(self, plan_id: int, version: int, content: Dict[str, Any],
                      preferences: Dict[str, Any], fingerprint: str,
                      week_start: date, now: datetime) -> bool:
        """running -> success with a full replacement of the week's content."""
        return self._update(
            'UPDATE meal_plans SET content = ?, applied_preferences = ?, requested_preferences = ?, '
            'fingerprint = ?, week_start_date = ?, expires_at = ?, generated_at = ?, '
            'daily_refreshed_at = ?, status = ?, last_error = NULL, last_finished_at = ?, updated_at = ? '
            'WHERE id = ? AND version = ? AND status = ?',
            (json.dumps(content), json.dumps(preferences), json.dumps(preferences),
             fingerprint, week_start.isoformat(), _fmt_dt(expiry_for(week_start)),
             _fmt_dt(now), _fmt_dt(now), STATUS_SUCCESS, _fmt_dt(now), _fmt_dt(now),
             plan_id, version, STATUS_RUNNING)
        )

    def commit_daily(self, plan_id: int, version: int, content: Dict[str, Any],
                     now: datetime) -> bool:
        """running -> success after merging today's slots into the content."""
        return self._update(
            'UPDATE meal_plans SET content = ?, daily_refreshed_at = ?, status = ?, '
            'last_error = NULL, last_finished_at = ?, updated_at = ? '
            'WHERE id = ? AND version = ? AND status = ?',
            (json.dumps(content), _fmt_dt(now), STATUS_SUCCESS, _fmt_dt(now), _fmt_dt(now),
             plan_id, version, STATUS_RUNNING)
        )

    def mark_error(self, plan_id: int, version: int, message: str, now: datetime) -> bool:
        """Record a failed attempt for the dispatch identified by version."""
        return self._update(
            'UPDATE meal_plans SET status = ?, last_error = ?, last_finished_at = ?, updated_at = ? '
            'WHERE id = ? AND version = ?',
            (STATUS_ERROR, message, _fmt_dt(now), _fmt_dt(now), plan_id, version)
        )


_default_store: Optional[PlanStore] = None


def get_plan_store() -> PlanStore:
    """Process-wide store at config.PLAN_DB_PATH, created on first use."""
    global _default_store
    if _default_store is None:
        _default_store = PlanStore()
    return _default_store
