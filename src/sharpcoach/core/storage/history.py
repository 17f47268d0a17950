"""Intervention usage history stores.

The adaptive intervention engine never touches usage state directly; it
goes through an :class:`InterventionHistoryStore`. The eligibility check
(cooldown and daily cap) and the usage increment happen in one atomic
``try_acquire`` call so two concurrent selections for the same user can
never both pass the same check.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import date, datetime, timedelta
from typing import Callable, Protocol, runtime_checkable

from sharpcoach.core.storage.database import CoachingDatabase, DatabaseError
from sharpcoach.core.storage.models import InterventionUsageRecord

logger = logging.getLogger(__name__)

RecordUpdate = Callable[[InterventionUsageRecord], None]


class InterventionHistoryError(Exception):
    """Raised when usage history cannot be read or written."""


@runtime_checkable
class InterventionHistoryStore(Protocol):
    """Per-(user, template) usage state with atomic updates."""

    def get(self, user_id: str, template_id: str) -> InterventionUsageRecord | None: ...

    def try_acquire(
        self,
        user_id: str,
        template_id: str,
        now: datetime,
        *,
        cooldown: timedelta,
        max_daily_uses: int,
    ) -> bool: ...

    def update(self, user_id: str, template_id: str, mutate: RecordUpdate) -> InterventionUsageRecord: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryInterventionHistoryStore:
    """Process-local store guarded by one lock per (user, template) key."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], InterventionUsageRecord] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, user_id: str, template_id: str) -> InterventionUsageRecord | None:
        key = (user_id, template_id)
        with self._lock_for(key):
            record = self._records.get(key)
            return None if record is None else _copy(record)

    def try_acquire(
        self,
        user_id: str,
        template_id: str,
        now: datetime,
        *,
        cooldown: timedelta,
        max_daily_uses: int,
    ) -> bool:
        key = (user_id, template_id)
        with self._lock_for(key):
            record = self._records.get(key) or InterventionUsageRecord(user_id, template_id)
            if not record.is_available(now, cooldown, max_daily_uses):
                return False
            record.mark_used(now)
            self._records[key] = record
            return True

    def update(self, user_id: str, template_id: str, mutate: RecordUpdate) -> InterventionUsageRecord:
        key = (user_id, template_id)
        with self._lock_for(key):
            current = self._records.get(key)
            # A failing mutate leaves the stored record untouched.
            record = _copy(current) if current else InterventionUsageRecord(user_id, template_id)
            mutate(record)
            self._records[key] = record
            return _copy(record)

    def __len__(self) -> int:
        return len(self._records)


def _copy(record: InterventionUsageRecord) -> InterventionUsageRecord:
    return InterventionUsageRecord(**vars(record))


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

class SqliteInterventionHistoryStore:
    """Durable store backed by the ``intervention_usage`` table.

    Each read-modify-write runs inside ``BEGIN IMMEDIATE`` so the write lock
    is held from the read until commit, across threads and processes.

    Usage::

        db = CoachingDatabase(":memory:")
        db.initialize()
        store = SqliteInterventionHistoryStore(db)
        store.try_acquire("u1", "morning_energy_boost", now,
                          cooldown=timedelta(hours=12), max_daily_uses=1)
    """

    def __init__(self, database: CoachingDatabase) -> None:
        self._db = database

    def get(self, user_id: str, template_id: str) -> InterventionUsageRecord | None:
        try:
            with self._db.lock:
                return self._load(self._db.connection, user_id, template_id)
        except (sqlite3.Error, DatabaseError) as exc:
            raise InterventionHistoryError(f"Failed to read usage for {template_id}: {exc}") from exc

    def try_acquire(
        self,
        user_id: str,
        template_id: str,
        now: datetime,
        *,
        cooldown: timedelta,
        max_daily_uses: int,
    ) -> bool:
        acquired = False

        def acquire(record: InterventionUsageRecord) -> bool:
            nonlocal acquired
            if not record.is_available(now, cooldown, max_daily_uses):
                return False
            record.mark_used(now)
            acquired = True
            return True

        self._transact(user_id, template_id, acquire)
        return acquired

    def update(self, user_id: str, template_id: str, mutate: RecordUpdate) -> InterventionUsageRecord:
        def apply(record: InterventionUsageRecord) -> bool:
            mutate(record)
            return True

        return self._transact(user_id, template_id, apply)

    def _transact(
        self,
        user_id: str,
        template_id: str,
        step: Callable[[InterventionUsageRecord], bool],
    ) -> InterventionUsageRecord:
        """Run ``step`` on the current record and persist it if it returns True."""
        try:
            with self._db.lock:
                conn = self._db.connection
                conn.execute("BEGIN IMMEDIATE")
                try:
                    record = self._load(conn, user_id, template_id) or InterventionUsageRecord(
                        user_id, template_id
                    )
                    if step(record):
                        self._save(conn, record)
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                return record
        except (sqlite3.Error, DatabaseError) as exc:
            raise InterventionHistoryError(f"Failed to update usage for {template_id}: {exc}") from exc

    @staticmethod
    def _load(conn: sqlite3.Connection, user_id: str, template_id: str) -> InterventionUsageRecord | None:
        row = conn.execute(
            """SELECT last_used, uses_today, usage_day, effectiveness, success_rate
               FROM intervention_usage WHERE user_id = ? AND template_id = ?""",
            (user_id, template_id),
        ).fetchone()
        if row is None:
            return None
        return InterventionUsageRecord(
            user_id=user_id,
            template_id=template_id,
            last_used=datetime.fromisoformat(row["last_used"]) if row["last_used"] else None,
            uses_today=row["uses_today"],
            usage_day=date.fromisoformat(row["usage_day"]) if row["usage_day"] else None,
            effectiveness=row["effectiveness"],
            success_rate=row["success_rate"],
        )

    @staticmethod
    def _save(conn: sqlite3.Connection, record: InterventionUsageRecord) -> None:
        conn.execute(
            """INSERT INTO intervention_usage
                   (user_id, template_id, last_used, uses_today, usage_day,
                    effectiveness, success_rate, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, datetime('now'))
               ON CONFLICT(user_id, template_id) DO UPDATE SET
                   last_used = excluded.last_used,
                   uses_today = excluded.uses_today,
                   usage_day = excluded.usage_day,
                   effectiveness = excluded.effectiveness,
                   success_rate = excluded.success_rate,
                   updated_at = excluded.updated_at""",
            (
                record.user_id,
                record.template_id,
                record.last_used.isoformat() if record.last_used else None,
                record.uses_today,
                record.usage_day.isoformat() if record.usage_day else None,
                record.effectiveness,
                record.success_rate,
            ),
        )


def create_history_store(backend: str, database: CoachingDatabase | None = None) -> InterventionHistoryStore:
    """Build the store named by the ``history_backend`` setting."""
    if backend == "memory":
        return InMemoryInterventionHistoryStore()
    if backend == "sqlite":
        if database is None:
            raise InterventionHistoryError("sqlite history backend requires a database")
        return SqliteInterventionHistoryStore(database)
    raise InterventionHistoryError(f"Unknown history backend: {backend!r}")
