"""Tests for intervention usage history stores (in-memory and SQLite)."""

from __future__ import annotations

import random
import threading
from datetime import datetime, timedelta, timezone

import pytest

from sharpcoach.core.storage.history import (
    InMemoryInterventionHistoryStore,
    InterventionHistoryError,
    InterventionHistoryStore,
    SqliteInterventionHistoryStore,
    create_history_store,
)
from sharpcoach.core.storage.models import InterventionUsageRecord

NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, coaching_db) -> InterventionHistoryStore:
    if request.param == "memory":
        return InMemoryInterventionHistoryStore()
    return SqliteInterventionHistoryStore(coaching_db)


# ---------------------------------------------------------------------------
# InterventionUsageRecord
# ---------------------------------------------------------------------------

class TestUsageRecord:
    def test_fresh_record_is_available(self):
        record = InterventionUsageRecord("u1", "t1")
        assert record.is_available(NOW, 4 * HOUR, 2)

    def test_cooldown_blocks(self):
        record = InterventionUsageRecord("u1", "t1")
        record.mark_used(NOW)
        assert not record.is_available(NOW + 3 * HOUR, 4 * HOUR, 5)
        assert record.is_available(NOW + 4 * HOUR, 4 * HOUR, 5)

    def test_daily_cap_blocks(self):
        record = InterventionUsageRecord("u1", "t1")
        record.mark_used(NOW - 5 * HOUR)
        record.mark_used(NOW - 2 * HOUR)
        assert not record.is_available(NOW, HOUR, 2)

    def test_counter_resets_on_new_day(self):
        record = InterventionUsageRecord("u1", "t1")
        record.mark_used(NOW)
        tomorrow = NOW + timedelta(days=1)
        assert record.uses_on(tomorrow.date()) == 0
        assert record.is_available(tomorrow, HOUR, 1)
        record.mark_used(tomorrow)
        assert record.uses_today == 1
        assert record.usage_day == tomorrow.date()


# ---------------------------------------------------------------------------
# Store behavior (both backends)
# ---------------------------------------------------------------------------

class TestTryAcquire:
    def test_first_acquire_succeeds(self, store):
        assert store.try_acquire("u1", "t1", NOW, cooldown=HOUR, max_daily_uses=1)
        record = store.get("u1", "t1")
        assert record.uses_today == 1
        assert record.last_used == NOW

    def test_second_acquire_within_cooldown_fails(self, store):
        assert store.try_acquire("u1", "t1", NOW, cooldown=4 * HOUR, max_daily_uses=5)
        assert not store.try_acquire("u1", "t1", NOW + HOUR, cooldown=4 * HOUR, max_daily_uses=5)
        assert store.get("u1", "t1").uses_today == 1

    def test_users_are_independent(self, store):
        assert store.try_acquire("u1", "t1", NOW, cooldown=HOUR, max_daily_uses=1)
        assert store.try_acquire("u2", "t1", NOW, cooldown=HOUR, max_daily_uses=1)

    def test_get_unknown_is_none(self, store):
        assert store.get("nobody", "t1") is None

    def test_update_applies_mutation(self, store):
        def learn(record):
            record.effectiveness = 0.9

        updated = store.update("u1", "t1", learn)
        assert updated.effectiveness == 0.9
        assert store.get("u1", "t1").effectiveness == 0.9

    def test_update_failure_keeps_previous_state(self, store):
        store.update("u1", "t1", lambda r: setattr(r, "success_rate", 0.5))

        def broken(record):
            record.success_rate = 0.1
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update("u1", "t1", broken)
        assert store.get("u1", "t1").success_rate == 0.5

    def test_cooldown_and_cap_hold_for_random_sequences(self, store):
        rng = random.Random(1234)
        cooldown = 90
        cap = 3
        now = NOW.replace(hour=0)
        accepted: list[datetime] = []
        for _ in range(200):
            now += timedelta(minutes=rng.randint(1, 120))
            if store.try_acquire("u1", "t1", now, cooldown=timedelta(minutes=cooldown), max_daily_uses=cap):
                accepted.append(now)

        assert accepted
        for earlier, later in zip(accepted, accepted[1:]):
            assert later - earlier >= timedelta(minutes=cooldown)
        per_day: dict = {}
        for ts in accepted:
            per_day[ts.date()] = per_day.get(ts.date(), 0) + 1
        assert max(per_day.values()) <= cap


class TestConcurrency:
    def test_concurrent_acquire_grants_once(self, store):
        """Many threads racing for a once-a-day template: exactly one wins."""
        results: list[bool] = []
        barrier = threading.Barrier(16)
        lock = threading.Lock()

        def worker():
            barrier.wait()
            ok = store.try_acquire("u1", "t1", NOW, cooldown=12 * HOUR, max_daily_uses=1)
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert store.get("u1", "t1").uses_today == 1


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestCreateHistoryStore:
    def test_memory(self):
        assert isinstance(create_history_store("memory"), InMemoryInterventionHistoryStore)

    def test_sqlite(self, coaching_db):
        assert isinstance(create_history_store("sqlite", coaching_db), SqliteInterventionHistoryStore)

    def test_sqlite_without_database_raises(self):
        with pytest.raises(InterventionHistoryError):
            create_history_store("sqlite")

    def test_unknown_backend_raises(self):
        with pytest.raises(InterventionHistoryError):
            create_history_store("redis")

    def test_uninitialized_database_raises(self):
        from sharpcoach.core.storage.database import CoachingDatabase

        store = SqliteInterventionHistoryStore(CoachingDatabase(":memory:"))
        with pytest.raises(InterventionHistoryError):
            store.try_acquire("u1", "t1", NOW, cooldown=HOUR, max_daily_uses=1)
