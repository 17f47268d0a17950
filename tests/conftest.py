"""Shared test fixtures for SharpCoach tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HISTORY_BACKEND", "memory")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from sharpcoach.domains.coaching.domain_logic.coaching_models import (  # noqa: E402
    ActivityLog,
    LogCategory,
    UserContext,
    UserProfile,
)

# Monday, 15:00 UTC: afternoon slot for intervention tests.
FIXED_NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


def make_log(
    category: str | LogCategory,
    at: datetime,
    data: dict[str, Any] | None = None,
    text: str = "",
    log_id: str | None = None,
) -> ActivityLog:
    """Create an ActivityLog with sensible defaults."""
    return ActivityLog(
        id=log_id or f"{LogCategory.parse(category).value}-{at.isoformat()}",
        timestamp=at,
        category=LogCategory.parse(category),
        data=dict(data or {}),
        original_text=text,
    )


def make_context(
    logs: list[ActivityLog] | None = None,
    profile: UserProfile | None = None,
    **kwargs: Any,
) -> UserContext:
    """Build a UserContext with logs sorted oldest first."""
    return UserContext(
        profile=profile or UserProfile(),
        recent_logs=sorted(logs or [], key=lambda log: log.timestamp),
        **kwargs,
    )


def sleep_training_logs(now: datetime = FIXED_NOW, days: int = 6) -> list[ActivityLog]:
    """Paired nights and morning sessions where intensity tracks sleep hours."""
    logs: list[ActivityLog] = []
    for i in range(days):
        day = now - timedelta(days=days - i)
        hours = 5 + i % 5
        logs.append(make_log("sleep", day.replace(hour=6), {"hours": hours, "quality": 7}))
        logs.append(make_log("exercise", day.replace(hour=9), {"intensity": hours - 1, "type": "run"}))
    return logs


@pytest.fixture
def fixed_clock():
    """A clock that always returns FIXED_NOW."""
    return lambda: FIXED_NOW


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def coaching_db():
    """Create an in-memory CoachingDatabase for testing."""
    from sharpcoach.core.storage.database import CoachingDatabase

    db = CoachingDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from sharpcoach.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def audit_logger(coaching_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from sharpcoach.core.audit.logger import AuditLogger

    return AuditLogger(coaching_db)


@pytest.fixture
def history_store():
    from sharpcoach.core.storage.history import InMemoryInterventionHistoryStore

    return InMemoryInterventionHistoryStore()


@pytest.fixture
def sqlite_history_store(coaching_db):
    from sharpcoach.core.storage.history import SqliteInterventionHistoryStore

    return SqliteInterventionHistoryStore(coaching_db)


@pytest.fixture
def rule_cards_engine(fixed_clock):
    """The bundled rule card catalog wired to the coaching bindings."""
    from sharpcoach.domains.coaching.domain_logic.rule_card_context import build_rule_cards_engine

    return build_rule_cards_engine(clock=fixed_clock)
