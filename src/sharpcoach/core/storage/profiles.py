"""Encrypted repository for personalization profiles.

The repository knows nothing about what a profile contains: it stores
any object exposing the :class:`StoredProfile` attributes and hands rows
back through the ``load`` callable it was built with.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from sharpcoach.core.storage.database import CoachingDatabase, DatabaseError
from sharpcoach.core.storage.encryption import EncryptionError, FieldEncryptor

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_DAYS = 7
DEFAULT_CONFIDENCE_FLOOR = 70.0


class ProfileRepositoryError(Exception):
    """Raised when a stored profile cannot be read or written."""


class StoredProfile(Protocol):
    """What the repository needs from a profile to store and gate it."""

    user_id: str
    persona_confidence: float
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def needs_refresh(
    profile: StoredProfile | None,
    now: datetime,
    *,
    max_age_days: int = DEFAULT_REFRESH_DAYS,
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
) -> bool:
    """A profile is stale when missing, older than ``max_age_days``, or not confident enough."""
    if profile is None:
        return True
    if now - profile.updated_at > timedelta(days=max_age_days):
        return True
    return profile.persona_confidence <= confidence_floor


class PersonalizationRepository:
    """Stores profiles in ``personalization_profiles``, encrypted with Fernet.

    Usage::

        repo = PersonalizationRepository(db, FieldEncryptor(key), PersonalizationProfile.from_dict)
        repo.save(profile)
        profile = repo.get("u1")
    """

    def __init__(
        self,
        database: CoachingDatabase,
        encryptor: FieldEncryptor,
        load: Callable[[dict[str, Any]], StoredProfile],
        *,
        max_age_days: int = DEFAULT_REFRESH_DAYS,
        confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = database
        self._enc = encryptor
        self._load = load
        self._max_age_days = max_age_days
        self._confidence_floor = confidence_floor
        self._clock = clock

    def save(self, profile: StoredProfile) -> None:
        payload = profile.to_dict()
        try:
            with self._db.lock:
                self._db.connection.execute(
                    """INSERT INTO personalization_profiles
                           (user_id, profile_enc, persona_confidence, updated_at)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(user_id) DO UPDATE SET
                           profile_enc = excluded.profile_enc,
                           persona_confidence = excluded.persona_confidence,
                           updated_at = excluded.updated_at""",
                    (
                        profile.user_id,
                        self._enc.encrypt(payload),
                        profile.persona_confidence,
                        profile.updated_at.isoformat(),
                    ),
                )
        except (sqlite3.Error, DatabaseError, EncryptionError) as exc:
            raise ProfileRepositoryError(f"Failed to save profile: {exc}") from exc

    def get(self, user_id: str) -> StoredProfile | None:
        try:
            with self._db.lock:
                row = self._db.connection.execute(
                    "SELECT profile_enc, updated_at FROM personalization_profiles WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except (sqlite3.Error, DatabaseError) as exc:
            raise ProfileRepositoryError(f"Failed to read profile: {exc}") from exc
        if row is None:
            return None
        try:
            data = self._enc.decrypt(row["profile_enc"]) or {}
        except EncryptionError as exc:
            raise ProfileRepositoryError(f"Stored profile for user is unreadable: {exc}") from exc
        data["updated_at"] = data.get("updated_at") or row["updated_at"]
        return self._load(data)

    def delete(self, user_id: str) -> bool:
        try:
            with self._db.lock:
                cursor = self._db.connection.execute(
                    "DELETE FROM personalization_profiles WHERE user_id = ?", (user_id,)
                )
        except (sqlite3.Error, DatabaseError) as exc:
            raise ProfileRepositoryError(f"Failed to delete profile: {exc}") from exc
        return cursor.rowcount > 0

    def is_stale(self, profile: StoredProfile | None) -> bool:
        return needs_refresh(
            profile,
            self._clock(),
            max_age_days=self._max_age_days,
            confidence_floor=self._confidence_floor,
        )

    def get_or_refresh(
        self,
        user_id: str,
        rebuild: Callable[[StoredProfile | None], StoredProfile],
    ) -> StoredProfile:
        """Return the stored profile, rebuilding and saving it when stale."""
        current = self.get(user_id)
        if not self.is_stale(current):
            return current
        refreshed = rebuild(current)
        refreshed.updated_at = self._clock()
        self.save(refreshed)
        logger.info(
            "Refreshed personalization profile (confidence=%.0f)", refreshed.persona_confidence
        )
        return refreshed
