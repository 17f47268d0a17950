"""Tests for the encrypted personalization profile repository."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import FIXED_NOW

from sharpcoach.core.storage.encryption import FieldEncryptor
from sharpcoach.core.storage.profiles import (
    PersonalizationRepository,
    ProfileRepositoryError,
    needs_refresh,
)
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    PersonaType,
    PersonalizationProfile,
)


def make_profile(**overrides) -> PersonalizationProfile:
    fields = {
        "user_id": "u1",
        "persona_type": PersonaType.SPORT,
        "persona_confidence": 85.0,
        "motivation_style": "competitive",
        "feedback_style": "direct",
        "updated_at": FIXED_NOW,
    }
    fields.update(overrides)
    return PersonalizationProfile(**fields)


@pytest.fixture
def repo(coaching_db, field_encryptor, fixed_clock):
    return PersonalizationRepository(
        coaching_db, field_encryptor, PersonalizationProfile.from_dict, clock=fixed_clock
    )


class TestNeedsRefresh:
    def test_missing_profile(self):
        assert needs_refresh(None, FIXED_NOW)

    def test_fresh_confident_profile(self):
        assert not needs_refresh(make_profile(), FIXED_NOW)

    def test_older_than_max_age(self):
        profile = make_profile(updated_at=FIXED_NOW - timedelta(days=8))
        assert needs_refresh(profile, FIXED_NOW)

    def test_confidence_at_floor_is_stale(self):
        assert needs_refresh(make_profile(persona_confidence=70.0), FIXED_NOW)
        assert not needs_refresh(make_profile(persona_confidence=70.5), FIXED_NOW)

    def test_custom_window(self):
        profile = make_profile(updated_at=FIXED_NOW - timedelta(days=2))
        assert needs_refresh(profile, FIXED_NOW, max_age_days=1)


class TestRepository:
    def test_save_and_get(self, repo):
        repo.save(make_profile())
        loaded = repo.get("u1")
        assert loaded.persona_type is PersonaType.SPORT
        assert loaded.motivation_style == "competitive"
        assert loaded.updated_at == FIXED_NOW

    def test_contents_encrypted_at_rest(self, repo, coaching_db):
        repo.save(make_profile())
        row = coaching_db.connection.execute(
            "SELECT profile_enc FROM personalization_profiles WHERE user_id = 'u1'"
        ).fetchone()
        assert "competitive" not in row["profile_enc"]

    def test_save_overwrites(self, repo):
        repo.save(make_profile())
        repo.save(make_profile(motivation_style="social"))
        assert repo.get("u1").motivation_style == "social"

    def test_get_missing(self, repo):
        assert repo.get("nobody") is None

    def test_delete(self, repo):
        repo.save(make_profile())
        assert repo.delete("u1") is True
        assert repo.get("u1") is None
        assert repo.delete("u1") is False

    def test_wrong_key_raises(self, repo, coaching_db):
        repo.save(make_profile())
        other = PersonalizationRepository(
            coaching_db, FieldEncryptor(FieldEncryptor.generate_key()), PersonalizationProfile.from_dict
        )
        with pytest.raises(ProfileRepositoryError):
            other.get("u1")

    def test_sqlite_failures_wrapped(self, repo, coaching_db):
        coaching_db.connection.execute("DROP TABLE personalization_profiles")
        with pytest.raises(ProfileRepositoryError):
            repo.get("u1")
        with pytest.raises(ProfileRepositoryError):
            repo.delete("u1")
        with pytest.raises(ProfileRepositoryError):
            repo.save(make_profile())

    def test_closed_database_wrapped(self, repo, coaching_db):
        coaching_db.close()
        with pytest.raises(ProfileRepositoryError):
            repo.get("u1")
        with pytest.raises(ProfileRepositoryError):
            repo.delete("u1")


class TestGetOrRefresh:
    def test_rebuilds_when_missing(self, repo):
        calls = []

        def rebuild(previous):
            calls.append(previous)
            return make_profile(updated_at=FIXED_NOW - timedelta(days=30))

        profile = repo.get_or_refresh("u1", rebuild)
        assert calls == [None]
        assert profile.updated_at == FIXED_NOW
        assert repo.get("u1") is not None

    def test_fresh_profile_not_rebuilt(self, repo):
        repo.save(make_profile())

        def rebuild(previous):
            raise AssertionError("should not rebuild")

        assert repo.get_or_refresh("u1", rebuild).persona_type is PersonaType.SPORT

    def test_low_confidence_profile_rebuilt_with_previous(self, repo):
        repo.save(make_profile(persona_confidence=40.0))
        seen = []

        def rebuild(previous):
            seen.append(previous)
            return make_profile(persona_confidence=90.0)

        refreshed = repo.get_or_refresh("u1", rebuild)
        assert seen[0].persona_confidence == 40.0
        assert refreshed.persona_confidence == 90.0
        assert repo.get("u1").persona_confidence == 90.0
