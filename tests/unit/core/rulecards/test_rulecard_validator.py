"""Tests for rule card loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from sharpcoach.core.rulecards.loader import (
    RuleCardError,
    load_rule_card_directory,
    rule_card_from_dict,
)
from sharpcoach.core.rulecards.registry import RuleCardRegistry
from sharpcoach.core.rulecards.validator import (
    check_tier_nesting,
    validate_rule_card,
    validate_rule_card_directory,
)
from sharpcoach.domains.coaching.domain_logic.rule_card_context import RULE_CARD_DIR


def card_data(**overrides) -> dict:
    data = {
        "id": "test_card",
        "name": "Test Card",
        "family": "pre_workout",
        "triggers": ["before training"],
        "confidence_requirements": {
            "low": ["time_until_activity"],
            "medium": ["time_until_activity", "last_meal_time"],
            "high": ["time_until_activity", "last_meal_time", "training_type"],
        },
        "responses": {
            "high": {"message_template": "High {training_type}"},
            "medium": {"message_template": "Medium"},
            "low": {"message_template": "Low"},
        },
        "clarifying_questions": [
            {
                "question": "When did you last eat?",
                "importance": 8,
                "context_conditions": ["missing_last_meal_time"],
            }
        ],
    }
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class TestRuleCardFromDict:
    def test_builds_all_tiers(self):
        card = rule_card_from_dict(card_data())
        assert set(card.responses) == {"high", "medium", "low"}
        assert card.requirements("high") == ["time_until_activity", "last_meal_time", "training_type"]

    def test_missing_id_raises(self):
        data = card_data()
        del data["id"]
        with pytest.raises(RuleCardError):
            rule_card_from_dict(data)

    def test_question_addressed_fields(self):
        card = rule_card_from_dict(card_data())
        assert card.clarifying_questions[0].addressed_fields() == {"last_meal_time"}


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class TestTierNesting:
    def test_nested_tiers_pass(self):
        assert check_tier_nesting(rule_card_from_dict(card_data())) == []

    def test_medium_not_subset_of_high(self):
        card = rule_card_from_dict(card_data(confidence_requirements={
            "low": [],
            "medium": ["sleep_hours"],
            "high": ["training_type"],
        }))
        errors = check_tier_nesting(card)
        assert len(errors) == 1
        assert "sleep_hours" in errors[0]

    def test_low_not_subset_of_medium(self):
        card = rule_card_from_dict(card_data(confidence_requirements={
            "low": ["urine_color"],
            "medium": [],
            "high": [],
        }))
        assert any("urine_color" in e for e in check_tier_nesting(card))


class TestValidateRuleCard:
    def test_valid_card(self):
        assert validate_rule_card(rule_card_from_dict(card_data())) == []

    def test_missing_tier_response(self):
        card = rule_card_from_dict(card_data(responses={
            "high": {"message_template": "h"},
            "low": {"message_template": "l"},
        }))
        assert any("medium" in e for e in validate_rule_card(card))

    def test_bad_template_reported(self):
        card = rule_card_from_dict(card_data(responses={
            "high": {"message_template": '{x >> 1 ? "a" : "b"}'},
            "medium": {"message_template": "m"},
            "low": {"message_template": "l"},
        }))
        assert any("Malformed" in e for e in validate_rule_card(card))

    def test_priority_out_of_range(self):
        card = rule_card_from_dict(card_data(priority=11))
        assert any("Priority" in e for e in validate_rule_card(card))

    def test_unknown_safety_action(self):
        card = rule_card_from_dict(card_data(safety_checks=[
            {"condition": "x", "warning": "w", "action": "ignore"},
        ]))
        assert any("unknown action" in e for e in validate_rule_card(card))

    def test_no_triggers(self):
        card = rule_card_from_dict(card_data(triggers=[]))
        assert "No triggers defined" in validate_rule_card(card)


class TestBundledCatalog:
    def test_bundled_cards_are_valid(self):
        count, errors = validate_rule_card_directory(RULE_CARD_DIR)
        assert errors == []
        assert count == 5

    def test_loader_skips_invalid_cards(self, tmp_path: Path):
        (tmp_path / "good_card.yaml").write_text(
            "id: good_card\n"
            "name: Good\n"
            "family: sleep\n"
            "triggers: [tired]\n"
            "responses:\n"
            "  high: {message_template: h}\n"
            "  medium: {message_template: m}\n"
            "  low: {message_template: l}\n",
            encoding="utf-8",
        )
        (tmp_path / "bad_card.yaml").write_text(
            "id: bad_card\n"
            "name: Bad\n"
            "family: sleep\n"
            "triggers: [tired]\n"
            "confidence_requirements:\n"
            "  low: [sleep_hours]\n"
            "  medium: []\n"
            "  high: []\n"
            "responses:\n"
            "  high: {message_template: h}\n"
            "  medium: {message_template: m}\n"
            "  low: {message_template: l}\n",
            encoding="utf-8",
        )
        (tmp_path / "_draft.yaml").write_text("not: [valid", encoding="utf-8")

        registry = RuleCardRegistry()
        assert load_rule_card_directory(tmp_path, registry) == 1
        assert registry.get("good_card") is not None
        assert registry.get("bad_card") is None

    def test_missing_directory_loads_nothing(self, tmp_path: Path):
        assert load_rule_card_directory(tmp_path / "nope", RuleCardRegistry()) == 0

    def test_duplicate_registration_rejected(self):
        registry = RuleCardRegistry()
        registry.register(rule_card_from_dict(card_data()))
        with pytest.raises(ValueError):
            registry.register(rule_card_from_dict(card_data()))
