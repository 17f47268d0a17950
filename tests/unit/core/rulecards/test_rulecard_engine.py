"""Tests for rule card matching, tiering, and rendering."""

from __future__ import annotations

from datetime import timedelta

from conftest import FIXED_NOW, make_context, make_log

from sharpcoach.core.rulecards.engine import ContextFieldResolver, RuleCardsEngine
from sharpcoach.core.rulecards.loader import rule_card_from_dict
from sharpcoach.core.rulecards.matcher import determine_tier, missing_context, select_question
from sharpcoach.core.rulecards.registry import RuleCardRegistry
from sharpcoach.domains.coaching.domain_logic.coaching_models import SleepRef, UserProfile


class StaticFields:
    """Resolver that reports a fixed field set."""

    def __init__(self, fields: set[str], values: dict | None = None) -> None:
        self.fields = fields
        self.values = values or {}

    def available_fields(self, context, text):
        return set(self.fields)

    def template_values(self, context, text):
        return dict(self.values)


def make_card(card_id: str, triggers: list[str], priority: int = 10, family: str = "general", **extra):
    data = {
        "id": card_id,
        "name": card_id.title(),
        "family": family,
        "priority": priority,
        "triggers": triggers,
        "confidence_requirements": {
            "low": ["a"],
            "medium": ["a", "b"],
            "high": ["a", "b", "c"],
        },
        "responses": {
            "high": {"message_template": "high for {name}"},
            "medium": {"message_template": "medium for {name}"},
            "low": {"message_template": "low for {name}", "safety_warnings": ["static warning"]},
        },
        "clarifying_questions": [
            {"question": "What is b?", "importance": 5, "context_conditions": ["missing_b"]},
            {"question": "What is c?", "importance": 9, "context_conditions": ["missing_c"]},
            {"question": "Also c?", "importance": 9, "context_conditions": ["missing_c"]},
        ],
    }
    data.update(extra)
    return rule_card_from_dict(data)


def make_engine(*cards, fields=None, families=None, conditions=None) -> RuleCardsEngine:
    registry = RuleCardRegistry()
    for card in cards:
        registry.register(card)
    return RuleCardsEngine(
        registry,
        fields=fields or StaticFields({"a"}, {"name": "Sam"}),
        family_predicates=families,
        safety_conditions=conditions,
    )


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class TestTiers:
    def test_highest_satisfied_tier_wins(self):
        card = make_card("c1", ["x"])
        assert determine_tier(card, {"a", "b", "c"}) == "high"
        assert determine_tier(card, {"a", "b"}) == "medium"
        assert determine_tier(card, {"a"}) == "low"

    def test_nothing_available_is_low(self):
        assert determine_tier(make_card("c1", ["x"]), set()) == "low"

    def test_missing_context_uses_high_tier(self):
        card = make_card("c1", ["x"])
        assert missing_context(card, {"a"}) == ["b", "c"]
        assert missing_context(card, {"a", "b", "c"}) == []

    def test_question_picks_highest_importance_first_in_order(self):
        card = make_card("c1", ["x"])
        question = select_question(card, "low", ["b", "c"])
        assert question.question == "What is c?"

    def test_no_question_at_high_tier(self):
        card = make_card("c1", ["x"])
        assert select_question(card, "high", ["c"]) is None


class TestFindBestMatch:
    def test_score_counts_triggers_and_priority(self):
        engine = make_engine(make_card("c1", ["tired", "sleep"], priority=5))
        assert engine.score(engine.registry.get("c1"), "Tired, no SLEEP", None) == 10.0

    def test_family_bonus(self):
        engine = make_engine(
            make_card("c1", ["tired"], family="sleep"),
            families={"sleep": lambda ctx, text: True},
        )
        assert engine.score(engine.registry.get("c1"), "tired", None) == 25.0

    def test_threshold_is_exclusive(self):
        engine = make_engine(make_card("c1", ["tired"]))
        assert engine.find_best_match("tired", None) is None

    def test_match_above_threshold(self):
        engine = make_engine(make_card("c1", ["tired", "exhausted"]))
        match = engine.find_best_match("tired and exhausted", None)
        assert match is not None
        assert match.card.id == "c1"
        assert match.match_score == 20.0
        assert match.confidence == "low"
        assert match.missing_context == ["b", "c"]
        assert match.recommended_question.question == "What is c?"

    def test_ties_keep_catalog_order(self):
        engine = make_engine(
            make_card("first", ["tired", "sore"]),
            make_card("second", ["tired", "sore"]),
        )
        for _ in range(5):
            assert engine.find_best_match("tired and sore", None).card.id == "first"

    def test_repeated_calls_give_identical_matches(self):
        engine = make_engine(
            make_card("first", ["tired", "sore"]),
            make_card("second", ["sore", "tired"]),
            make_card("third", ["tired"], priority=9),
        )
        matches = [engine.find_best_match("Tired and SORE", None) for _ in range(10)]
        assert {m.card.id for m in matches} == {"first"}
        assert {(m.match_score, m.confidence, tuple(m.missing_context)) for m in matches} == {
            (20.0, "low", ("b", "c"))
        }
        assert {m.recommended_question.question for m in matches} == {"What is c?"}

    def test_tie_follows_registration_order(self):
        engine = make_engine(
            make_card("second", ["tired", "sore"]),
            make_card("first", ["tired", "sore"]),
        )
        assert engine.find_best_match("tired and sore", None).card.id == "second"

    def test_higher_score_wins(self):
        engine = make_engine(
            make_card("weak", ["tired", "sore"], priority=6),
            make_card("strong", ["tired", "sore"], priority=9),
        )
        assert engine.find_best_match("tired and sore", None).card.id == "strong"

    def test_resolver_satisfies_protocol(self):
        assert isinstance(StaticFields(set()), ContextFieldResolver)


class TestRender:
    def test_renders_tier_message(self):
        engine = make_engine(make_card("c1", ["tired", "sore"]))
        match = engine.find_best_match("tired and sore", None)
        rendered = engine.generate_rule_card_response(match, None, "tired and sore")
        assert rendered.message == "low for Sam"
        assert rendered.clarifying_question == "What is c?"
        assert rendered.safety_warnings == ["static warning"]

    def test_triggered_safety_check_replaces_static_warnings(self):
        card = make_card(
            "c1", ["tired", "sore"],
            safety_checks=[
                {"condition": "pain", "warning": "See someone", "action": "refer_professional"},
                {"condition": "unknown", "warning": "Never shown"},
            ],
        )
        engine = make_engine(card, conditions={"pain": lambda ctx, text: "pain" in text})
        match = engine.find_best_match("tired and sore with sharp pain", None)
        rendered = engine.generate_rule_card_response(match, None, "tired and sore with sharp pain")
        assert rendered.safety_warnings[0] == "See someone"
        assert "healthcare professional" in rendered.safety_warnings[1]
        assert "Never shown" not in rendered.safety_warnings

    def test_failing_condition_is_not_triggered(self):
        def broken(ctx, text):
            raise RuntimeError("boom")

        card = make_card("c1", ["tired", "sore"], safety_checks=[
            {"condition": "broken", "warning": "x", "action": "warn"},
        ])
        engine = make_engine(card, conditions={"broken": broken})
        match = engine.find_best_match("tired and sore", None)
        rendered = engine.generate_rule_card_response(match, None, "tired and sore")
        assert rendered.safety_warnings == ["static warning"]


# ---------------------------------------------------------------------------
# Bundled catalog with the coaching bindings
# ---------------------------------------------------------------------------

class TestBundledCatalog:
    def test_catalog_loaded(self, rule_cards_engine):
        assert len(rule_cards_engine.registry) == 5

    def test_hydration_question_at_low_tier(self, rule_cards_engine):
        text = "I'm thirsty and have a headache, how much water should I drink?"
        match = rule_cards_engine.find_best_match(text, make_context())
        assert match.card.id == "hydration_check"
        assert match.confidence == "low"
        assert "urine_color" in match.missing_context
        rendered = rule_cards_engine.generate_rule_card_response(match, make_context(), text)
        assert rendered.clarifying_question.startswith("What color is your urine")
        assert rendered.follow_up_suggested is True

    def test_severe_dehydration_refers_professional(self, rule_cards_engine):
        text = "I'm so thirsty, how much water should I drink? I nearly fainted"
        context = make_context()
        match = rule_cards_engine.find_best_match(text, context)
        rendered = rule_cards_engine.generate_rule_card_response(match, context, text)
        assert rendered.safety_warnings[0].startswith("Severe dehydration")
        assert len(rendered.safety_warnings) == 2

    def test_sleep_card_medium_with_last_sleep(self, rule_cards_engine):
        context = make_context(last_sleep=SleepRef(hours=4.5, quality=3))
        text = "I'm exhausted and tired, should I still do my run?"
        match = rule_cards_engine.find_best_match(text, context)
        assert match.card.id == "sleep_deficit_training"
        assert match.confidence == "medium"
        assert match.missing_context == ["training_importance"]

    def test_chronic_sleep_issues_condition(self, rule_cards_engine):
        logs = [
            make_log("sleep", FIXED_NOW - timedelta(days=d), {"hours": 5})
            for d in range(1, 7)
        ]
        context = make_context(logs)
        assert rule_cards_engine.evaluate_safety_condition("chronic_sleep_issues", context)
        assert not rule_cards_engine.evaluate_safety_condition("not_a_condition", context)

    def test_unknown_activity_asks_what_it_is(self, rule_cards_engine):
        text = "Workout in 3 hours, anything to know?"
        match = rule_cards_engine.find_best_match(text, make_context())
        assert match.card.id == "pre_workout_fueling_2_4h"
        assert match.confidence == "low"
        assert match.missing_context[0] == "activity_type"
        rendered = rule_cards_engine.generate_rule_card_response(match, make_context(), text)
        assert rendered.clarifying_question == "What type of activity are you preparing for?"

    def test_named_activity_reaches_medium(self, rule_cards_engine):
        text = "Tennis match in 3 hours, anything to know?"
        match = rule_cards_engine.find_best_match(text, make_context())
        assert match.card.id == "pre_workout_fueling_2_4h"
        assert match.confidence == "medium"
        assert "activity_type" not in match.missing_context
        rendered = rule_cards_engine.generate_rule_card_response(match, make_context(), text)
        assert rendered.message == "With 3 hours until your tennis, a full meal is optimal."
        assert rendered.clarifying_question == "When did you last eat a full meal?"

    def test_stated_persona_supplies_activity(self, rule_cards_engine):
        context = make_context(profile=UserProfile.from_dict({"persona_type": "endurance"}))
        text = "Workout in 3 hours, anything to know?"
        match = rule_cards_engine.find_best_match(text, context)
        assert match.confidence == "medium"
        rendered = rule_cards_engine.generate_rule_card_response(match, context, text)
        assert rendered.message == "With 3 hours until your endurance training, a full meal is optimal."
