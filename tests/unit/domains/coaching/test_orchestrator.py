"""Tests for the coaching decision pipeline and scenario routing."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from conftest import FIXED_NOW, make_context, make_log, sleep_training_logs

from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    MealRef,
    PersonaType,
    Scenario,
    UserProfile,
)
from sharpcoach.domains.coaching.domain_logic.orchestrator import (
    DEFAULT_IDENTITY,
    CoachingDecisionOrchestrator,
    ScenarioConfidenceModel,
    classify_scenario,
    extract_desired_behavior,
    extract_restaurant,
)
from sharpcoach.domains.coaching.domain_logic.pattern_detection import PatternDetectionService
from sharpcoach.domains.coaching.domain_logic.safety_monitor import SafetyMonitor


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def build_orchestrator(rule_cards_engine, audit_logger=None, now=FIXED_NOW):
    clock = lambda: now  # noqa: E731
    return CoachingDecisionOrchestrator(
        safety=SafetyMonitor(),
        patterns=PatternDetectionService(clock=clock),
        rule_cards=rule_cards_engine,
        audit=audit_logger,
        clock=clock,
    )


@pytest.fixture
def orchestrator(rule_cards_engine, audit_logger):
    return build_orchestrator(rule_cards_engine, audit_logger)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassifyScenario:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Tennis match tonight, what food?", Scenario.PRE_ACTIVITY_NUTRITION),
            ("My legs are sore", Scenario.POST_WORKOUT_RECOVERY),
            ("Bad sleep, should I train?", Scenario.SLEEP_AFFECTED_TRAINING),
            ("Stuck at the same weight", Scenario.WEIGHT_PLATEAU),
            ("Stuck at McDonald's", Scenario.WEIGHT_PLATEAU),
            ("Traveling this week", Scenario.TRAVEL_NUTRITION),
            ("I keep breaking my streak", Scenario.HABIT_FORMATION),
            ("Struggling to stay consistent after travel", Scenario.HABIT_FORMATION),
            ("Trying to eat before every tennis match", Scenario.HABIT_FORMATION),
            ("Hello coach", Scenario.GENERAL),
        ],
    )
    def test_ordered_rules(self, text, expected):
        assert classify_scenario(text) is expected

    def test_game_without_food_is_not_pre_activity(self):
        assert classify_scenario("Big game tomorrow") is Scenario.GENERAL


class TestTextHelpers:
    def test_phrase_table_first(self):
        assert extract_desired_behavior("I want to work out more") == "exercise"

    def test_want_to_capture(self):
        assert extract_desired_behavior("I want to learn to swim, any tips?") == "learn to swim"

    def test_start_capture(self):
        assert extract_desired_behavior("Help me start journaling.") == "journaling"

    def test_fallback(self):
        assert extract_desired_behavior("habits are hard") == "be healthier"

    def test_restaurant(self):
        assert extract_restaurant("stuck at Burger King") == "Burger king"
        assert extract_restaurant("airport food") is None


class TestConfidenceModel:
    def test_empty_context_is_low(self):
        model = ScenarioConfidenceModel()
        assert model.calculate(make_context(), Scenario.GENERAL, None, FIXED_NOW) == "low"

    def test_points_accumulate(self):
        logs = [make_log("nutrition", FIXED_NOW - timedelta(hours=h)) for h in range(1, 7)]
        context = make_context(logs, last_meal=MealRef(FIXED_NOW - timedelta(hours=1)))
        model = ScenarioConfidenceModel()
        assert model.points(context, Scenario.PRE_ACTIVITY_NUTRITION, 60, FIXED_NOW) == 5
        assert model.calculate(context, Scenario.PRE_ACTIVITY_NUTRITION, 60, FIXED_NOW) == "high"

    def test_known_patterns_need_more_than_three(self):
        model = ScenarioConfidenceModel()
        three = make_context(known_patterns={"a": 1, "b": 2, "c": 3})
        four = make_context(known_patterns={"a": 1, "b": 2, "c": 3, "d": 4})
        assert model.points(three, Scenario.GENERAL, None, FIXED_NOW) == 0
        assert model.points(four, Scenario.GENERAL, None, FIXED_NOW) == 2


# ---------------------------------------------------------------------------
# Safety gate
# ---------------------------------------------------------------------------

class TestSafetyGate:
    def test_red_flag_blocks_and_is_audited(self, orchestrator, audit_logger):
        response = _run(orchestrator.generate_response(
            "I have chest pain, should I still go for my run?", make_context()
        ))
        assert response.blocked is True
        assert response.confidence == "high"
        assert response.message.startswith("Stop all activity")
        assert response.safety_warnings
        assert audit_logger.count_blocked() == 1

    def test_medium_finding_is_merged_not_blocking(self, orchestrator):
        context = make_context(profile=UserProfile(health_conditions=["diabetes"]))
        response = _run(orchestrator.generate_response("Planning a fasting run, any advice?", context))
        assert response.blocked is False
        assert "Diabetes safety concern" in response.safety_warnings

    def test_safe_profile_advice_adds_no_warning(self, orchestrator):
        context = make_context(profile=UserProfile(health_conditions=["asthma"]))
        response = _run(orchestrator.generate_response("Hello coach", context))
        assert response.safety_warnings == []


# ---------------------------------------------------------------------------
# Scenario handlers
# ---------------------------------------------------------------------------

class TestScenarios:
    def test_pre_activity_without_meal_asks(self, orchestrator):
        response = _run(orchestrator.generate_response(
            "I have a tennis match in 3 hours, what should I eat?", make_context()
        ))
        assert response.scenario is Scenario.PRE_ACTIVITY_NUTRITION
        assert response.confidence == "low"
        assert response.message == "Great, fuel matters here."
        assert response.clarifying_question == "Did you eat a full meal in the last 3 hours?"
        assert response.identity_reinforcement == DEFAULT_IDENTITY

    def test_pre_activity_with_recent_meal(self, orchestrator):
        context = make_context(
            [make_log("nutrition", FIXED_NOW - timedelta(hours=1), text="oatmeal")],
            last_meal=MealRef(FIXED_NOW - timedelta(hours=1), "oatmeal"),
        )
        response = _run(orchestrator.generate_response(
            "Tennis match in 2 hours, what should I eat?", context
        ))
        assert response.confidence == "medium"
        assert response.message == (
            "Since your match is in 2 hours, keep it very light - just a banana or a few dates"
        )

    def test_post_workout_low_confidence(self, orchestrator):
        response = _run(orchestrator.generate_response("My legs are sore", make_context()))
        assert response.clarifying_question == (
            "Is this normal muscle soreness or pain that limits your movement?"
        )

    def test_short_sleep(self, orchestrator):
        response = _run(orchestrator.generate_response(
            "I got 4 hours of sleep, should I still train?", make_context()
        ))
        assert response.scenario is Scenario.SLEEP_AFFECTED_TRAINING
        assert response.message.startswith("With only 4 hours of sleep")
        assert response.clarifying_question == "Is this workout for training or competition?"

    def test_weight_loss_plateau(self, orchestrator):
        context = make_context(
            profile=UserProfile(persona_type=PersonaType.WEIGHT_MGMT),
            known_patterns={"breakfast": "oats", "lunch": "salad", "sleep": 7, "steps": 8000},
        )
        response = _run(orchestrator.generate_response(
            "I've been stuck at the same weight for 3 weeks", context
        ))
        assert response.scenario is Scenario.WEIGHT_PLATEAU
        assert response.confidence == "medium"
        assert response.message.startswith("A 3-week plateau is normal during weight loss.")

    def test_travel_low_confidence(self, orchestrator):
        response = _run(orchestrator.generate_response(
            "I'm at McDonald's while traveling, what should I order?", make_context()
        ))
        assert response.scenario is Scenario.TRAVEL_NUTRITION
        assert response.message == "I can help you make the best choice at Mcdonald."

    def test_generic_answer(self, orchestrator):
        response = _run(orchestrator.generate_response("Hello coach", make_context()))
        assert response.scenario is Scenario.GENERAL
        assert response.rule_card is None
        assert response.message == "I'll help you with that based on your profile and recent activity."
        assert response.follow_up_suggested is True


class TestHabitFormation:
    def test_start_small(self, orchestrator):
        response = _run(orchestrator.generate_response("I want to work out daily", make_context()))
        assert response.scenario is Scenario.HABIT_FORMATION
        assert response.message == (
            "Perfect! Let's start ridiculously small. Instead of \"exercise\", "
            "try this tiny version: \"do 1 pushup\"."
        )
        assert "Trigger: After brushing teeth" in response.action_items
        assert response.behavior_analysis["behavior_score"] == pytest.approx(7 * 6.4 * 9)
        assert response.behavior_analysis["likelihood_of_success"] == "medium"
        assert response.behavior_analysis["habit_formation_prediction"]["days_to_habit"] == 50
        assert response.identity_goal["identity"] == "I am someone who is committed to exercise"

    def test_profile_factors_drive_behavior_analysis(self, orchestrator):
        profile = UserProfile.from_dict({
            "motivation_profile": {"motivation_level": 3, "motivation_style": "competitive"},
            "ability_factors": {
                "physical_capability": 2, "time_availability": 2, "cognitive_load": 2,
                "social_support": 2, "resource_access": 2,
            },
        })
        response = _run(orchestrator.generate_response(
            "I want to eat healthy every day", make_context(profile=profile)
        ))
        analysis = response.behavior_analysis
        assert analysis["behavior_score"] == pytest.approx(54)
        assert analysis["likelihood_of_success"] == "low"
        assert "Increase ability: Make the behavior ridiculously small" in analysis["recommended_adjustments"]
        assert "Reward: Mark an X on calendar and count your streak" in response.action_items
        assert response.identity_goal["identity"] == "I am someone who nourishes my body well"

    def test_struggling(self, orchestrator):
        response = _run(orchestrator.generate_response(
            "I'm struggling to keep my routine", make_context()
        ))
        assert response.message.startswith("No worries!")

    def test_celebrate_counts_streak(self, orchestrator):
        logs = [
            make_log("exercise", FIXED_NOW - timedelta(days=d, hours=1), {"type": "walk"})
            for d in range(3)
        ]
        response = _run(orchestrator.generate_response("I did my habit today", make_context(logs)))
        assert response.message == (
            "Excellent! You did it. 3 days of evidence that you are "
            "someone who follows through on commitments."
        )

    def test_open_question_defaults_to_medium(self, orchestrator):
        response = _run(orchestrator.generate_response("Tell me about habits", make_context()))
        assert response.confidence == "medium"


# ---------------------------------------------------------------------------
# Rule cards and patterns
# ---------------------------------------------------------------------------

class TestRuleCardFallthrough:
    def test_hydration_card(self, orchestrator, audit_logger):
        response = _run(orchestrator.generate_response(
            "I'm thirsty and have a headache, how much water should I drink?", make_context()
        ))
        assert response.scenario is Scenario.GENERAL
        assert response.rule_card["id"] == "hydration_check"
        assert "urine_color" in response.rule_card["missing_context"]
        assert response.confidence == "low"
        assert response.clarifying_question.startswith("What color is your urine")
        event = audit_logger.get_events(action="coaching_response")[0]
        assert "hydration_check" in event["metadata_json"]


class TestPatternIntegration:
    def test_insights_attached(self, orchestrator):
        response = _run(orchestrator.generate_response(
            "Hello coach", make_context(sleep_training_logs())
        ))
        assert response.confidence == "medium"
        assert response.pattern_insights["detected_patterns"][0]["type"] == "sleep_performance"
        assert response.pattern_insights["adaptive_recommendation"]["category"] == "sleep"
        assert any(item.startswith("Pattern insight: ") for item in response.action_items)

    def test_just_in_time_intervention(self, rule_cards_engine):
        logs = []
        for d in range(1, 6):
            day = FIXED_NOW - timedelta(days=d)
            logs.append(make_log("nutrition", day.replace(hour=15, minute=30), text="pasta"))
            logs.append(make_log("exercise", day.replace(hour=16), {"type": "tennis"}))
        orchestrator = build_orchestrator(rule_cards_engine, now=FIXED_NOW.replace(hour=16))

        response = _run(orchestrator.generate_response(
            "What should I do before my workout?", make_context(logs)
        ))
        assert response.confidence == "high"
        assert response.message == (
            "Based on your pattern data: fuel up 2-3 hours before your workout for optimal performance"
        )
        jit = response.pattern_insights["just_in_time_intervention"]
        assert jit["trigger_reason"] == "Workout scheduled in next 4 hours"

    def test_outside_timing_window_no_intervention(self, rule_cards_engine):
        logs = []
        for d in range(1, 6):
            day = FIXED_NOW - timedelta(days=d)
            logs.append(make_log("nutrition", day.replace(hour=15, minute=30), text="pasta"))
            logs.append(make_log("exercise", day.replace(hour=16), {"type": "tennis"}))
        orchestrator = build_orchestrator(rule_cards_engine, now=FIXED_NOW.replace(hour=10))

        response = _run(orchestrator.generate_response(
            "What should I do before my workout?", make_context(logs)
        ))
        assert "just_in_time_intervention" not in (response.pattern_insights or {})
