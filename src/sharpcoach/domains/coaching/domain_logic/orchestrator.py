"""Coaching decision orchestrator.

Composes the safety monitor, pattern detection, and rule cards engine into
one request pipeline:

1. safety gate (a critical or high finding returns immediately);
2. pattern analysis when the context carries enough logs;
3. immediate just-in-time interventions from those patterns;
4. scenario handlers, with general queries falling through to rule cards;
5. behavioral and pattern-insight enrichment;
6. an audit record (text hashed, never stored).
"""

from __future__ import annotations

import dataclasses
import logging
import re
import time
from datetime import datetime
from typing import Callable

from sharpcoach.core.audit.logger import AuditLogger
from sharpcoach.core.rulecards.engine import RuleCardsEngine
from sharpcoach.domains.coaching.domain_logic.adaptive_interventions import calculate_current_streak
from sharpcoach.domains.coaching.domain_logic.behavior_model import (
    calculate_behavior_score,
    convert_to_identity_goal,
    design_tiny_habit,
    generate_identity_reinforcement,
)
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    CoachingResponse,
    ComprehensiveSafetyReport,
    Confidence,
    JustInTimeIntervention,
    LogCategory,
    PatternDetectionResult,
    PersonaType,
    Scenario,
    UserContext,
    hours_between,
    utcnow,
)
from sharpcoach.domains.coaching.domain_logic.pattern_detection import (
    MIN_LOGS,
    PatternDetectionService,
)
from sharpcoach.domains.coaching.domain_logic.safety_monitor import SafetyMonitor, must_block

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY = (
    "You're becoming someone who prioritizes their health and follows through on commitments"
)

# Tiny habits anchor on an existing routine, so the prompt is strong.
HABIT_PROMPT_STRENGTH = 9.0

_HOURS = re.compile(r"(\d+)\s*(?:hours?|hrs?)", re.I)
_SLEEP_HOURS = re.compile(r"(\d+)\s*(?:hours?|hrs?|h)\b", re.I)
_WEEKS = re.compile(r"(\d+)\s*(?:weeks?|wks?)", re.I)
_WANT_TO = re.compile(r"want to ([^,.?]+)")
_START = re.compile(r"start ([^,.?]+)")

_HABIT_KEYWORDS = (
    "habit", "routine", "consistent", "daily", "every day",
    "streak", "reminder", "forgot", "struggling", "motivation",
    "want to start", "trying to", "build", "maintain",
)
_RESTAURANTS = ("mcdonald", "burger king", "subway", "chipotle", "wendy")

# Ordered: the first phrase found names the behavior.
_DESIRED_BEHAVIORS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("want to work out", "want to exercise"), "exercise"),
    (("want to eat healthy", "want to eat better"), "eat healthy"),
    (("want to drink more water",), "drink water"),
    (("want to sleep better",), "sleep better"),
    (("want to meditate",), "meditate"),
    (("want to run",), "run"),
)


def classify_scenario(text: str) -> Scenario:
    """Map free text onto a scenario with ordered keyword heuristics."""
    lowered = text.lower()

    if any(k in lowered for k in _HABIT_KEYWORDS):
        return Scenario.HABIT_FORMATION
    if any(w in lowered for w in ("tennis", "match", "game")) and any(
        w in lowered for w in ("eat", "food")
    ):
        return Scenario.PRE_ACTIVITY_NUTRITION
    if "sore" in lowered or "recovery" in lowered:
        return Scenario.POST_WORKOUT_RECOVERY
    if "sleep" in lowered and any(w in lowered for w in ("workout", "work out", "train")):
        return Scenario.SLEEP_AFFECTED_TRAINING
    if "stuck" in lowered or "plateau" in lowered:
        return Scenario.WEIGHT_PLATEAU
    if any(w in lowered for w in ("travel", "mcdonald", "fast food")):
        return Scenario.TRAVEL_NUTRITION
    return Scenario.GENERAL


class ScenarioConfidenceModel:
    """Point system estimating how well the context supports a scenario answer.

    Independent of the rule card tiers: this one weighs log volume, learned
    patterns, scenario-specific pointers, and pattern-analysis confidence.
    """

    HIGH_POINTS = 4
    MEDIUM_POINTS = 2

    def points(
        self,
        context: UserContext,
        scenario: Scenario,
        pattern_confidence: int | None,
        now: datetime,
    ) -> int:
        points = 0
        last_day = [log for log in context.recent_logs if hours_between(log.timestamp, now) < 24]
        if len(last_day) > 5:
            points += 2
        elif last_day:
            points += 1

        if len(context.known_patterns) > 3:
            points += 2
        if scenario is Scenario.PRE_ACTIVITY_NUTRITION and context.last_meal:
            points += 2
        if scenario is Scenario.SLEEP_AFFECTED_TRAINING and context.last_sleep:
            points += 2

        if pattern_confidence is not None:
            if pattern_confidence > 70:
                points += 2
            elif pattern_confidence > 50:
                points += 1
        return points

    def calculate(
        self,
        context: UserContext,
        scenario: Scenario,
        pattern_confidence: int | None,
        now: datetime,
    ) -> Confidence:
        points = self.points(context, scenario, pattern_confidence, now)
        if points >= self.HIGH_POINTS:
            return "high"
        if points >= self.MEDIUM_POINTS:
            return "medium"
        return "low"


class CoachingDecisionOrchestrator:
    """Produces a :class:`CoachingResponse` for free text plus a user context.

    Engines are built once and injected.

    Usage::

        orchestrator = CoachingDecisionOrchestrator(
            safety=SafetyMonitor(),
            patterns=PatternDetectionService(),
            rule_cards=build_rule_cards_engine(),
        )
        response = await orchestrator.generate_response(text, context)
    """

    def __init__(
        self,
        *,
        safety: SafetyMonitor,
        patterns: PatternDetectionService,
        rule_cards: RuleCardsEngine,
        audit: AuditLogger | None = None,
        confidence_model: ScenarioConfidenceModel | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._safety = safety
        self._patterns = patterns
        self._rule_cards = rule_cards
        self._audit = audit
        self._confidence = confidence_model or ScenarioConfidenceModel()
        self._clock = clock

    def calculate_confidence(
        self,
        context: UserContext,
        scenario: Scenario,
        pattern_confidence: int | None = None,
    ) -> Confidence:
        return self._confidence.calculate(context, scenario, pattern_confidence, self._clock())

    async def generate_response(self, text: str, context: UserContext) -> CoachingResponse:
        started = time.perf_counter()
        response = await self._decide(text, context)
        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Coaching response: scenario=%s confidence=%s blocked=%s (%.1f ms)",
            response.scenario.value, response.confidence, response.blocked, duration_ms,
        )
        if self._audit is not None:
            self._audit.log_coaching_response(
                text,
                scenario=response.scenario.value,
                confidence=response.confidence,
                safety_blocked=response.blocked,
                duration_ms=duration_ms,
                metadata={"rule_card": response.rule_card["id"]} if response.rule_card else None,
            )
        return response

    async def _decide(self, text: str, context: UserContext) -> CoachingResponse:
        now = self._clock()
        scenario = classify_scenario(text)

        report = await self._safety.perform_comprehensive_safety_check(
            text, context.profile, context.recent_logs, now=now
        )
        if must_block(report):
            return self._blocked_response(report, scenario)

        patterns = await self._analyze(context)

        jit = self._check_just_in_time(text, context, patterns, now)
        if jit is not None:
            return jit

        pattern_confidence = patterns.confidence if patterns else None
        confidence = self._confidence.calculate(context, scenario, pattern_confidence, now)
        response = self._handle(scenario, text, context, confidence, now)

        self._enhance_with_behavioral_design(response)
        self._enhance_with_pattern_insights(response, patterns)
        self._merge_safety_findings(response, report)
        return response

    async def _analyze(self, context: UserContext) -> PatternDetectionResult | None:
        if len(context.recent_logs) < MIN_LOGS:
            return None
        try:
            return await self._patterns.analyze_patterns(context)
        except Exception:
            logger.exception("Pattern detection failed, continuing without patterns")
            return None

    # ------------------------------------------------------------------
    # Safety
    # ------------------------------------------------------------------

    @staticmethod
    def _blocked_response(report: ComprehensiveSafetyReport, scenario: Scenario) -> CoachingResponse:
        findings = [c for c in report.checks if c.block_activity or c.severity in ("critical", "high")]
        return CoachingResponse(
            message=report.final_recommendation,
            confidence="high",
            action_items=[c.recommendation for c in findings if c.recommendation],
            safety_warnings=[c.message for c in findings if c.message],
            follow_up_suggested=True,
            scenario=scenario,
            blocked=True,
        )

    @staticmethod
    def _merge_safety_findings(response: CoachingResponse, report: ComprehensiveSafetyReport) -> None:
        for check in report.checks:
            if not check.safe and check.message and check.message not in response.safety_warnings:
                response.safety_warnings.append(check.message)
        if report.overtraining.status != "green":
            response.safety_warnings.append(report.overtraining.recommendation)

    # ------------------------------------------------------------------
    # Just-in-time interventions
    # ------------------------------------------------------------------

    def _check_just_in_time(
        self,
        text: str,
        context: UserContext,
        patterns: PatternDetectionResult | None,
        now: datetime,
    ) -> CoachingResponse | None:
        if not patterns or not patterns.interventions:
            return None
        lowered = text.lower()
        for intervention in patterns.interventions:
            if intervention.urgency != "immediate":
                continue
            if not self._trigger_holds(intervention, lowered, context, now):
                continue
            logger.info("Just-in-time intervention triggered: %s", intervention.trigger.condition)
            return CoachingResponse(
                message=intervention.message,
                confidence="high",
                action_items=[
                    "This is based on your behavioral patterns",
                    "Act on this insight while motivation is high",
                    "Small action now = big impact later",
                ],
                identity_reinforcement=(
                    "You're someone who recognizes and acts on data-driven insights"
                ),
                scenario=classify_scenario(text),
                pattern_insights={
                    "detected_patterns": [
                        {
                            "type": p.type,
                            "pattern": p.pattern,
                            "strength": p.strength,
                            "significance": p.significance,
                        }
                        for p in patterns.patterns[:2]
                    ],
                    "just_in_time_intervention": {
                        "trigger_reason": intervention.trigger.condition,
                        "intervention_message": intervention.message,
                        "urgency": intervention.urgency,
                    },
                },
            )
        return None

    @staticmethod
    def _trigger_holds(
        intervention: JustInTimeIntervention,
        lowered: str,
        context: UserContext,
        now: datetime,
    ) -> bool:
        trigger = intervention.trigger
        if trigger.timing_hours and now.hour not in trigger.timing_hours:
            return False

        condition = trigger.condition
        if "Sleep hours < optimal" in condition and context.last_sleep:
            return context.last_sleep.hours < 7
        if "Low mood detected" in condition and any(
            w in lowered for w in ("tired", "stressed", "down")
        ):
            return True
        if "Workout scheduled" in condition and any(
            w in lowered for w in ("workout", "exercise", "training")
        ):
            return True
        if "Post-workout recovery" in condition and context.last_workout:
            return hours_between(context.last_workout.timestamp, now) <= 2
        if "Multiple high-intensity days" in condition:
            hard = [
                log for log in context.logs_of(LogCategory.EXERCISE)
                if log.number("intensity", default=5) > 7
                and hours_between(log.timestamp, now) < 72
            ]
            return len(hard) >= 3
        return False

    # ------------------------------------------------------------------
    # Scenario handlers
    # ------------------------------------------------------------------

    def _handle(
        self,
        scenario: Scenario,
        text: str,
        context: UserContext,
        confidence: Confidence,
        now: datetime,
    ) -> CoachingResponse:
        if scenario is Scenario.PRE_ACTIVITY_NUTRITION:
            response = self._pre_activity_nutrition(text, context, confidence, now)
        elif scenario is Scenario.POST_WORKOUT_RECOVERY:
            response = self._post_workout_recovery(text, confidence)
        elif scenario is Scenario.SLEEP_AFFECTED_TRAINING:
            response = self._sleep_affected_training(text, context, confidence)
        elif scenario is Scenario.WEIGHT_PLATEAU:
            response = self._weight_plateau(text, context, confidence)
        elif scenario is Scenario.TRAVEL_NUTRITION:
            response = self._travel_nutrition(text, context, confidence)
        elif scenario is Scenario.HABIT_FORMATION:
            response = self._habit_formation(text, context, confidence, now)
        else:
            response = self._general(text, context, confidence)
        response.scenario = scenario
        return response

    def _pre_activity_nutrition(
        self, text: str, context: UserContext, confidence: Confidence, now: datetime
    ) -> CoachingResponse:
        m = _HOURS.search(text)
        hours_until = int(m.group(1)) if m else 2
        meal_hours_ago = (
            hours_between(context.last_meal.timestamp, now) if context.last_meal else None
        )

        if confidence == "low" and meal_hours_ago is None:
            return CoachingResponse(
                message="Great, fuel matters here.",
                confidence="low",
                clarifying_question="Did you eat a full meal in the last 3 hours?",
                action_items=[
                    "If yes: Go light - banana, sports bar, or toast with nut butter",
                    "If no: Have something more substantial - rice with chicken or oatmeal",
                ],
            )

        if hours_until <= 2:
            advice = pre_activity_snack(context, meal_hours_ago or 0)
            return CoachingResponse(
                message=f"Since your match is in {hours_until} hours, {advice}",
                confidence=confidence,
                action_items=[
                    "Focus on easily digestible carbs",
                    "Keep protein moderate",
                    "Avoid high fat/fiber foods",
                    "Stay hydrated with small sips",
                ],
            )

        return CoachingResponse(
            message=(
                f"With {hours_until} hours until activity, you have time for a proper meal. "
                "Focus on carbs with moderate protein."
            ),
            confidence=confidence,
            action_items=[
                "Have a balanced meal now",
                "Light snack 1-2 hours before",
                "Hydrate consistently",
            ],
        )

    @staticmethod
    def _post_workout_recovery(text: str, confidence: Confidence) -> CoachingResponse:
        lowered = text.lower()
        if confidence == "low":
            return CoachingResponse(
                message="Let me help you with recovery.",
                confidence="low",
                clarifying_question="Is this normal muscle soreness or pain that limits your movement?",
                action_items=[
                    "If soreness: Light activity and stretching help",
                    "If pain: Rest completely and consider ice/heat",
                ],
            )
        if any(w in lowered for w in ("super", "very", "can't")):
            return CoachingResponse(
                message="That sounds like significant soreness. Today should be a recovery day.",
                confidence=confidence,
                action_items=[
                    "Skip intense training",
                    "Try gentle yoga or walking",
                    "Focus on protein intake (aim for your target)",
                    "Consider foam rolling or massage",
                    "Reassess tomorrow - see a physio if not improving",
                ],
            )
        return CoachingResponse(
            message="Normal post-workout soreness (DOMS). Active recovery will help.",
            confidence=confidence,
            action_items=[
                "20-30 minutes light cardio (cycling or walking)",
                "Dynamic stretching for affected muscles",
                "Hit your protein target today",
                "Extra hydration (add 1L to normal intake)",
                "Consider magnesium supplement",
            ],
        )

    @staticmethod
    def _sleep_affected_training(
        text: str, context: UserContext, confidence: Confidence
    ) -> CoachingResponse:
        m = _SLEEP_HOURS.search(text)
        sleep_hours: float | None = float(m.group(1)) if m else None
        if sleep_hours is None and context.last_sleep:
            sleep_hours = context.last_sleep.hours

        if not sleep_hours:
            return CoachingResponse(
                message="Sleep affects performance significantly.",
                confidence="low",
                clarifying_question="How many hours of sleep did you get?",
                follow_up_suggested=True,
            )

        shown = f"{sleep_hours:g}"
        if sleep_hours < 5:
            return CoachingResponse(
                message=f"With only {shown} hours of sleep, your recovery and performance will be compromised.",
                confidence=confidence,
                clarifying_question="Is this workout for training or competition?",
                action_items=[
                    "Training: Scale to 70% intensity or switch to recovery work",
                    "Competition: Normal warmup, expect reduced performance",
                    "Prioritize extra carbs for energy",
                    "Focus on hydration throughout",
                ],
            )
        if sleep_hours < 6:
            return CoachingResponse(
                message=f"{shown} hours is quite low and will affect your performance.",
                confidence=confidence,
                clarifying_question="How important is today's workout - can you make it a lighter session?",
                action_items=[
                    "Consider making it a recovery day",
                    "If you must train, reduce intensity by 30%",
                    "Focus on hydration and extra carbs",
                    "Listen to your body during warmup",
                ],
            )
        return CoachingResponse(
            message=(
                f"{shown} hours is suboptimal but manageable. "
                "Adjust intensity based on how you feel during warmup."
            ),
            confidence=confidence,
            action_items=[
                "Extended warmup (10-15 minutes)",
                "Start at 80% intensity",
                "Increase if feeling good after 15 minutes",
                "Extra focus on form over intensity",
            ],
        )

    @staticmethod
    def _weight_plateau(text: str, context: UserContext, confidence: Confidence) -> CoachingResponse:
        m = _WEEKS.search(text)
        weeks = int(m.group(1)) if m else 2

        if confidence == "low":
            return CoachingResponse(
                message="Let's address your weight plateau.",
                confidence="low",
                clarifying_question="Is your main goal weight loss or are you trying to maintain?",
                follow_up_suggested=True,
            )
        if context.profile.persona_type is PersonaType.WEIGHT_MGMT:
            return CoachingResponse(
                message=f"A {weeks}-week plateau is normal during weight loss. Your body is adapting.",
                confidence=confidence,
                action_items=[
                    "Option 1: Reduce portions by 10-15%",
                    "Option 2: Add 2000 steps to daily activity",
                    "Option 3: Introduce one 16-hour fast per week",
                    "Ensure 7+ hours sleep (cortisol affects weight)",
                    "Track measurements - you might be losing fat while gaining muscle",
                ],
            )
        return CoachingResponse(
            message="Weight stability might actually be a good sign depending on your goals.",
            confidence=confidence,
            action_items=[
                "Review your recent training intensity",
                "Check if strength/performance is improving",
                "Consider body composition changes",
                "Adjust calories only if weight loss is primary goal",
            ],
        )

    @staticmethod
    def _travel_nutrition(text: str, context: UserContext, confidence: Confidence) -> CoachingResponse:
        place = extract_restaurant(text) or "fast food"

        if confidence == "low":
            return CoachingResponse(
                message=f"I can help you make the best choice at {place}.",
                confidence="low",
                clarifying_question="Are you prioritizing performance/recovery or keeping calories lighter?",
                action_items=[
                    "Performance: Focus on protein + carbs",
                    "Calorie control: Prioritize protein + vegetables",
                ],
            )
        if context.profile.persona_type in (PersonaType.ENDURANCE, PersonaType.STRENGTH, PersonaType.SPORT):
            return CoachingResponse(
                message=f"At {place}, prioritize protein and quality carbs for recovery.",
                confidence=confidence,
                action_items=[
                    "Grilled chicken sandwich + side salad",
                    "Or: Double burger (no fries) for more protein",
                    "Add: Milk or chocolate milk if available",
                    "Skip: Fries, sugary sodas",
                    "Total target: 30-40g protein, 40-60g carbs",
                ],
            )
        return CoachingResponse(
            message=f"For lighter calories at {place}, focus on protein while minimizing extras.",
            confidence=confidence,
            action_items=[
                "Grilled chicken salad (dressing on side)",
                "Or: Grilled chicken sandwich (no mayo/cheese)",
                "Skip: Fries, regular sodas, desserts",
                "Drink: Water, diet soda, or unsweetened tea",
                "Target: Under 500 calories, 30g+ protein",
            ],
        )

    def _general(self, text: str, context: UserContext, confidence: Confidence) -> CoachingResponse:
        match = self._rule_cards.find_best_match(text, context)
        if match is not None:
            rendered = self._rule_cards.generate_rule_card_response(match, context, text)
            return CoachingResponse(
                message=rendered.message,
                confidence=match.confidence,
                clarifying_question=rendered.clarifying_question,
                action_items=list(rendered.action_items),
                safety_warnings=list(rendered.safety_warnings),
                follow_up_suggested=rendered.follow_up_suggested,
                identity_reinforcement=rendered.identity_reinforcement,
                rule_card={
                    "id": match.card.id,
                    "name": match.card.name,
                    "match_score": match.match_score,
                    "missing_context": list(match.missing_context),
                },
            )

        return CoachingResponse(
            message="I'll help you with that based on your profile and recent activity.",
            confidence=confidence,
            follow_up_suggested=True,
            action_items=[
                "Please provide more specific details about your question",
                "I can help with nutrition, training, recovery, performance optimization, and habit formation",
            ],
        )

    # ------------------------------------------------------------------
    # Habit formation
    # ------------------------------------------------------------------

    def _habit_formation(
        self, text: str, context: UserContext, confidence: Confidence, now: datetime
    ) -> CoachingResponse:
        lowered = text.lower()
        if any(w in lowered for w in ("struggling", "forgot", "missed")):
            return CoachingResponse(
                message=(
                    "No worries! When habits feel hard, we make them easier. "
                    "The behavior was too big for your current situation."
                ),
                confidence=confidence,
                clarifying_question=(
                    "What specifically made it difficult - was it remembering, "
                    "finding time, or the behavior itself?"
                ),
                action_items=[
                    "Option 1: Make it even tinier (if it was too hard)",
                    "Option 2: Change your trigger (if you forgot)",
                    "Option 3: Adjust your environment (if there were barriers)",
                    "Remember: Progress, not perfection",
                ],
                identity_reinforcement=(
                    "You're someone who adapts and finds what works - this is part of the process!"
                ),
            )

        if any(w in lowered for w in ("want to", "start", "begin")):
            desired = extract_desired_behavior(text)
            habit = design_tiny_habit(desired, context.profile.motivation_style)
            profile = context.profile
            analysis = calculate_behavior_score(
                profile.motivation_level, profile.ability_factors.overall, HABIT_PROMPT_STRENGTH
            )
            return CoachingResponse(
                message=(
                    f"Perfect! Let's start ridiculously small. Instead of \"{desired}\", "
                    f"try this tiny version: \"{habit.behavior}\"."
                ),
                confidence=confidence,
                action_items=[
                    f"Trigger: {habit.trigger}",
                    f"Behavior: {habit.behavior}",
                    f"Reward: {habit.reward}",
                    "Do this for 7 days, then we can expand",
                ],
                identity_reinforcement=habit.identity_connection,
                behavior_analysis=dataclasses.asdict(analysis),
                identity_goal=dataclasses.asdict(convert_to_identity_goal(desired)),
            )

        if any(w in lowered for w in ("did", "completed", "finished")):
            streak = max(1, calculate_current_streak(context.recent_logs, now))
            reinforcement = generate_identity_reinforcement(
                "someone who follows through on commitments", streak
            )
            return CoachingResponse(
                message=f"Excellent! You did it. {reinforcement}",
                confidence=confidence,
                action_items=[
                    "Take a moment to feel proud",
                    "Mark this completion somewhere visible",
                    "Remember: This is evidence of who you're becoming",
                ],
                identity_reinforcement=reinforcement,
            )

        return CoachingResponse(
            message="I'm here to help you build lasting habits. What specific behavior would you like to work on?",
            confidence="medium",
            clarifying_question=(
                "Are you trying to start a new habit, improve an existing one, or recover from a setback?"
            ),
            action_items=[
                "Start ridiculously small",
                "Link to existing habits",
                "Celebrate small wins",
                "Focus on identity over outcomes",
            ],
            identity_reinforcement="You're someone who invests in lasting change",
        )

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    @staticmethod
    def _enhance_with_behavioral_design(response: CoachingResponse) -> None:
        if not response.identity_reinforcement:
            response.identity_reinforcement = DEFAULT_IDENTITY

    @staticmethod
    def _enhance_with_pattern_insights(
        response: CoachingResponse, patterns: PatternDetectionResult | None
    ) -> None:
        if not patterns or not patterns.patterns:
            return
        relevant = [p for p in patterns.patterns if p.significance != "low"][:2]
        if not relevant:
            return

        insights: dict = {
            "detected_patterns": [
                {
                    "type": p.type,
                    "pattern": p.pattern,
                    "strength": p.strength,
                    "significance": p.significance,
                }
                for p in relevant
            ],
            "confidence": patterns.confidence,
        }
        recommendation = next(
            (r for r in patterns.recommendations if any(r.category in p.type for p in relevant)),
            None,
        )
        if recommendation is not None:
            insights["adaptive_recommendation"] = {
                "category": recommendation.category,
                "goal_adjustment": recommendation.recommended_change,
                "implementation_intention": recommendation.then_behavior,
            }
            response.action_items.append(f"Pattern insight: {recommendation.recommended_change}")
        response.pattern_insights = insights


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def pre_activity_snack(context: UserContext, meal_hours_ago: float) -> str:
    dietary = context.profile.dietary or []
    if "vegan" in dietary:
        return "try a banana with almond butter or an oat-based energy bar"
    if "gluten-free" in dietary or "gluten_free" in dietary:
        return "go with rice cakes and nut butter or a certified gluten-free bar"
    if meal_hours_ago < 2:
        return "keep it very light - just a banana or a few dates"
    if meal_hours_ago > 4:
        return "have something more substantial - a sandwich or bowl of oatmeal"
    return (
        "aim for something light and carb-focused - banana with yogurt, "
        "toast with honey, or an energy bar"
    )


def extract_restaurant(text: str) -> str | None:
    lowered = text.lower()
    for name in _RESTAURANTS:
        if name in lowered:
            return name[0].upper() + name[1:]
    return None


def extract_desired_behavior(text: str) -> str:
    lowered = text.lower()
    for phrases, behavior in _DESIRED_BEHAVIORS:
        if any(p in lowered for p in phrases):
            return behavior
    for pattern in (_WANT_TO, _START):
        m = pattern.search(lowered)
        if m:
            return m.group(1).strip()
    return "be healthier"
