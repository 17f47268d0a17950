"""Coaching bindings for the generic rule cards engine.

Supplies the context-field resolver, the card-family predicates, and the
safety-condition evaluators that :class:`RuleCardsEngine` is configured
with, plus :func:`build_rule_cards_engine` which loads the bundled catalog.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from sharpcoach.core.rulecards.engine import RuleCardsEngine
from sharpcoach.core.rulecards.loader import load_rule_card_directory
from sharpcoach.core.rulecards.registry import RuleCardRegistry
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    LogCategory,
    UserContext,
    hours_between,
    utcnow,
)

logger = logging.getLogger(__name__)

RULE_CARD_DIR = Path(__file__).resolve().parent.parent / "rulecards"

_TIME_UNTIL = re.compile(r"\bin\s+(\d+(?:\.\d+)?)\s*(hours?|hrs?|h|minutes?|mins?)\b")
_TRAINING_WORDS = re.compile(
    r"\b(run|running|lift|lifting|weights|match|game|practice|race|ride|swim|hiit|"
    r"session|workout|training|class)\b"
)
_ACTIVITY_WORDS = re.compile(
    r"\b(run|running|jog|lift|lifting|match|game|practice|race|ride|cycling|swim|hiit|"
    r"yoga|tennis|basketball|soccer|football|golf|hockey|climb|hike|spin class)\b"
)
_IMPORTANCE_WORDS = re.compile(r"\b(competition|race|match|game|tournament|general fitness|easy day)\b")
_INTENSITY_WORDS = re.compile(r"\b(easy|light|moderate|hard|intense|tempo|interval|max|recovery)\b")
_HYDRATION_SYMPTOMS = re.compile(r"\b(thirsty|dry mouth|headache|dizzy|dark urine|cramp\w*|dehydrat\w*)\b")
_URINE_COLOR = re.compile(r"\b(clear|pale|dark)\s+(yellow\s+)?urine\b|\burine\s+is\s+(clear|pale|dark)")

_UNUSUAL_PAIN = re.compile(r"\b(sharp|stabbing|shooting|sudden|unusual)\s+pain\b|\bpain\s+in\s+my\s+joint")
_SEVERE_DEHYDRATION = re.compile(
    r"\b(confus\w*|fainted|faint|no urine|haven'?t peed|rapid heartbeat|sunken eyes|extreme thirst)\b"
)
_DIGESTIVE = re.compile(r"\b(stomach|bloat\w*|cramps?|diarrh\w*|nause\w*|ibs|reflux|digest\w*)\b")
_NEW_FOOD = re.compile(r"\b(new|never tried|try(ing)? (a |some )?(new|different))\b")


def _intensity_word(value: float | None) -> str | None:
    if value is None:
        return None
    if value > 7:
        return "high-intensity"
    if value >= 4:
        return "moderate"
    return "light"


class CoachingContextFields:
    """Resolves which named context fields a coaching request supplies.

    Field availability reflects what the engine actually knows: pointers in
    the context, profile attributes, recent-log volume, learned patterns,
    and facts stated in the input text.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def available_fields(self, context: UserContext, text: str) -> set[str]:
        lowered = text.lower()
        fields: set[str] = set()

        if context.last_meal:
            fields.add("last_meal_time")
        if context.last_workout:
            fields.update(("workout_type", "time_since_workout"))
            if context.last_workout.intensity is not None:
                fields.add("workout_intensity")
        if context.last_sleep:
            fields.update(("sleep_hours", "sleep_quality"))
        if context.last_workout or context.profile.persona_stated or _ACTIVITY_WORDS.search(lowered):
            fields.add("activity_type")
        if context.profile.dietary is not None:
            fields.add("dietary_preferences")
        if context.recent_logs:
            fields.add("recent_activity")

        exercise = context.logs_of(LogCategory.EXERCISE)
        if exercise:
            fields.add("activity_level")
            if exercise[-1].number("duration") is not None:
                fields.add("workout_duration")
        if any(_is_hydration_log(log) for log in context.recent_logs):
            fields.add("daily_water_intake")

        if _TIME_UNTIL.search(lowered):
            fields.add("time_until_activity")
        if _TRAINING_WORDS.search(lowered) or context.last_workout:
            fields.add("training_type")
        if _IMPORTANCE_WORDS.search(lowered):
            fields.add("training_importance")
        if _INTENSITY_WORDS.search(lowered) or (
            context.last_workout and context.last_workout.intensity is not None
        ):
            fields.add("activity_intensity")
        if _HYDRATION_SYMPTOMS.search(lowered):
            fields.add("symptom_description")
        if _URINE_COLOR.search(lowered):
            fields.add("urine_color")

        fields.update(context.known_patterns.keys())
        return fields

    def template_values(self, context: UserContext, text: str) -> dict[str, Any]:
        lowered = text.lower()
        values: dict[str, Any] = {
            "activity_type": context.profile.persona_type.value.replace("_", " ") + " training",
            "meal_recommendation": _meal_recommendation(context),
            "calculated_water_needs": _water_needs_litres(context),
        }

        m = _TIME_UNTIL.search(lowered)
        if m:
            amount, unit = m.groups()
            unit_word = "minutes" if unit.startswith("m") else "hours"
            values["time_until_activity"] = f"{amount} {unit_word}"

        if context.last_workout:
            values["workout_type"] = context.last_workout.type or "workout"
            values["activity_type"] = context.last_workout.type or values["activity_type"]
            values["workout_intensity"] = _intensity_word(context.last_workout.intensity)
            values["training_type"] = context.last_workout.type or "training"
        t = _TRAINING_WORDS.search(lowered)
        if t:
            values["training_type"] = t.group(1)
        a = _ACTIVITY_WORDS.search(lowered)
        if a:
            values["activity_type"] = a.group(1)

        if context.last_sleep:
            values["sleep_hours"] = context.last_sleep.hours
            quality = context.last_sleep.quality
            values["sleep_quality"] = "good" if quality is not None and quality > 7 else "poor"

        exercise_count = len(context.logs_of(LogCategory.EXERCISE))
        if exercise_count:
            values["activity_level"] = "high" if exercise_count >= 5 else "moderate"
        water = sum(1 for log in context.recent_logs if _is_hydration_log(log))
        if water:
            values["daily_water_intake"] = f"{water} logged drinks"
        return values


def _is_hydration_log(log) -> bool:
    if str(log.data.get("type", "")).lower() == "hydration":
        return True
    return "water" in log.text or "drink" in log.text


def _meal_recommendation(context: UserContext) -> str:
    dietary = [d.lower() for d in context.profile.dietary or []]
    if "vegan" in dietary or "vegetarian" in dietary:
        return "rice or oats with tofu or legumes and some fruit"
    if "gluten_free" in dietary or "gluten-free" in dietary:
        return "rice or potatoes with lean protein and cooked vegetables"
    return "easily digestible carbs with moderate protein"


def _water_needs_litres(context: UserContext) -> float:
    """35 ml per kg of the latest logged weight, plus 0.5 L when training regularly."""
    weights = [log.number("weight") for log in context.logs_of(LogCategory.WEIGHT)]
    weights = [w for w in weights if w]
    litres = weights[-1] * 0.035 if weights else 2.5
    if len(context.logs_of(LogCategory.EXERCISE)) >= 3:
        litres += 0.5
    return round(litres, 1)


# ---------------------------------------------------------------------------
# Family predicates: (context, lower-cased text) -> bool
# ---------------------------------------------------------------------------

def make_family_predicates(clock: Callable[[], datetime] = utcnow) -> dict[str, Callable[[UserContext, str], bool]]:
    def pre_workout(context: UserContext, text: str) -> bool:
        return any(w in text for w in ("before", "in ", "until", "workout", "exercise", "training"))

    def post_workout(context: UserContext, text: str) -> bool:
        if any(w in text for w in ("after", "finished", "done", "recovery", "sore")):
            return True
        last = context.last_workout
        return bool(last and hours_between(last.timestamp, clock()) < 2)

    def sleep(context: UserContext, text: str) -> bool:
        if any(w in text for w in ("sleep", "tired", "exhausted")):
            return True
        return bool(context.last_sleep and context.last_sleep.hours < 7)

    def hydration(context: UserContext, text: str) -> bool:
        return any(w in text for w in ("water", "thirsty", "dehydrat", "headache", "urine"))

    return {
        "pre_workout": pre_workout,
        "post_workout": post_workout,
        "sleep": sleep,
        "hydration": hydration,
    }


# ---------------------------------------------------------------------------
# Safety conditions: (context, lower-cased text) -> bool
# ---------------------------------------------------------------------------

def chronic_sleep_issues(context: UserContext, text: str) -> bool:
    """At least five of the last seven sleep logs, all under six hours."""
    recent = sorted(context.logs_of(LogCategory.SLEEP), key=lambda log: log.timestamp, reverse=True)[:7]
    return len(recent) >= 5 and all(log.number("hours", default=8) < 6 for log in recent)


SAFETY_CONDITIONS: dict[str, Callable[[UserContext, str], bool]] = {
    "chronic_sleep_issues": chronic_sleep_issues,
    "unusual_pain_mentioned": lambda context, text: bool(_UNUSUAL_PAIN.search(text)),
    "severe_dehydration_symptoms": lambda context, text: bool(_SEVERE_DEHYDRATION.search(text)),
    "digestive_issues_mentioned": lambda context, text: bool(_DIGESTIVE.search(text)),
    "new_food_suggested": lambda context, text: bool(_NEW_FOOD.search(text)),
}


def build_rule_cards_engine(
    card_dir: str | Path = RULE_CARD_DIR,
    *,
    clock: Callable[[], datetime] = utcnow,
    match_threshold: float = 10.0,
) -> RuleCardsEngine:
    """Load the card catalog and wire it to the coaching bindings."""
    registry = RuleCardRegistry()
    count = load_rule_card_directory(card_dir, registry)
    logger.info("Rule cards engine ready with %d cards from %s", count, card_dir)
    return RuleCardsEngine(
        registry,
        fields=CoachingContextFields(clock),
        family_predicates=make_family_predicates(clock),
        safety_conditions=SAFETY_CONDITIONS,
        match_threshold=match_threshold,
    )
