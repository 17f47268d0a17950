"""Persona detection from activity logs.

Each persona is scored from four weighted signals: the words in the log
text, the exercise types, the stated goals, and weekly training
frequency with session length. Confidence grows with how far the top
score stands above the runner-up and with how much evidence backs it.
Stored profiles are refined by blending the old confidence with a new
detection rather than replacing it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta

from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    ActivityLog,
    PersonaType,
)

logger = logging.getLogger(__name__)

P = PersonaType

VOCABULARY_WEIGHT = 0.4
ACTIVITY_WEIGHT = 0.35
GOAL_WEIGHT = 0.15
FREQUENCY_WEIGHT = 0.1

# A weighted score this high counts as full evidence for a persona.
FULL_SIGNAL = 35.0
# Weight kept by the stored confidence when a new detection is folded in.
HISTORY_WEIGHT = 0.7
# A different persona replaces the stored one only above this confidence.
SWITCH_CONFIDENCE = 75.0

_WORD = re.compile(r"[a-z0-9']+")

_VOCABULARY: dict[PersonaType, frozenset[str]] = {
    P.ENDURANCE: frozenset({
        "run", "running", "ran", "jog", "jogging", "bike", "cycling", "swim", "swimming",
        "marathon", "5k", "10k", "pace", "intervals", "tempo", "triathlon", "zone",
        "vo2max", "threshold", "cadence", "splits",
    }),
    P.STRENGTH: frozenset({
        "lift", "lifting", "deadlift", "squat", "bench", "press", "row", "curl",
        "sets", "reps", "pr", "1rm", "bulk", "gains", "hypertrophy", "strength",
        "power", "amrap", "emom", "superset",
    }),
    P.SPORT: frozenset({
        "practice", "drill", "scrimmage", "game", "match", "tournament", "season",
        "competition", "team", "technique", "skill", "strategy", "opponent",
        "tennis", "basketball", "soccer", "football", "baseball", "hockey", "golf",
    }),
    P.PROFESSIONAL: frozenset({
        "work", "office", "meeting", "busy", "schedule", "quick", "efficient",
        "lunch", "commute", "routine", "stress", "energy", "focus", "productivity",
    }),
    P.WEIGHT_MGMT: frozenset({
        "weight", "lose", "diet", "calories", "calorie", "macros", "protein",
        "carbs", "deficit", "scale", "weigh", "slim", "tone", "transformation",
    }),
}

_CARDIO_TYPES = ("cardio", "run", "cycl", "bike", "swim", "endurance")
_STRENGTH_TYPES = ("strength", "lift", "weights", "resistance")
_SPORT_TYPES = ("sport", "tennis", "basketball", "soccer", "practice", "game")
_GENERAL_TYPES = ("fitness", "workout", "exercise", "training")

_GOAL_KEYWORDS: tuple[tuple[PersonaType, tuple[str, ...], int], ...] = (
    (P.ENDURANCE, ("marathon", "endurance", "cardio", "running", "cycling"), 30),
    (P.STRENGTH, ("strength", "muscle", "lifting", "bulk", "power"), 30),
    (P.SPORT, ("sport", "tennis", "basketball", "performance", "competition"), 35),
    (P.WEIGHT_MGMT, ("weight", "lose", "diet", "fat", "calories"), 30),
    (P.PROFESSIONAL, ("health", "fitness", "routine", "consistent", "busy"), 25),
)


@dataclass
class PersonaDetection:
    persona_type: PersonaType
    confidence: float                      # 0-100
    scores: dict[PersonaType, float] = field(default_factory=dict)


def _zero() -> dict[PersonaType, float]:
    return {p: 0.0 for p in PersonaType}


def score_vocabulary(logs: list[ActivityLog]) -> dict[PersonaType, float]:
    """Five points per matching word, capped at 100."""
    words = [w for log in logs for w in _WORD.findall(log.text)]
    scores = _zero()
    for persona, keywords in _VOCABULARY.items():
        scores[persona] = min(sum(1 for w in words if w in keywords) * 5, 100)
    return scores


def score_activity_types(logs: list[ActivityLog]) -> dict[PersonaType, float]:
    types = [
        str(log.data["type"]).lower()
        for log in logs
        if log.is_exercise and log.data.get("type")
    ]

    def count(keys: tuple[str, ...]) -> int:
        return sum(1 for t in types if any(k in t for k in keys))

    cardio, strength = count(_CARDIO_TYPES), count(_STRENGTH_TYPES)
    return {
        P.ENDURANCE: cardio * 20,
        P.STRENGTH: strength * 20,
        P.SPORT: count(_SPORT_TYPES) * 25,
        P.PROFESSIONAL: count(_GENERAL_TYPES) * 15,
        P.WEIGHT_MGMT: (cardio + strength) * 10,
    }


def score_goals(goals: list[str]) -> dict[PersonaType, float]:
    scores = _zero()
    for goal in goals:
        lowered = goal.lower()
        for persona, keywords, points in _GOAL_KEYWORDS:
            if any(k in lowered for k in keywords):
                scores[persona] += points
    return scores


def score_frequency(logs: list[ActivityLog]) -> dict[PersonaType, float]:
    """Sessions per week and average minutes; silent when no duration is logged."""
    scores = _zero()
    sessions = [log for log in logs if log.is_exercise]
    durations = [d for d in (log.number("duration") for log in sessions) if d is not None]
    if not durations:
        return scores

    span = sessions[-1].timestamp - sessions[0].timestamp
    weeks = max(1.0, span / timedelta(days=7))
    frequency = len(sessions) / weeks
    duration = sum(durations) / len(durations)

    if frequency >= 5 and duration >= 60:
        scores[P.ENDURANCE] += 20
        scores[P.SPORT] += 20
    if 3 <= frequency <= 5 and 45 <= duration <= 90:
        scores[P.STRENGTH] += 25
        scores[P.WEIGHT_MGMT] += 20
    if frequency <= 3 and duration <= 45:
        scores[P.PROFESSIONAL] += 30
    return scores


def detect_persona(logs: list[ActivityLog], goals: list[str] | None = None) -> PersonaDetection | None:
    """Score every persona from the logs and goals; None when nothing points anywhere."""
    logs = sorted(logs, key=lambda log: log.timestamp)
    scores = _zero()
    for signal, weight in (
        (score_vocabulary(logs), VOCABULARY_WEIGHT),
        (score_activity_types(logs), ACTIVITY_WEIGHT),
        (score_goals(goals or []), GOAL_WEIGHT),
        (score_frequency(logs), FREQUENCY_WEIGHT),
    ):
        for persona, value in signal.items():
            scores[persona] += value * weight

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    (top, top_score), (_, runner_up) = ranked[0], ranked[1]
    if top_score <= 0:
        return None

    separation = (top_score - runner_up) / top_score
    evidence = min(1.0, top_score / FULL_SIGNAL)
    confidence = round(100 * separation * evidence, 1)
    logger.debug("Detected persona %s (confidence %.1f)", top.value, confidence)
    return PersonaDetection(persona_type=top, confidence=confidence, scores=scores)


def refine_persona(
    current: PersonaType,
    current_confidence: float,
    detection: PersonaDetection | None,
) -> tuple[PersonaType, float]:
    """Blend a new detection into the stored persona (70% old, 30% new).

    The persona only switches when the new detection disagrees with
    confidence above :data:`SWITCH_CONFIDENCE`.
    """
    if detection is None:
        return current, current_confidence
    blended = round(current_confidence * HISTORY_WEIGHT + detection.confidence * (1 - HISTORY_WEIGHT), 1)
    if detection.persona_type is not current and detection.confidence <= SWITCH_CONFIDENCE:
        return current, blended
    return detection.persona_type, blended
