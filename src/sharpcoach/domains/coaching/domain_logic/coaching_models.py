"""Coaching data model: activity logs, user context, and engine result types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Tiers and tags
# ---------------------------------------------------------------------------

Confidence = Literal["high", "medium", "low"]
Significance = Literal["high", "medium", "low"]
Severity = Literal["critical", "high", "medium", "low", "none"]
Urgency = Literal["immediate", "today", "this_week"]

# Total order used when merging safety findings.
SEVERITY_RANK: dict[str, int] = {
    "none": 0,
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}

CONFIDENCE_LEVELS: tuple[str, ...] = ("high", "medium", "low")


class LogCategory(str, Enum):
    """Kind of activity record produced by the upstream parser."""

    NUTRITION = "nutrition"
    EXERCISE = "exercise"
    WEIGHT = "weight"
    MOOD = "mood"
    SLEEP = "sleep"

    @classmethod
    def parse(cls, value: str | LogCategory) -> LogCategory:
        if isinstance(value, LogCategory):
            return value
        normalized = str(value).strip().lower()
        # Sport sessions are exercise for every analysis in this package.
        if normalized in ("sport", "workout", "training"):
            return cls.EXERCISE
        if normalized in ("food", "meal", "hydration"):
            return cls.NUTRITION
        return cls(normalized)


class PersonaType(str, Enum):
    """Coarse user classification that drives message personalization."""

    ENDURANCE = "endurance"
    STRENGTH = "strength"
    SPORT = "sport"
    PROFESSIONAL = "professional"
    WEIGHT_MGMT = "weight_mgmt"


class Scenario(str, Enum):
    """Scenario tags the orchestrator routes on."""

    PRE_ACTIVITY_NUTRITION = "pre_activity_nutrition"
    POST_WORKOUT_RECOVERY = "post_workout_recovery"
    SLEEP_AFFECTED_TRAINING = "sleep_affected_training"
    WEIGHT_PLATEAU = "weight_plateau"
    TRAVEL_NUTRITION = "travel_nutrition"
    HABIT_FORMATION = "habit_formation"
    GENERAL = "general"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _num(val: Any, default: float | None = None) -> float | None:
    """Safely convert to float, returning default for None or non-numeric."""
    if val is None or isinstance(val, bool):
        return default
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 string (or pass through a datetime) as an aware datetime.

    Naive values are assumed to be UTC.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600.0


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivityLog:
    """A single parsed activity record. Never mutated by the engine."""

    id: str
    timestamp: datetime
    category: LogCategory
    data: dict[str, Any] = field(default_factory=dict)
    confidence: Confidence = "medium"
    original_text: str = ""
    subjective_notes: str | None = None

    @property
    def is_exercise(self) -> bool:
        return self.category is LogCategory.EXERCISE

    @property
    def text(self) -> str:
        """Lower-cased free text (original input plus notes) for keyword scans."""
        parts = [self.original_text or "", self.subjective_notes or ""]
        return " ".join(p for p in parts if p).lower()

    def number(self, *keys: str, default: float | None = None) -> float | None:
        """Return the first numeric value found under ``keys`` in ``data``."""
        for key in keys:
            value = _num(self.data.get(key))
            if value is not None:
                return value
        return default

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityLog:
        return cls(
            id=str(data.get("id", "")),
            timestamp=parse_timestamp(data.get("timestamp") or data.get("logged_at")),
            category=LogCategory.parse(data.get("category") or data.get("type") or ""),
            data=dict(data.get("data") or data.get("parsed_data") or {}),
            confidence=data.get("confidence", data.get("confidence_level", "medium")),
            original_text=data.get("original_text", data.get("originalText", "")) or "",
            subjective_notes=data.get("subjective_notes") or data.get("notes"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "data": dict(self.data),
            "confidence": self.confidence,
            "original_text": self.original_text,
            "subjective_notes": self.subjective_notes,
        }


@dataclass(frozen=True)
class AbilityFactors:
    """How easy acting is for this user, each factor on a 0-10 scale."""

    physical_capability: float = 7.0
    time_availability: float = 6.0
    cognitive_load: float = 5.0
    social_support: float = 6.0
    resource_access: float = 8.0

    @property
    def overall(self) -> float:
        return (
            self.physical_capability
            + self.time_availability
            + self.cognitive_load
            + self.social_support
            + self.resource_access
        ) / 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AbilityFactors:
        data = data or {}
        defaults = cls()
        return cls(**{
            name: _num(data.get(name), getattr(defaults, name))
            for name in (
                "physical_capability", "time_availability", "cognitive_load",
                "social_support", "resource_access",
            )
        })


@dataclass
class UserProfile:
    """Static-ish user attributes supplied by the persistence layer."""

    persona_type: PersonaType = PersonaType.PROFESSIONAL
    dietary: list[str] | None = None
    goals: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    identity_goals: list[str] = field(default_factory=list)
    health_conditions: list[str] = field(default_factory=list)
    medications: list[str] = field(default_factory=list)
    resting_hr: float | None = None
    motivation_style: str | None = None       # 'data_driven' | 'emotional' | 'social' | 'competitive'
    fitness_level: str | None = None          # 'beginner' | 'developing' | 'established'
    motivation_level: float = 7.0             # 0-10
    ability_factors: AbilityFactors = field(default_factory=AbilityFactors)
    persona_stated: bool = False              # persona came from the caller, not the default

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UserProfile:
        data = data or {}
        health = data.get("health") or {}
        motivation = data.get("motivation_profile") or {}
        persona = data.get("persona_type") or data.get("user_type") or data.get("userType")
        return cls(
            persona_type=PersonaType(persona) if persona else PersonaType.PROFESSIONAL,
            dietary=data.get("dietary", data.get("dietary_restrictions")),
            goals=list(data.get("goals") or []),
            constraints=list(data.get("constraints") or []),
            identity_goals=list(data.get("identity_goals") or []),
            health_conditions=list(
                data.get("health_conditions") or health.get("conditions") or []
            ),
            medications=list(data.get("medications") or health.get("medications") or []),
            resting_hr=_num(data.get("resting_hr", data.get("resting_heart_rate"))),
            motivation_style=data.get("motivation_style") or motivation.get("motivation_style"),
            fitness_level=data.get("fitness_level"),
            motivation_level=_num(
                data.get("motivation_level", motivation.get("motivation_level")), 7.0
            ),
            ability_factors=AbilityFactors.from_dict(data.get("ability_factors")),
            persona_stated=bool(persona),
        )


@dataclass(frozen=True)
class MealRef:
    timestamp: datetime
    description: str = ""


@dataclass(frozen=True)
class WorkoutRef:
    timestamp: datetime
    type: str = "workout"
    intensity: float | None = None


@dataclass(frozen=True)
class SleepRef:
    hours: float
    quality: float | None = None


@dataclass
class UserContext:
    """Read-only per-request snapshot handed to every engine."""

    profile: UserProfile = field(default_factory=UserProfile)
    recent_logs: list[ActivityLog] = field(default_factory=list)
    last_meal: MealRef | None = None
    last_workout: WorkoutRef | None = None
    last_sleep: SleepRef | None = None
    # Previously learned, user-reported habits (pre-match meals, typical sleep, ...).
    known_patterns: dict[str, Any] = field(default_factory=dict)

    def logs_of(self, category: LogCategory) -> list[ActivityLog]:
        return [log for log in self.recent_logs if log.category is category]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UserContext:
        """Build a context from a JSON-style payload.

        Convenience pointers that are not given explicitly are derived from
        the most recent matching log.
        """
        data = data or {}
        logs = [ActivityLog.from_dict(item) for item in data.get("recent_logs", [])]
        logs.sort(key=lambda log: log.timestamp)
        context = cls(
            profile=UserProfile.from_dict(data.get("profile")),
            recent_logs=logs,
            known_patterns=dict(data.get("known_patterns") or {}),
        )

        meal = data.get("last_meal")
        workout = data.get("last_workout")
        sleep = data.get("last_sleep")
        if meal:
            context.last_meal = MealRef(
                timestamp=parse_timestamp(meal["timestamp"]),
                description=meal.get("description", ""),
            )
        if workout:
            context.last_workout = WorkoutRef(
                timestamp=parse_timestamp(workout["timestamp"]),
                type=workout.get("type", "workout"),
                intensity=_num(workout.get("intensity")),
            )
        if sleep:
            context.last_sleep = SleepRef(
                hours=float(sleep["hours"]),
                quality=_num(sleep.get("quality")),
            )
        if data.get("derive_pointers", True):
            derive_pointers(context)
        return context


def derive_pointers(context: UserContext) -> UserContext:
    """Fill missing last-meal / last-workout / last-sleep pointers from the log window."""
    ordered = sorted(context.recent_logs, key=lambda log: log.timestamp, reverse=True)
    for log in ordered:
        if context.last_meal is None and log.category is LogCategory.NUTRITION:
            context.last_meal = MealRef(timestamp=log.timestamp, description=log.original_text)
        elif context.last_workout is None and log.category is LogCategory.EXERCISE:
            context.last_workout = WorkoutRef(
                timestamp=log.timestamp,
                type=str(log.data.get("type") or "workout"),
                intensity=log.number("intensity"),
            )
        elif context.last_sleep is None and log.category is LogCategory.SLEEP:
            hours = log.number("hours")
            if hours is not None:
                context.last_sleep = SleepRef(hours=hours, quality=log.number("quality"))
    return context


def logs_since(logs: list[ActivityLog], now: datetime, *, days: float) -> list[ActivityLog]:
    cutoff = now - timedelta(days=days)
    return [log for log in logs if log.timestamp >= cutoff]


# ---------------------------------------------------------------------------
# Safety results
# ---------------------------------------------------------------------------

@dataclass
class SafetyCheckResult:
    """Outcome of a single safety check."""

    check: str
    safe: bool = True
    severity: Severity = "none"
    block_activity: bool = False
    requires_medical_attention: bool = False
    message: str = ""
    recommendation: str = ""
    matched: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OvertrainingScore:
    score: int
    status: Literal["green", "yellow", "red"]
    factors: list[str] = field(default_factory=list)
    recommendation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ComprehensiveSafetyReport:
    safe: bool
    checks: list[SafetyCheckResult]
    overtraining: OvertrainingScore
    final_recommendation: str

    @property
    def blocking(self) -> list[SafetyCheckResult]:
        return [c for c in self.checks if c.block_activity]

    @property
    def highest_severity(self) -> Severity:
        worst: Severity = "none"
        for check in self.checks:
            if SEVERITY_RANK[check.severity] > SEVERITY_RANK[worst]:
                worst = check.severity
        return worst

    def to_dict(self) -> dict[str, Any]:
        return {
            "safe": self.safe,
            "highest_severity": self.highest_severity,
            "checks": [c.to_dict() for c in self.checks],
            "overtraining": self.overtraining.to_dict(),
            "final_recommendation": self.final_recommendation,
        }


# ---------------------------------------------------------------------------
# Pattern results
# ---------------------------------------------------------------------------

PatternType = Literal["sleep_performance", "nutrition_gap", "recovery_pattern", "mood_activity"]


@dataclass
class DetectedPattern:
    type: PatternType
    pattern: str
    strength: float
    data_points: int
    time_range: str
    significance: Significance
    correlation_score: float | None = None


@dataclass
class InterventionTrigger:
    condition: str
    when_to_show: Literal["before_activity", "after_activity", "during_low_mood", "poor_recovery"]
    timing_hours: list[int]


@dataclass
class JustInTimeIntervention:
    trigger: InterventionTrigger
    message: str
    action_type: Literal[
        "tiny_habit", "implementation_intention", "environmental_cue", "social_reminder"
    ]
    urgency: Urgency
    habit_context: str = ""
    user_type_specific: bool = False
    motivation_style_adapted: bool = False


@dataclass
class TinyHabit:
    behavior: str
    trigger: str
    reward: str
    identity_connection: str
    difficulty_level: int = 1


@dataclass
class AdaptiveRecommendation:
    category: Literal["sleep", "nutrition", "recovery", "mood"]
    current_goal: str
    recommended_change: str
    rationale: str
    tiny_habit: TinyHabit
    if_situation: str
    then_behavior: str
    identity_connection: str


@dataclass
class PatternDetectionResult:
    patterns: list[DetectedPattern] = field(default_factory=list)
    interventions: list[JustInTimeIntervention] = field(default_factory=list)
    recommendations: list[AdaptiveRecommendation] = field(default_factory=list)
    confidence: int = 0
    data_points: int = 0
    skipped_analyses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Coaching response
# ---------------------------------------------------------------------------

@dataclass
class CoachingResponse:
    """What the orchestrator hands back to the hosting layer."""

    message: str
    confidence: Confidence
    clarifying_question: str | None = None
    action_items: list[str] = field(default_factory=list)
    safety_warnings: list[str] = field(default_factory=list)
    follow_up_suggested: bool = False
    identity_reinforcement: str | None = None
    scenario: Scenario = Scenario.GENERAL
    rule_card: dict[str, Any] | None = None
    pattern_insights: dict[str, Any] | None = None
    behavior_analysis: dict[str, Any] | None = None
    identity_goal: dict[str, Any] | None = None
    blocked: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["scenario"] = self.scenario.value
        return result


# ---------------------------------------------------------------------------
# Personalization
# ---------------------------------------------------------------------------

@dataclass
class PersonalizationProfile:
    """Learned personalization state, persisted encrypted per user."""

    user_id: str
    persona_type: PersonaType = PersonaType.PROFESSIONAL
    persona_confidence: float = 0.0          # 0-100
    motivation_style: str | None = None
    feedback_style: str | None = None        # 'gentle' | 'direct' | None
    habit_preferences: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PersonalizationProfile:
        persona = data.get("persona_type") or data.get("user_type")
        updated = data.get("updated_at")
        return cls(
            user_id=str(data.get("user_id", "")),
            persona_type=PersonaType(persona) if persona else PersonaType.PROFESSIONAL,
            persona_confidence=_num(data.get("persona_confidence"), 0.0),
            motivation_style=data.get("motivation_style"),
            feedback_style=data.get("feedback_style"),
            habit_preferences=dict(data.get("habit_preferences") or {}),
            updated_at=parse_timestamp(updated) if updated else utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "persona_type": self.persona_type.value,
            "persona_confidence": self.persona_confidence,
            "motivation_style": self.motivation_style,
            "feedback_style": self.feedback_style,
            "habit_preferences": dict(self.habit_preferences),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_user_profile(cls, user_id: str, profile: UserProfile) -> PersonalizationProfile:
        return cls(
            user_id=user_id,
            persona_type=profile.persona_type,
            motivation_style=profile.motivation_style,
            habit_preferences={"fitness_level": profile.fitness_level} if profile.fitness_level else {},
        )
