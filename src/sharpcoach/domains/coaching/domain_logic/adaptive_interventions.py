"""Adaptive behavioral interventions.

Context-aware prompts with persona-specific content, cooldowns and daily
caps, learned effectiveness, and a graduated-difficulty ladder. Usage
state lives in an injected :class:`InterventionHistoryStore`; the engine
itself holds no mutable state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Literal

from sharpcoach.core.storage.history import InterventionHistoryStore
from sharpcoach.core.storage.models import InterventionUsageRecord
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    ActivityLog,
    PersonaType,
    PersonalizationProfile,
)

logger = logging.getLogger(__name__)

InterventionType = Literal["motivation", "reminder", "suggestion", "celebration"]
Intensity = Literal["low", "medium", "high"]
Difficulty = Literal["tiny", "moderate", "ambitious"]

DEFAULT_THRESHOLD = 60.0
DEFAULT_EFFECTIVENESS = 0.8
INITIAL_OUTCOME_RATE = 0.7

CONTEXT_WEIGHT = 0.4
STATE_WEIGHT = 0.6


@dataclass(frozen=True)
class BehavioralContext:
    """When (in the user's local time) and for whom a prompt is considered."""

    user_id: str
    now: datetime
    location: str | None = None
    available_minutes: int | None = None

    @property
    def hour(self) -> int:
        return self.now.hour


ContextMatch = Callable[[BehavioralContext], float]
StateMatch = Callable[[list[ActivityLog], BehavioralContext], float]


@dataclass(frozen=True)
class InterventionTemplate:
    id: str
    type: InterventionType
    context_match: ContextMatch
    user_state_match: StateMatch
    cooldown_minutes: int
    max_daily_uses: int
    messages: dict[PersonaType, list[str]]
    actions: dict[PersonaType, list[str]]
    success_conditions: list[str] = field(default_factory=list)

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)


@dataclass
class Intervention:
    id: str
    template_id: str
    type: InterventionType
    title: str
    message: str
    action_prompt: str
    intensity: Intensity
    personalized_for: PersonaType
    score: float
    cooldown_minutes: int
    max_daily_uses: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "action_prompt": self.action_prompt,
            "intensity": self.intensity,
            "personalized_for": self.personalized_for.value,
            "score": round(self.score, 2),
            "cooldown_minutes": self.cooldown_minutes,
            "max_daily_uses": self.max_daily_uses,
        }


@dataclass
class InterventionOutcome:
    engaged: bool
    action_taken: bool
    success_conditions_met: list[str] = field(default_factory=list)
    time_to_action_minutes: float | None = None
    user_feedback: Literal["positive", "neutral", "negative"] | None = None


@dataclass
class GraduatedIntervention:
    difficulty: Difficulty
    suggestions: list[str]
    time_commitment: str


# ---------------------------------------------------------------------------
# Activity helpers
# ---------------------------------------------------------------------------

def newest_first(activities: list[ActivityLog]) -> list[ActivityLog]:
    return sorted(activities, key=lambda log: log.timestamp, reverse=True)


def calculate_current_streak(activities: list[ActivityLog], today: datetime) -> int:
    """Consecutive active days counted back from ``today``, allowing one rest day per step.

    Several activities on the same calendar day count once.
    """
    days = sorted({log.timestamp.date() for log in activities}, reverse=True)
    streak = 0
    for day in days:
        diff = (today.date() - day).days
        if diff in (streak, streak + 1):
            streak += 1
        else:
            break
    return streak


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def _morning_context(ctx: BehavioralContext) -> float:
    return 85 if 6 <= ctx.hour <= 9 else 0


def _morning_state(activities: list[ActivityLog], ctx: BehavioralContext) -> float:
    morning = [a for a in activities if 6 <= a.timestamp.hour <= 10]
    return 70 if morning else 30


def _streak_recovery_state(activities: list[ActivityLog], ctx: BehavioralContext) -> float:
    if not activities:
        return 90
    latest = newest_first(activities)[0]
    days_since = (ctx.now - latest.timestamp).days
    return 85 if days_since >= 2 else 0


def _afternoon_context(ctx: BehavioralContext) -> float:
    return 75 if 14 <= ctx.hour <= 16 else 0


def _milestone_state(activities: list[ActivityLog], ctx: BehavioralContext) -> float:
    streak = calculate_current_streak(activities, ctx.now)
    return 95 if streak > 0 and streak % 7 == 0 else 0


P = PersonaType

DEFAULT_TEMPLATES: tuple[InterventionTemplate, ...] = (
    InterventionTemplate(
        id="morning_energy_boost",
        type="motivation",
        context_match=_morning_context,
        user_state_match=_morning_state,
        cooldown_minutes=12 * 60,
        max_daily_uses=1,
        messages={
            P.ENDURANCE: [
                "🏃‍♀️ Your body is primed for morning cardio! Early training builds mental toughness for race day.",
                "⚡ Champions start their day with movement. Your cardiovascular system is most receptive now.",
                "🌅 Morning miles are bonus miles - they don't count against your evening energy reserves.",
            ],
            P.STRENGTH: [
                "💪 Morning lifting activates your nervous system for the entire day. You'll feel unstoppable.",
                "🔥 Your testosterone levels peak in the morning - perfect timing for strength gains.",
                "⚡ Start strong, finish stronger. Morning workouts build unbreakable discipline.",
            ],
            P.SPORT: [
                "🎾 Champions practice when others sleep. Morning sessions sharpen your competitive edge.",
                "🏀 Your reaction time and focus are sharpest in the AM - perfect for skill work.",
                "⚽ Early training builds the mental game. You're developing warrior discipline.",
            ],
            P.PROFESSIONAL: [
                "💼 A quick morning workout = 8 hours of enhanced focus and energy at work.",
                "⚡ 15 minutes now saves 3 hours of afternoon sluggishness. Invest in your productivity.",
                "🧠 Morning exercise literally grows your brain. Your best ideas happen post-workout.",
            ],
            P.WEIGHT_MGMT: [
                "🔥 Morning metabolism boost lasts all day. You're setting your fat-burning furnace on high.",
                "⚖️ Early exercise controls appetite hormones naturally. You'll make better food choices today.",
                "💚 Start your day with self-care. Every morning workout is a vote for the person you're becoming.",
            ],
        },
        actions={
            P.ENDURANCE: ["Log a 20-minute easy run", "Quick 15-minute bike ride", "Swimming or cardio session"],
            P.STRENGTH: ["15-minute strength circuit", "Quick bodyweight workout", "Core and mobility session"],
            P.SPORT: ["Skill practice session", "Sport-specific drills", "Quick technique work"],
            P.PROFESSIONAL: ["10-minute morning energizer", "Quick walk or stretching", "Bodyweight exercises"],
            P.WEIGHT_MGMT: ["Fat-burning cardio session", "Metabolism-boosting workout", "Quick calorie burner"],
        },
        success_conditions=[
            "workout_logged_within_2_hours",
            "positive_mood_reported",
            "energy_level_increased",
        ],
    ),
    InterventionTemplate(
        id="streak_recovery_gentle",
        type="suggestion",
        context_match=lambda ctx: 60,
        user_state_match=_streak_recovery_state,
        cooldown_minutes=24 * 60,
        max_daily_uses=1,
        messages={
            P.ENDURANCE: [
                "🎯 Even Olympians have rest days. Today's a perfect day to ease back into your training rhythm.",
                "💫 Your aerobic base is still strong. A gentle return builds sustainable momentum.",
                "🔄 Consistency beats perfection. Let's restart your training journey with self-compassion.",
            ],
            P.STRENGTH: [
                "💪 Muscle memory is real - your strength comes back faster than you think.",
                "🔄 Every champion has comeback stories. Your next PR starts with today's return.",
                "⚡ Your body has been recovering. Time to rebuild stronger than before.",
            ],
            P.SPORT: [
                "🎾 Great athletes know when to rest and when to return. Today's your comeback day.",
                "🏆 Champions are defined by how they handle setbacks. Time to show your resilience.",
                "💫 Your skills are still there. Let's dust them off with some fun practice.",
            ],
            P.PROFESSIONAL: [
                "🎯 Life gets busy - that's normal. The key is getting back on track quickly and kindly.",
                "⚡ You don't need to be perfect, just consistent. Small steps forward count.",
                "💼 Your future productive self will thank you for this gentle restart.",
            ],
            P.WEIGHT_MGMT: [
                "💚 Progress isn't linear. Every healthy choice moves you toward your goal.",
                "🔄 Your body is forgiving and adaptive. Today's a fresh start opportunity.",
                "⚖️ Small consistent actions outperform perfect plans. Let's begin again, gently.",
            ],
        },
        actions={
            P.ENDURANCE: ["Easy 15-minute walk", "Gentle stretching session", "Light recovery cardio"],
            P.STRENGTH: ["Quick bodyweight circuit", "Light stretching", "Mobility session"],
            P.SPORT: ["Fun skill practice", "Light technique work", "Casual activity session"],
            P.PROFESSIONAL: ["5-minute desk workout", "Quick walk break", "Simple stretching"],
            P.WEIGHT_MGMT: ["Gentle walk", "Light activity", "Mindful movement"],
        },
        success_conditions=["any_activity_logged", "positive_self_talk_noted", "habit_restarted"],
    ),
    InterventionTemplate(
        id="afternoon_slump_fighter",
        type="suggestion",
        context_match=_afternoon_context,
        user_state_match=lambda activities, ctx: 65,
        cooldown_minutes=4 * 60,
        max_daily_uses=2,
        messages={
            P.ENDURANCE: [
                "🔋 Your glycogen stores need a refresh. A quick movement break will re-energize your system.",
                "⚡ Elite athletes use micro-training sessions to maintain energy. 5 minutes can transform your day.",
            ],
            P.STRENGTH: [
                "💪 Your muscles have been dormant. A quick activation session will wake up your power systems.",
                "🔥 Strength athletes know: movement creates energy. Your body is designed to move frequently.",
            ],
            P.SPORT: [
                "🎯 Your nervous system craves stimulation. Quick skill work will sharpen your focus instantly.",
                "⚡ Athletes use activity breaks for mental reset. Move to unlock your afternoon performance.",
            ],
            P.PROFESSIONAL: [
                "🧠 Your brain needs oxygen. 5 minutes of movement = 2 hours of enhanced focus.",
                "💼 High performers use micro-workouts to maintain energy without disrupting flow.",
            ],
            P.WEIGHT_MGMT: [
                "🔥 Your metabolism is naturally slower now. A quick burst will reignite your fat-burning furnace.",
                "⚡ Movement breaks prevent evening overeating by regulating hunger hormones.",
            ],
        },
        actions={
            P.ENDURANCE: ["5-minute cardio burst", "Quick stair climbing", "Energizing walk"],
            P.STRENGTH: ["Desk push-ups", "Bodyweight squats", "Core activation"],
            P.SPORT: ["Quick skill practice", "Coordination drills", "Mental rehearsal + movement"],
            P.PROFESSIONAL: ["Desk stretches", "Walking meeting", "Breathing + movement"],
            P.WEIGHT_MGMT: ["Calorie-burning stairs", "Desk workout", "Quick walk break"],
        },
        success_conditions=[
            "energy_level_reported_higher",
            "activity_completed_within_30min",
            "afternoon_productivity_maintained",
        ],
    ),
    InterventionTemplate(
        id="milestone_celebration",
        type="celebration",
        context_match=lambda ctx: 50,
        user_state_match=_milestone_state,
        cooldown_minutes=7 * 24 * 60,
        max_daily_uses=1,
        messages={
            P.ENDURANCE: [
                "🏆 Incredible consistency! You're building the aerobic base that separates good from great athletes.",
                "🔥 Your dedication is Olympic-level. This kind of consistency creates breakthrough performances.",
            ],
            P.STRENGTH: [
                "💪 Warrior discipline! You're forging the mindset that builds legendary strength.",
                "🏆 This consistency is exactly how champions are made. Your future strong self is thanking you.",
            ],
            P.SPORT: [
                "🎾 Champion mentality! Consistent practice separates weekend players from true competitors.",
                "🏅 Your dedication to improvement is what makes great athletes legendary.",
            ],
            P.PROFESSIONAL: [
                "🌟 Exceptional consistency! You're proving that sustainable habits create extraordinary results.",
                "💼 Your commitment to health is investing in decades of enhanced performance.",
            ],
            P.WEIGHT_MGMT: [
                "🎉 Amazing dedication! This consistency is exactly how lasting transformations happen.",
                "💫 You're not just changing your body - you're becoming someone who prioritizes their health.",
            ],
        },
        actions={
            P.ENDURANCE: ["Plan your next race goal", "Celebrate with a recovery day", "Share your progress"],
            P.STRENGTH: ["Set a new PR goal", "Plan a deload week", "Document your progress"],
            P.SPORT: ["Schedule a skill assessment", "Plan advanced training", "Compete or scrimmage"],
            P.PROFESSIONAL: ["Reward yourself mindfully", "Plan next habit addition", "Reflect on energy gains"],
            P.WEIGHT_MGMT: ["Take progress photos", "Plan a healthy reward", "Reflect on non-scale victories"],
        },
        success_conditions=["milestone_acknowledged", "next_goal_set", "positive_momentum_maintained"],
    ),
)

_GRADUATED_SUGGESTIONS: dict[PersonaType, dict[Difficulty, list[str]]] = {
    P.ENDURANCE: {
        "tiny": ["2-minute walk", "30 seconds of movement", "put on workout clothes"],
        "moderate": ["10-minute cardio", "15-minute run", "bike around the block"],
        "ambitious": ["30-minute workout", "interval training session", "long run preparation"],
    },
    P.STRENGTH: {
        "tiny": ["5 push-ups", "1 minute of squats", "pick up weights"],
        "moderate": ["15-minute strength circuit", "3 sets of core exercises", "full-body routine"],
        "ambitious": ["60-minute lifting session", "progressive overload workout", "compound movement focus"],
    },
    P.SPORT: {
        "tiny": ["5 minutes skill practice", "visualize one play", "hold your equipment"],
        "moderate": ["20-minute drill session", "technique practice", "conditioning work"],
        "ambitious": ["full practice session", "competitive training", "game simulation"],
    },
    P.PROFESSIONAL: {
        "tiny": ["1-minute desk stretch", "take the stairs", "park further away"],
        "moderate": ["10-minute lunch walk", "bodyweight desk routine", "stairs instead of elevator"],
        "ambitious": ["full lunch workout", "morning gym session", "evening training"],
    },
    P.WEIGHT_MGMT: {
        "tiny": ["drink water first", "one healthy swap", "weigh yourself"],
        "moderate": ["20-minute walk", "healthy meal prep", "track your food"],
        "ambitious": ["60-minute workout", "full meal planning", "comprehensive tracking"],
    },
}

_TIME_COMMITMENTS: dict[Difficulty, str] = {
    "tiny": "1-5 minutes",
    "moderate": "10-20 minutes",
    "ambitious": "30-60 minutes",
}

# Keywords (lower-case) that mark a message as suiting a motivation style.
_STYLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "data_driven": ("hours", "%", "research"),
    "emotional": ("feel", "❤️", "💫"),
    "competitive": ("champion", "win", "beat"),
}
_SHORT_ACTION_KEYWORDS = ("quick", "5-minute")

_TITLES = {
    "celebration": "Great Job!",
    "reminder": "Time to Move",
    "suggestion": "Pro Tip",
}


def _normalize_style(style: str | None) -> str:
    return (style or "").strip().lower().replace("-", "_")


def select_message(messages: list[str], motivation_style: str | None) -> str:
    keywords = _STYLE_KEYWORDS.get(_normalize_style(motivation_style))
    if keywords:
        for message in messages:
            lowered = message.lower()
            if any(k in lowered for k in keywords):
                return message
    return messages[0]


def select_action(actions: list[str], hour: int) -> str:
    """Prefer short actions early in the morning and late in the evening."""
    if hour < 8 or hour > 20:
        for action in actions:
            lowered = action.lower()
            if any(k in lowered for k in _SHORT_ACTION_KEYWORDS):
                return action
    return actions[0]


def intensity_for(feedback_style: str | None) -> Intensity:
    if feedback_style == "gentle":
        return "low"
    if feedback_style == "direct":
        return "high"
    return "medium"


def outcome_score(outcome: InterventionOutcome) -> float:
    score = 0.5
    if outcome.engaged:
        score += 0.2
    if outcome.action_taken:
        score += 0.3
    if outcome.success_conditions_met:
        score += 0.2
    if outcome.user_feedback == "positive":
        score += 0.1
    elif outcome.user_feedback == "negative":
        score -= 0.2
    return score


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class AdaptiveInterventionEngine:
    """Selects and personalizes nudges, and learns from their outcomes.

    Usage::

        engine = AdaptiveInterventionEngine(InMemoryInterventionHistoryStore())
        ctx = BehavioralContext(user_id="u1", now=datetime.now())
        intervention = engine.select_optimal_intervention(ctx, logs, profile)
        engine.record_intervention_outcome("u1", intervention.template_id,
                                           InterventionOutcome(engaged=True, action_taken=True))
    """

    def __init__(
        self,
        history: InterventionHistoryStore,
        *,
        templates: tuple[InterventionTemplate, ...] = DEFAULT_TEMPLATES,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self._history = history
        self._templates = {t.id: t for t in templates}
        self._threshold = threshold

    @property
    def templates(self) -> list[InterventionTemplate]:
        return list(self._templates.values())

    def score_template(
        self,
        template: InterventionTemplate,
        context: BehavioralContext,
        recent_activities: list[ActivityLog],
    ) -> float:
        """Raw score before cooldown and cap gating."""
        record = self._history.get(context.user_id, template.id)
        effectiveness = DEFAULT_EFFECTIVENESS
        if record is not None and record.effectiveness:
            effectiveness = record.effectiveness
        context_score = template.context_match(context)
        state_score = template.user_state_match(recent_activities, context)
        return (context_score * CONTEXT_WEIGHT + state_score * STATE_WEIGHT) * effectiveness

    def select_optimal_intervention(
        self,
        context: BehavioralContext,
        recent_activities: list[ActivityLog],
        profile: PersonalizationProfile,
    ) -> Intervention | None:
        """Return the best eligible intervention scoring above the threshold.

        Candidates are tried from the highest score down; the first one the
        history store lets us acquire (cooldown elapsed, under the daily cap)
        is used, and its usage is counted in the same step.
        """
        scored = [
            (self.score_template(t, context, recent_activities), t)
            for t in self._templates.values()
        ]
        candidates = sorted(
            ((s, t) for s, t in scored if s > self._threshold),
            key=lambda pair: pair[0],
            reverse=True,
        )

        for score, template in candidates:
            acquired = self._history.try_acquire(
                context.user_id,
                template.id,
                context.now,
                cooldown=template.cooldown,
                max_daily_uses=template.max_daily_uses,
            )
            if not acquired:
                logger.debug("Intervention %s unavailable for %s", template.id, context.user_id)
                continue
            logger.info(
                "Selected intervention %s for %s (score=%.1f)", template.id, context.user_id, score
            )
            return self._personalize(template, context, profile, score)

        return None

    def _personalize(
        self,
        template: InterventionTemplate,
        context: BehavioralContext,
        profile: PersonalizationProfile,
        score: float,
    ) -> Intervention:
        persona = profile.persona_type
        message = select_message(template.messages[persona], profile.motivation_style)
        action = select_action(template.actions[persona], context.hour)
        return Intervention(
            id=f"{template.id}_{int(context.now.timestamp())}",
            template_id=template.id,
            type=template.type,
            title=_TITLES.get(template.type, "Stay Strong"),
            message=message,
            action_prompt=action,
            intensity=intensity_for(profile.feedback_style),
            personalized_for=persona,
            score=score,
            cooldown_minutes=template.cooldown_minutes,
            max_daily_uses=template.max_daily_uses,
        )

    def record_intervention_outcome(
        self,
        user_id: str,
        template_id: str,
        outcome: InterventionOutcome,
    ) -> InterventionUsageRecord:
        """Fold an outcome into the template's success rate and effectiveness.

        Raises:
            KeyError: If ``template_id`` is not in the catalog.
        """
        if template_id not in self._templates:
            raise KeyError(f"Unknown intervention template: {template_id}")
        taken = 1.0 if outcome.action_taken else 0.0
        score = outcome_score(outcome)

        def learn(record: InterventionUsageRecord) -> None:
            rate = record.success_rate if record.success_rate is not None else INITIAL_OUTCOME_RATE
            eff = record.effectiveness if record.effectiveness is not None else INITIAL_OUTCOME_RATE
            record.success_rate = rate * 0.8 + taken * 0.2
            record.effectiveness = eff * 0.7 + score * 0.3

        updated = self._history.update(user_id, template_id, learn)
        logger.info(
            "Recorded outcome for %s/%s: effectiveness=%.3f success_rate=%.3f",
            user_id, template_id, updated.effectiveness, updated.success_rate,
        )
        return updated

    @staticmethod
    def get_graduated_intervention(
        persona: PersonaType,
        habit_level: Literal["beginner", "developing", "established"],
        recent_success_rate: float,
    ) -> GraduatedIntervention:
        if habit_level == "beginner" or recent_success_rate < 0.6:
            difficulty: Difficulty = "tiny"
        elif habit_level == "developing" or recent_success_rate < 0.8:
            difficulty = "moderate"
        else:
            difficulty = "ambitious"
        return GraduatedIntervention(
            difficulty=difficulty,
            suggestions=list(_GRADUATED_SUGGESTIONS[persona][difficulty]),
            time_commitment=_TIME_COMMITMENTS[difficulty],
        )
