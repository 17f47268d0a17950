"""Behavior model (B = Motivation x Ability x Prompt) and tiny-habit design.

Deterministic heuristics used by pattern recommendations and the habit
formation handlers. Inputs are on a 0-10 scale; the behavior score is
their product (0-1000).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

from sharpcoach.domains.coaching.domain_logic.coaching_models import TinyHabit

Likelihood = Literal["high", "medium", "low"]

HIGH_BEHAVIOR_SCORE = 600
MEDIUM_BEHAVIOR_SCORE = 250

DEFAULT_TRIGGER = "After brushing teeth"

# Ordered: the first key contained in the desired behavior wins.
_TINY_VERSIONS: tuple[tuple[str, str], ...] = (
    ("exercise", "do 1 pushup"),
    ("workout", "put on workout clothes"),
    ("run", "put on running shoes"),
    ("eat healthy", "eat 1 piece of fruit"),
    ("drink water", "drink 1 sip of water"),
    ("meditate", "take 1 deep breath"),
    ("read", "read 1 paragraph"),
    ("journal", "write 1 sentence"),
    ("stretch", "stretch 1 muscle for 10 seconds"),
    ("sleep better", "put phone in another room"),
)

_IDENTITY_MAP: tuple[tuple[str, str], ...] = (
    ("exercise", "I am someone who prioritizes my health"),
    ("eat healthy", "I am someone who nourishes my body well"),
    ("drink water", "I am someone who takes care of my body"),
    ("sleep", "I am someone who values recovery and rest"),
    ("track", "I am someone who is intentional about my health"),
)

_REWARDS = {
    "social": 'Say "I did it!" out loud with a fist pump',
    "competitive": "Mark an X on calendar and count your streak",
    "data_driven": "Log it immediately and see your progress",
}
_DEFAULT_REWARD = 'Take a moment to feel proud and say "I am becoming healthier"'


@dataclass
class HabitPrediction:
    days_to_habit: int
    success_probability: int
    key_risk_factors: list[str] = field(default_factory=list)


@dataclass
class BehaviorAnalysis:
    behavior_score: float
    motivation_level: float
    ability_level: float
    prompt_effectiveness: float
    likelihood_of_success: Likelihood
    recommended_adjustments: list[str]
    habit_formation_prediction: HabitPrediction


@dataclass
class IdentityGoal:
    identity: str
    supporting_habits: list[str]
    daily_votes: list[str]


def _clamp10(value: float) -> float:
    return max(0.0, min(10.0, float(value)))


def calculate_behavior_score(motivation: float, ability: float, prompt: float) -> BehaviorAnalysis:
    """Score a behavior with B = M x A x P after clamping each factor to 0-10."""
    m, a, p = _clamp10(motivation), _clamp10(ability), _clamp10(prompt)
    score = m * a * p

    if score >= HIGH_BEHAVIOR_SCORE:
        likelihood: Likelihood = "high"
    elif score >= MEDIUM_BEHAVIOR_SCORE:
        likelihood = "medium"
    else:
        likelihood = "low"

    return BehaviorAnalysis(
        behavior_score=score,
        motivation_level=m * 10,
        ability_level=a * 10,
        prompt_effectiveness=p * 10,
        likelihood_of_success=likelihood,
        recommended_adjustments=_recommendations(m, a, p),
        habit_formation_prediction=_predict_habit_formation(score, m, a, p),
    )


def _recommendations(m: float, a: float, p: float) -> list[str]:
    recs: list[str] = []
    if m < 6:
        recs.append("Increase motivation: Connect to deeper 'why' or identity")
        recs.append("Start with intrinsic motivators rather than external rewards")
    if a < 6:
        recs.append("Increase ability: Make the behavior ridiculously small")
        recs.append("Remove barriers and simplify the process")
    if p < 6:
        recs.append("Improve prompts: Make triggers more obvious and reliable")
        recs.append("Stack new habit after an existing strong habit")
    if not recs:
        recs.append("Great foundation - focus on consistency over perfection")
    return recs


def _predict_habit_formation(score: float, m: float, a: float, p: float) -> HabitPrediction:
    risks: list[str] = []
    if score >= 700:
        days, probability = 25, 95
    elif score >= 500:
        days, probability = 35, 85
    elif score >= 300:
        days, probability = 50, 70
    else:
        days, probability = 80, 40
        risks.append("Low overall behavior score - consider making it easier")

    if m < 5:
        risks.append("Low motivation may cause early dropout")
    if a < 5:
        risks.append("Low ability increases abandonment risk")
    if p < 5:
        risks.append("Weak prompts lead to forgetting")

    if m < 6 and a < 6 and p < 6:
        days += 20
        probability -= 25
        risks.append("Multiple weak factors compound difficulty")

    return HabitPrediction(
        days_to_habit=max(21, min(254, days)),
        success_probability=max(10, min(95, probability)),
        key_risk_factors=risks,
    )


# ---------------------------------------------------------------------------
# Tiny habits
# ---------------------------------------------------------------------------

def make_behavior_tiny(behavior: str) -> str:
    lowered = behavior.lower()
    for key, tiny in _TINY_VERSIONS:
        if key in lowered:
            return tiny
    return f"do the first step of: {behavior}"


def design_reward(motivation_style: str | None) -> str:
    return _REWARDS.get(motivation_style or "", _DEFAULT_REWARD)


def connect_to_identity(behavior: str) -> str:
    lowered = behavior.lower()
    for key, identity in _IDENTITY_MAP:
        if key in lowered:
            return identity
    return "I am someone who follows through on commitments to myself"


def design_tiny_habit(desired_behavior: str, motivation_style: str | None = None) -> TinyHabit:
    """Shrink a desired behavior to its tiny version and attach trigger, reward, and identity."""
    tiny = make_behavior_tiny(desired_behavior)
    return TinyHabit(
        behavior=tiny,
        trigger=DEFAULT_TRIGGER,
        reward=design_reward(motivation_style),
        identity_connection=connect_to_identity(tiny),
        difficulty_level=1,
    )


# ---------------------------------------------------------------------------
# Identity-based habits
# ---------------------------------------------------------------------------

_IDENTITY_CONVERSIONS: dict[str, IdentityGoal] = {
    "lose weight": IdentityGoal(
        identity="I am someone who takes care of their body",
        supporting_habits=["Track meals mindfully", "Move my body daily", "Prioritize sleep"],
        daily_votes=["Choose smaller portions", "Take stairs", "Drink water first"],
    ),
    "get fit": IdentityGoal(
        identity="I am an athlete in training",
        supporting_habits=["Show up for workouts", "Fuel properly", "Prioritize recovery"],
        daily_votes=["Wear workout clothes", "Pack gym bag", "Choose protein"],
    ),
    "eat healthy": IdentityGoal(
        identity="I am someone who nourishes my body well",
        supporting_habits=["Choose whole foods", "Plan meals ahead", "Listen to hunger cues"],
        daily_votes=["Add vegetables to meals", "Choose water over soda", "Cook at home"],
    ),
    "improve tennis": IdentityGoal(
        identity="I am a dedicated tennis player",
        supporting_habits=["Practice consistently", "Study the game", "Maintain peak fitness"],
        daily_votes=["Visualize shots", "Practice footwork", "Analyze matches"],
    ),
}


def convert_to_identity_goal(outcome_goal: str) -> IdentityGoal:
    lowered = outcome_goal.lower()
    for key, goal in _IDENTITY_CONVERSIONS.items():
        if key in lowered:
            return replace(goal)
    return IdentityGoal(
        identity=f"I am someone who is committed to {outcome_goal}",
        supporting_habits=[f"Take daily action toward {outcome_goal}"],
        daily_votes=[f"Make choices aligned with {outcome_goal}"],
    )


def generate_identity_reinforcement(target_identity: str, streak_count: int) -> str:
    identity = target_identity.lower()
    if streak_count <= 1:
        return f"You're becoming {identity} - this is evidence!"
    if streak_count < 7:
        return f"{streak_count} days of evidence that you are {identity}."
    if streak_count < 30:
        return f"{streak_count} days strong! You're proving to yourself that you are {identity}."
    return f"{streak_count} days of being {identity}. This is who you are now!"
