"""Statistical pattern mining over a user's recent activity logs.

Four independent analyses run concurrently over the same immutable log
snapshot:

* sleep vs. next-session performance (Pearson correlation, optimal range);
* nutrition timing gaps around workouts, plus hydration tracking;
* recovery time by intensity, overtraining risk, weekly training frequency;
* mood vs. activity (correlation, mood-boosting activities, low-mood triggers).

High-significance patterns become just-in-time interventions; every
non-low pattern becomes an adaptive recommendation.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import statistics
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable

from sharpcoach.domains.coaching.domain_logic.behavior_model import design_tiny_habit
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    ActivityLog,
    AdaptiveRecommendation,
    DetectedPattern,
    InterventionTrigger,
    JustInTimeIntervention,
    LogCategory,
    PatternDetectionResult,
    PersonaType,
    Significance,
    UserContext,
    hours_between,
    logs_since,
    utcnow,
)

logger = logging.getLogger(__name__)

MIN_LOGS = 10
DEFAULT_WINDOW_DAYS = 14
DEFAULT_ANALYSIS_TIMEOUT = 5.0

SLEEP_LOOKBACK_HOURS = 12
PRE_MEAL_LOOKBACK_HOURS = 8
POST_MEAL_LOOKAHEAD_HOURS = 4
MOOD_LOOKAROUND_HOURS = 4
LOW_MOOD_LOOKBACK_HOURS = 24
POSITIVE_MOOD = 7
LOW_MOOD = 3


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def pearson(x: list[float], y: list[float]) -> float:
    """Pearson correlation; 0.0 for mismatched, empty, or constant series."""
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    try:
        r = statistics.correlation(x, y)
    except statistics.StatisticsError:
        return 0.0
    return max(-1.0, min(1.0, r))


def _intensity(log: ActivityLog) -> float:
    return log.number("intensity", default=5.0)


def _mood_value(log: ActivityLog) -> float:
    return log.number("score", "rating", default=5.0)


def _by_day(logs: list[ActivityLog]) -> dict[date, list[ActivityLog]]:
    groups: dict[date, list[ActivityLog]] = defaultdict(list)
    for log in logs:
        groups[log.timestamp.date()].append(log)
    return groups


def _week_start(ts: datetime) -> date:
    """Monday of the week containing ``ts``."""
    d = ts.date()
    return d - timedelta(days=d.weekday())


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _tier(value: float, high: float, medium: float) -> Significance:
    if value > high:
        return "high"
    if value > medium:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Sleep vs performance
# ---------------------------------------------------------------------------

def _previous_night_sleep(activity: ActivityLog, sleeps: list[ActivityLog]) -> ActivityLog | None:
    start = activity.timestamp - timedelta(hours=SLEEP_LOOKBACK_HOURS)
    candidates = [s for s in sleeps if start <= s.timestamp <= activity.timestamp]
    return max(candidates, key=lambda s: s.timestamp) if candidates else None


def optimal_sleep_range(pairs: list[tuple[float, float]]) -> tuple[int, int]:
    """Whole-hour sleep buckets (2+ samples) within 90% of the best mean performance."""
    buckets: dict[int, list[float]] = defaultdict(list)
    for sleep, performance in pairs:
        buckets[_round_half_up(sleep)].append(performance)

    means = {hours: statistics.mean(v) for hours, v in buckets.items() if len(v) >= 2}
    if not means:
        return 0, 0
    best = max(means.values())
    top = sorted(hours for hours, avg in means.items() if avg >= best * 0.9)
    return top[0], top[-1]


def analyze_sleep_performance(logs: list[ActivityLog], now: datetime) -> list[DetectedPattern]:
    sleeps = [log for log in logs if log.category is LogCategory.SLEEP]
    sessions = [
        log for log in logs
        if log.category is LogCategory.EXERCISE and log.data.get("intensity") is not None
    ]
    if len(sleeps) < 5 or len(sessions) < 5:
        return []

    pairs: list[tuple[float, float]] = []
    first_session: datetime | None = None
    for session in sessions:
        night = _previous_night_sleep(session, sleeps)
        hours = night.number("hours") if night else None
        if not hours:
            continue
        performance = session.number("intensity", "perceived_exertion", default=5.0)
        pairs.append((hours, performance))
        if first_session is None:
            first_session = session.timestamp

    if len(pairs) < 3:
        return []

    r = pearson([p[0] for p in pairs], [p[1] for p in pairs])
    significance = _tier(abs(r), 0.5, 0.3)
    if significance == "low":
        return []

    days = math.ceil(hours_between(first_session, now) / 24) if first_session else 0
    patterns = [
        DetectedPattern(
            type="sleep_performance",
            pattern=(
                f"Better sleep correlates with improved performance (r={r:.2f})"
                if r > 0
                else f"Poor sleep significantly impacts performance (r={r:.2f})"
            ),
            strength=abs(r),
            data_points=len(pairs),
            time_range=f"{len(pairs)} activities over {days} days",
            significance=significance,
            correlation_score=r,
        )
    ]

    low, high = optimal_sleep_range(pairs)
    if low > 0:
        patterns.append(
            DetectedPattern(
                type="sleep_performance",
                pattern=f"Optimal performance occurs with {low}-{high} hours of sleep",
                strength=0.8,
                data_points=len(pairs),
                time_range=f"Based on {len(pairs)} sleep-performance pairs",
                significance=significance,
            )
        )
    return patterns


# ---------------------------------------------------------------------------
# Nutrition gaps
# ---------------------------------------------------------------------------

def _pre_workout_gaps(meals: list[ActivityLog], sessions: list[ActivityLog]) -> list[float]:
    gaps: list[float] = []
    for session in sessions:
        before = [
            hours_between(m.timestamp, session.timestamp)
            for m in meals
            if m.timestamp < session.timestamp
        ]
        before = [g for g in before if g < PRE_MEAL_LOOKBACK_HOURS]
        if before:
            gaps.append(min(before))
    return gaps


def _post_workout_delays(meals: list[ActivityLog], sessions: list[ActivityLog]) -> list[float]:
    delays: list[float] = []
    for session in sessions:
        after = [
            hours_between(session.timestamp, m.timestamp)
            for m in meals
            if m.timestamp > session.timestamp
        ]
        after = [d for d in after if d < POST_MEAL_LOOKAHEAD_HOURS]
        if after:
            delays.append(min(after))
    return delays


def _is_hydration_entry(log: ActivityLog) -> bool:
    text = log.original_text.lower()
    return "water" in text or "drink" in text or log.data.get("type") == "hydration"


def analyze_nutrition_gaps(logs: list[ActivityLog], now: datetime) -> list[DetectedPattern]:
    meals = [log for log in logs if log.category is LogCategory.NUTRITION]
    sessions = [log for log in logs if log.category is LogCategory.EXERCISE]
    patterns: list[DetectedPattern] = []

    gaps = _pre_workout_gaps(meals, sessions)
    if len(gaps) >= 3:
        avg = statistics.mean(gaps)
        strength = min(1.0, abs(avg - 2.5) / 2.5) if (avg < 1 or avg > 4) else 0.0
        if strength > 0.3:
            patterns.append(
                DetectedPattern(
                    type="nutrition_gap",
                    pattern=(
                        f"Pre-workout nutrition gap: Average {avg:.1f} hours between "
                        "last meal and exercise"
                    ),
                    strength=strength,
                    data_points=len(gaps),
                    time_range="Last 2 weeks",
                    significance=_tier(strength, 0.7, 0.4),
                )
            )

    delays = _post_workout_delays(meals, sessions)
    if len(delays) >= 3:
        avg = statistics.mean(delays)
        strength = min(1.0, (avg - 2) / 2) if avg > 2 else 0.0
        if strength > 0.3:
            patterns.append(
                DetectedPattern(
                    type="nutrition_gap",
                    pattern=(
                        f"Post-workout recovery gap: Average {avg:.1f} hours delay "
                        "in recovery nutrition"
                    ),
                    strength=strength,
                    data_points=len(delays),
                    time_range="Last 2 weeks",
                    significance=_tier(strength, 0.7, 0.4),
                )
            )

    water = [log for log in meals if _is_hydration_entry(log)]
    if len(water) >= 5:
        per_day = statistics.mean(len(v) for v in _by_day(water).values())
        description, strength = "", 0.0
        if per_day < 3:
            description = "Low hydration tracking frequency suggests potential dehydration risk"
            strength = 0.7
        elif per_day > 8:
            description = "High hydration awareness - good tracking consistency"
            strength = 0.5
        if strength > 0.4:
            patterns.append(
                DetectedPattern(
                    type="nutrition_gap",
                    pattern=f"Hydration pattern: {description}",
                    strength=strength,
                    data_points=len(water),
                    time_range="Last 2 weeks",
                    significance="high" if strength > 0.6 else "medium",
                )
            )
    return patterns


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

def _recovery_hours(
    session: ActivityLog, moods: list[ActivityLog], sessions: list[ActivityLog]
) -> float:
    """Hours until the next good mood or the next session, whichever is first."""
    good = next(
        (m for m in moods if m.timestamp > session.timestamp and _mood_value(m) >= POSITIVE_MOOD),
        None,
    )
    following = next((s for s in sessions if s.timestamp > session.timestamp), None)
    if good and (following is None or good.timestamp < following.timestamp):
        return hours_between(session.timestamp, good.timestamp)
    if following:
        return hours_between(session.timestamp, following.timestamp)
    return 0.0


def _intensity_bucket(log: ActivityLog) -> str:
    value = _intensity(log)
    if value <= 3:
        return "low"
    if value <= 7:
        return "medium"
    return "high"


def _recovery_by_intensity(
    sessions: list[ActivityLog], moods: list[ActivityLog]
) -> DetectedPattern | None:
    times: dict[str, list[float]] = {"low": [], "medium": [], "high": []}
    for session in sessions:
        hours = _recovery_hours(session, moods, sessions)
        if hours > 0:
            times[_intensity_bucket(session)].append(hours)

    averages = {bucket: statistics.mean(v) for bucket, v in times.items() if v}
    if len(averages) < 2:
        return None

    total = sum(len(v) for v in times.values())
    strength = min(1.0, (max(averages.values()) - min(averages.values())) / 24)
    if not (strength > 0.3 and total >= 5):
        return None

    description = ", ".join(
        f"{bucket.capitalize()}: {averages.get(bucket, 0.0):.1f}h" for bucket in ("low", "medium", "high")
    )
    return DetectedPattern(
        type="recovery_pattern",
        pattern=f"Recovery time varies by intensity: {description}",
        strength=strength,
        data_points=total,
        time_range="Last 4 weeks",
        significance="high" if strength > 0.6 else "medium",
    )


def overtraining_risk(
    sessions: list[ActivityLog], moods: list[ActivityLog], now: datetime
) -> tuple[float, list[str], int]:
    """14-day overtraining risk in [0, 1] with the indicators that raised it."""
    recent = logs_since(sessions, now, days=14)
    recent_moods = logs_since(moods, now, days=14)
    indicators: list[str] = []
    risk = 0.0

    active_days = len(_by_day(recent))
    if recent and len(recent) / max(active_days, 1) > 2:
        indicators.append("High training frequency")
        risk += 0.3
    if active_days > 12:
        indicators.append("Insufficient rest days")
        risk += 0.2
    if recent and statistics.mean(_intensity(s) for s in recent) > 7.5:
        indicators.append("Consistently high intensity")
        risk += 0.2
    if len(recent_moods) >= 3 and statistics.mean(_mood_value(m) for m in recent_moods) < 4:
        indicators.append("Declining mood/motivation")
        risk += 0.3

    return min(risk, 1.0), indicators, len(recent) + len(recent_moods)


def _training_frequency(sessions: list[ActivityLog]) -> DetectedPattern | None:
    weeks: dict[date, list[ActivityLog]] = defaultdict(list)
    for session in sessions:
        weeks[_week_start(session.timestamp)].append(session)
    if len(weeks) < 3:
        return None

    rows = [
        (len(items), statistics.mean(_intensity(s) for s in items))
        for _, items in sorted(weeks.items())
    ]
    rows.sort(key=lambda row: row[1], reverse=True)
    top = rows[: math.ceil(len(rows) * 0.5)]
    confidence = len(top) / len(rows)
    if confidence <= 0.5:
        return None

    sessions_per_week = _round_half_up(statistics.mean(freq for freq, _ in top))
    return DetectedPattern(
        type="recovery_pattern",
        pattern=f"Optimal training frequency: {sessions_per_week} sessions per week shows best performance",
        strength=confidence,
        data_points=len(rows),
        time_range="Last 4 weeks",
        significance="high" if confidence > 0.7 else "medium",
    )


def analyze_recovery(logs: list[ActivityLog], now: datetime) -> list[DetectedPattern]:
    sessions = [log for log in logs if log.category is LogCategory.EXERCISE]
    moods = [log for log in logs if log.category is LogCategory.MOOD]
    patterns: list[DetectedPattern] = []

    by_intensity = _recovery_by_intensity(sessions, moods)
    if by_intensity:
        patterns.append(by_intensity)

    risk, indicators, points = overtraining_risk(sessions, moods, now)
    if risk > 0.3:
        patterns.append(
            DetectedPattern(
                type="recovery_pattern",
                pattern=f"Potential overtraining signs detected: {', '.join(indicators)}",
                strength=risk,
                data_points=points,
                time_range="Last 2 weeks",
                significance=_tier(risk, 0.7, 0.5),
            )
        )

    frequency = _training_frequency(sessions)
    if frequency:
        patterns.append(frequency)
    return patterns


# ---------------------------------------------------------------------------
# Mood vs activity
# ---------------------------------------------------------------------------

def _mood_exercise_pairs(
    moods: list[ActivityLog], sessions: list[ActivityLog]
) -> list[tuple[float, float]]:
    pairs: list[tuple[float, float]] = []
    for mood in moods:
        following = [
            s for s in sessions
            if s.timestamp > mood.timestamp and hours_between(mood.timestamp, s.timestamp) < 24
        ]
        if following:
            pairs.append((_mood_value(mood), statistics.mean(_intensity(s) for s in following)))
    return pairs


def mood_boosting_activities(moods: list[ActivityLog], sessions: list[ActivityLog]) -> list[str]:
    """Activity types whose post-session mood beats the pre-session mood by > 0.5."""
    impact: dict[str, tuple[list[float], list[float]]] = {}
    for session in sessions:
        kind = str(session.data.get("type") or session.data.get("exercise_name") or "general")
        pre_list, post_list = impact.setdefault(kind, ([], []))
        pre = next(
            (m for m in moods
             if m.timestamp < session.timestamp
             and hours_between(m.timestamp, session.timestamp) < MOOD_LOOKAROUND_HOURS),
            None,
        )
        post = next(
            (m for m in moods
             if m.timestamp > session.timestamp
             and hours_between(session.timestamp, m.timestamp) < MOOD_LOOKAROUND_HOURS),
            None,
        )
        if pre and post:
            pre_list.append(_mood_value(pre))
            post_list.append(_mood_value(post))

    boosts = [
        (kind, statistics.mean(post) - statistics.mean(pre))
        for kind, (pre, post) in impact.items()
        if len(pre) >= 2
    ]
    boosts = [b for b in boosts if b[1] > 0.5]
    boosts.sort(key=lambda b: b[1], reverse=True)
    return [kind for kind, _ in boosts[:5]]


def low_mood_triggers(
    moods: list[ActivityLog], logs: list[ActivityLog]
) -> tuple[list[str], float, int]:
    """Conditions present before more than 30% of low-mood entries (top three)."""
    low = [m for m in moods if _mood_value(m) < LOW_MOOD]
    if len(low) < 3:
        return [], 0.0, 0

    counts: dict[str, int] = defaultdict(int)
    for entry in low:
        window = [
            log for log in logs
            if log.timestamp < entry.timestamp
            and hours_between(log.timestamp, entry.timestamp) < LOW_MOOD_LOOKBACK_HOURS
        ]
        if any(log.category is LogCategory.EXERCISE and _intensity(log) > 8 for log in window):
            counts["high_intensity_exercise"] += 1
        if any(log.category is LogCategory.SLEEP and log.number("hours", default=8.0) < 6 for log in window):
            counts["poor_sleep"] += 1
        if not any(log.category is LogCategory.NUTRITION for log in window):
            counts["meal_timing_issues"] += 1
        counts[f"{entry.timestamp.strftime('%A').lower()}_pattern"] += 1

    significant = sorted(
        (name for name, count in counts.items() if count / len(low) > 0.3),
        key=lambda name: counts[name],
        reverse=True,
    )[:3]
    if not significant:
        return [], 0.0, len(low)
    confidence = max(counts.values()) / len(low)
    return [name.replace("_", " ") for name in significant], confidence, len(low)


def analyze_mood_activity(logs: list[ActivityLog], now: datetime) -> list[DetectedPattern]:
    moods = [log for log in logs if log.category is LogCategory.MOOD]
    sessions = [log for log in logs if log.category is LogCategory.EXERCISE]
    if len(moods) < 5:
        return []
    patterns: list[DetectedPattern] = []

    pairs = _mood_exercise_pairs(moods, sessions)
    r = pearson([p[0] for p in pairs], [p[1] for p in pairs]) if len(pairs) >= 3 else 0.0
    if abs(r) > 0.3:
        patterns.append(
            DetectedPattern(
                type="mood_activity",
                pattern=(
                    f"Exercise improves mood significantly (r={r:.2f})"
                    if r > 0
                    else f"Low mood associated with reduced exercise motivation (r={r:.2f})"
                ),
                strength=abs(r),
                data_points=len(pairs),
                time_range="Last 3 weeks",
                significance="high" if abs(r) > 0.5 else "medium",
                correlation_score=r,
            )
        )

    boosting = mood_boosting_activities(moods, sessions)
    if boosting:
        patterns.append(
            DetectedPattern(
                type="mood_activity",
                pattern=f"Most mood-boosting activities: {', '.join(boosting[:3])}",
                strength=0.7,
                data_points=len(moods),
                time_range="Last 4 weeks",
                significance="high",
            )
        )

    triggers, confidence, points = low_mood_triggers(moods, logs)
    if triggers:
        patterns.append(
            DetectedPattern(
                type="mood_activity",
                pattern=f"Low mood triggers: {', '.join(triggers)}",
                strength=confidence,
                data_points=points,
                time_range="Last 4 weeks",
                significance="high" if confidence > 0.6 else "medium",
            )
        )
    return patterns


# ---------------------------------------------------------------------------
# Interventions and recommendations
# ---------------------------------------------------------------------------

_RANGE = re.compile(r"(\d+)-(\d+)")


def _style(context: UserContext) -> str:
    return context.profile.motivation_style or "data_driven"


def build_intervention(pattern: DetectedPattern, context: UserContext) -> JustInTimeIntervention:
    """Turn a high-significance pattern into a time-windowed nudge."""
    text = pattern.pattern
    if pattern.type == "sleep_performance":
        match = _RANGE.search(text)
        message = (
            f"Your data shows best performance with {match.group(0)} hours of sleep. "
            "Tonight's your chance to nail it!"
            if "optimal" in text.lower() and match
            else "Your performance data shows a strong sleep connection. Let's prioritize recovery tonight."
        )
        return JustInTimeIntervention(
            trigger=InterventionTrigger(
                condition="Sleep hours < optimal range OR late bedtime detected",
                when_to_show="before_activity",
                timing_hours=[21, 22],
            ),
            message=message,
            action_type="implementation_intention",
            urgency="today",
            habit_context="sleep_performance_optimization",
            user_type_specific=True,
            motivation_style_adapted=_style(context) == "data_driven",
        )

    if pattern.type == "nutrition_gap":
        pre = text.startswith("Pre-workout")
        return JustInTimeIntervention(
            trigger=InterventionTrigger(
                condition="Workout scheduled in next 4 hours" if pre else "Post-workout recovery window",
                when_to_show="before_activity" if pre else "after_activity",
                timing_hours=[16, 17, 18] if pre else [19, 20],
            ),
            message=(
                "Based on your pattern data: fuel up 2-3 hours before your workout for optimal performance"
                if pre
                else "Recovery window open! Your data shows best results when you eat within 2 hours post-workout"
            ),
            action_type="tiny_habit",
            urgency="immediate",
            habit_context="nutrition_timing_optimization",
            user_type_specific=context.profile.persona_type is PersonaType.SPORT,
            motivation_style_adapted=True,
        )

    if pattern.type == "recovery_pattern":
        overtraining = "overtraining" in text
        rest = "active recovery" if "frequency" in text else "complete rest"
        return JustInTimeIntervention(
            trigger=InterventionTrigger(
                condition=(
                    "Multiple high-intensity days detected"
                    if overtraining
                    else "Recovery metrics below optimal"
                ),
                when_to_show="during_low_mood",
                timing_hours=[8, 9, 18, 19],
            ),
            message=(
                "Your pattern data suggests recovery focus today. Your future self will thank you for this rest."
                if overtraining
                else f"Based on your recovery patterns, today might benefit from {rest}"
            ),
            action_type="environmental_cue",
            urgency="today",
            habit_context="recovery_optimization",
            user_type_specific=True,
            motivation_style_adapted=_style(context) != "competitive",
        )

    boosting = "mood-boosting" in text
    return JustInTimeIntervention(
        trigger=InterventionTrigger(
            condition="Low mood detected OR mood tracking missed for 2+ days",
            when_to_show="during_low_mood",
            timing_hours=[14, 15, 16],
        ),
        message=(
            f"Your data shows {text.split(': ', 1)[1]} consistently improves your mood. 5-minute version?"
            if boosting
            else "Pattern recognition: movement tends to shift your mood positively. Even 2 minutes counts."
        ),
        action_type="tiny_habit",
        urgency="immediate",
        habit_context="mood_regulation_through_movement",
        user_type_specific=False,
        motivation_style_adapted=True,
    )


def _goal_matching(context: UserContext, *words: str, default: str) -> str:
    for goal in context.profile.goals:
        if any(w in goal.lower() for w in words):
            return goal
    return default


def build_recommendation(pattern: DetectedPattern, context: UserContext) -> AdaptiveRecommendation:
    """Goal adjustment, tiny habit, and implementation intention for one pattern."""
    text = pattern.pattern
    style = _style(context)

    if pattern.type == "sleep_performance":
        match = re.search(r"(\d+)-(\d+) hours", text)
        target = int(match.group(1)) if match else 8
        habit = design_tiny_habit("get better sleep", style)
        habit.behavior = "Set phone to airplane mode and place it outside bedroom"
        habit.trigger = "After brushing teeth"
        habit.reward = 'Say "I am someone who prioritizes recovery"'
        return AdaptiveRecommendation(
            category="sleep",
            current_goal=_goal_matching(context, "sleep", default="Get 8 hours of sleep"),
            recommended_change=f"Target {target} hours based on your performance data",
            rationale=(
                f"Your data shows {'strong' if pattern.strength > 0.7 else 'moderate'} "
                "correlation between sleep and performance"
            ),
            tiny_habit=habit,
            if_situation=f"It's {'10' if target == 8 else '9'}:30 PM and I haven't started my bedtime routine",
            then_behavior="I will immediately put my phone in airplane mode and start winding down",
            identity_connection="I am a person who makes decisions that serve my future performance",
        )

    if pattern.type == "nutrition_gap":
        pre = text.startswith("Pre-workout")
        habit = design_tiny_habit("eat before workouts" if pre else "eat after workouts", style)
        habit.behavior = (
            "Eat one piece of fruit when I see my workout clothes"
            if pre
            else "Drink one glass of milk immediately after workout"
        )
        habit.trigger = "When I lay out workout clothes" if pre else "Immediately after workout ends"
        return AdaptiveRecommendation(
            category="nutrition",
            current_goal=_goal_matching(context, "nutrition", default="Eat healthy"),
            recommended_change=(
                "Focus on pre-workout fuel timing (2-3 hours before)"
                if pre
                else "Prioritize post-workout recovery nutrition (within 2 hours)"
            ),
            rationale=(
                f"Your data shows {'significant' if pattern.strength > 0.7 else 'noticeable'} "
                "gaps in workout nutrition timing"
            ),
            tiny_habit=habit,
            if_situation=(
                "I have a workout planned and it's 2-3 hours beforehand" if pre else "I just finished a workout"
            ),
            then_behavior=(
                "I will eat something light and carb-focused"
                if pre
                else "I will have protein + carbs within 30 minutes"
            ),
            identity_connection="I am someone who properly fuels their performance",
        )

    if pattern.type == "recovery_pattern":
        overtraining = "overtraining" in text
        habit = design_tiny_habit(
            "take recovery seriously" if overtraining else "optimize recovery timing", style
        )
        habit.behavior = (
            "Do 5 deep breaths when I feel the urge to train on rest days"
            if overtraining
            else "Rate my energy level (1-10) before each workout"
        )
        habit.trigger = (
            "When I think about training on a scheduled rest day"
            if overtraining
            else "When I put on workout clothes"
        )
        return AdaptiveRecommendation(
            category="recovery",
            current_goal=_goal_matching(context, "recovery", "train", default="Train consistently"),
            recommended_change=(
                "Build in mandatory rest days based on your pattern data"
                if overtraining
                else "Adjust training frequency based on recovery indicators"
            ),
            rationale=(
                "Your data shows potential overtraining signs"
                if overtraining
                else f"Your recovery patterns suggest {text}"
            ),
            tiny_habit=habit,
            if_situation=(
                "I feel like I should train but it's a scheduled rest day"
                if overtraining
                else "My energy/mood is below 6 before a planned workout"
            ),
            then_behavior=(
                "I will remind myself that rest is part of training"
                if overtraining
                else "I will reduce intensity or switch to active recovery"
            ),
            identity_connection=(
                "I am someone who makes decisions based on data, not emotions"
                if overtraining
                else "I am someone who trains intelligently"
            ),
        )

    activities = (
        text.split(": ", 1)[1].split(", ") if "Most mood-boosting" in text else ["light movement"]
    )
    first = activities[0].lower()
    corr = f"{pattern.correlation_score:.2f}" if pattern.correlation_score is not None else "positive"
    habit = design_tiny_habit("use movement for mood regulation", style)
    habit.behavior = f"Do 2 minutes of {first} when feeling low"
    habit.trigger = "When I notice my mood dropping"
    habit.reward = 'Acknowledge: "I am taking care of myself"'
    return AdaptiveRecommendation(
        category="mood",
        current_goal=_goal_matching(context, "mood", "mental", default="Stay positive"),
        recommended_change=f"Use {activities[0]} as your go-to mood regulation tool",
        rationale=f"Your data shows {corr} correlation between activity and mood",
        tiny_habit=habit,
        if_situation="I notice my mood is below a 5/10",
        then_behavior=f"I will do {first} for just 2 minutes",
        identity_connection="I am someone who uses healthy strategies to regulate their mood",
    )


def pattern_confidence(patterns: list[DetectedPattern], total_points: int) -> int:
    """Blend of mean strength, data volume (saturating at 50 logs), and share of high patterns."""
    if not patterns:
        return 0
    avg_strength = statistics.mean(p.strength for p in patterns)
    volume = min(1.0, total_points / 50)
    high_share = sum(1 for p in patterns if p.significance == "high") / len(patterns)
    return _round_half_up((avg_strength * 0.4 + volume * 0.3 + high_share * 0.3) * 100)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

Analysis = Callable[[list[ActivityLog], datetime], list[DetectedPattern]]

ANALYSES: tuple[tuple[str, Analysis], ...] = (
    ("sleep_performance", analyze_sleep_performance),
    ("nutrition_gap", analyze_nutrition_gaps),
    ("recovery_pattern", analyze_recovery),
    ("mood_activity", analyze_mood_activity),
)


class PatternDetectionService:
    """Mines a context's log window for actionable patterns.

    Usage::

        service = PatternDetectionService(window_days=14, analysis_timeout=5.0)
        result = await service.analyze_patterns(context)
        for pattern in result.patterns:
            ...
    """

    def __init__(
        self,
        *,
        window_days: int = DEFAULT_WINDOW_DAYS,
        analysis_timeout: float = DEFAULT_ANALYSIS_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._window_days = window_days
        self._timeout = analysis_timeout
        self._clock = clock

    async def analyze_patterns(self, context: UserContext) -> PatternDetectionResult:
        now = self._clock()
        logs = sorted(
            logs_since(context.recent_logs, now, days=self._window_days),
            key=lambda log: log.timestamp,
        )
        if len(logs) < MIN_LOGS:
            logger.debug("Pattern analysis skipped: %d logs in window", len(logs))
            return PatternDetectionResult(data_points=len(logs))

        outcomes = await asyncio.gather(
            *(self._run_analysis(name, fn, logs, now) for name, fn in ANALYSES)
        )

        patterns: list[DetectedPattern] = []
        skipped: list[str] = []
        for (name, _), found in zip(ANALYSES, outcomes):
            if found is None:
                skipped.append(name)
            else:
                patterns.extend(found)

        interventions = [
            build_intervention(p, context) for p in patterns if p.significance == "high"
        ]
        recommendations = [
            build_recommendation(p, context) for p in patterns if p.significance != "low"
        ]
        confidence = pattern_confidence(patterns, len(logs))
        logger.info(
            "Pattern analysis: %d patterns, %d interventions, confidence=%d, skipped=%s",
            len(patterns), len(interventions), confidence, skipped,
        )
        return PatternDetectionResult(
            patterns=patterns,
            interventions=interventions,
            recommendations=recommendations,
            confidence=confidence,
            data_points=len(logs),
            skipped_analyses=skipped,
        )

    async def _run_analysis(
        self, name: str, fn: Analysis, logs: list[ActivityLog], now: datetime
    ) -> list[DetectedPattern] | None:
        """Run one analysis off the event loop; None when it timed out or failed."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, logs, now), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Pattern analysis %s timed out after %.1fs", name, self._timeout)
        except Exception:
            logger.exception("Pattern analysis %s failed", name)
        return None
