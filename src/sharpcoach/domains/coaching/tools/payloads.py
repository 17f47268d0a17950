"""JSON payload parsing shared by the coaching tools."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sharpcoach.domains.coaching.domain_logic.adaptive_interventions import (
    BehavioralContext,
    InterventionOutcome,
)
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    ActivityLog,
    PersonalizationProfile,
    UserContext,
    UserProfile,
    parse_timestamp,
    utcnow,
)
from sharpcoach.domains.coaching.domain_logic.persona_detection import (
    detect_persona,
    refine_persona,
)

# A persona stated by the caller is trusted more than one inferred from logs.
EXPLICIT_PERSONA_CONFIDENCE = 85.0
DEFAULT_PERSONA_CONFIDENCE = 50.0


def context_from_dict(data: dict[str, Any] | None) -> UserContext:
    """Build a :class:`UserContext` from a tool payload.

    Raises:
        ValueError: On malformed timestamps, categories, or persona types.
    """
    try:
        return UserContext.from_dict(data)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Invalid context payload: {exc}") from exc


def logs_from_list(items: list[dict[str, Any]] | None) -> list[ActivityLog]:
    logs = [ActivityLog.from_dict(item) for item in items or []]
    logs.sort(key=lambda log: log.timestamp)
    return logs


def parse_now(value: str | None) -> datetime:
    """The caller's local time; an empty value means now (UTC)."""
    return parse_timestamp(value) if value else utcnow()


def behavioral_context(user_id: str, now: str | None = None, **extra: Any) -> BehavioralContext:
    return BehavioralContext(user_id=user_id, now=parse_now(now), **extra)


def rebuild_personalization(
    user_id: str,
    profile_data: dict[str, Any] | None,
    previous: PersonalizationProfile | None = None,
    recent_logs: list[ActivityLog] | None = None,
) -> PersonalizationProfile:
    """Derive a fresh personalization profile from the payload and recent logs.

    A persona stated in the payload wins outright. Otherwise the persona is
    detected from the logs and blended into the stored one, so confidence
    builds up over successive refreshes.
    """
    profile_data = profile_data or {}
    profile = UserProfile.from_dict(profile_data)
    fresh = PersonalizationProfile.from_user_profile(user_id, profile)
    if profile.persona_stated:
        fresh.persona_confidence = EXPLICIT_PERSONA_CONFIDENCE
    else:
        detection = detect_persona(recent_logs or [], profile.goals)
        if previous is not None:
            current, confidence = previous.persona_type, previous.persona_confidence
        else:
            current = detection.persona_type if detection else profile.persona_type
            confidence = DEFAULT_PERSONA_CONFIDENCE
        fresh.persona_type, fresh.persona_confidence = refine_persona(current, confidence, detection)
    fresh.feedback_style = profile_data.get("feedback_style") or (
        previous.feedback_style if previous else None
    )
    if previous and not fresh.motivation_style:
        fresh.motivation_style = previous.motivation_style
    return fresh


def outcome_from_dict(data: dict[str, Any]) -> InterventionOutcome:
    feedback = data.get("user_feedback")
    if feedback not in (None, "positive", "neutral", "negative"):
        raise ValueError(f"Invalid user_feedback: {feedback!r}")
    return InterventionOutcome(
        engaged=bool(data.get("engaged", False)),
        action_taken=bool(data.get("action_taken", False)),
        success_conditions_met=list(data.get("success_conditions_met") or []),
        time_to_action_minutes=data.get("time_to_action_minutes"),
        user_feedback=feedback,
    )
