"""Render a matched rule card into user-facing guidance."""

from __future__ import annotations

import logging
from typing import Any, Callable

from sharpcoach.core.rulecards.expressions import render_template
from sharpcoach.core.rulecards.models import RenderedCardResponse, RuleCard, RuleCardMatch

logger = logging.getLogger(__name__)

ACTION_SUFFIXES = {
    "refer_professional": "Consider consulting with a healthcare professional or sports medicine expert.",
    "stop_advice": "I recommend stopping here and seeking professional guidance.",
}


def triggered_safety_warnings(card: RuleCard, holds: Callable[[str], bool]) -> list[str]:
    """Warnings for every safety check whose condition holds, each followed by its action suffix."""
    warnings: list[str] = []
    for check in card.safety_checks:
        try:
            triggered = holds(check.condition)
        except Exception:
            logger.exception("Safety condition %r failed on card %s", check.condition, card.id)
            triggered = False
        if not triggered:
            continue
        warnings.append(check.warning)
        suffix = ACTION_SUFFIXES.get(check.action)
        if suffix:
            warnings.append(suffix)
    return warnings


def render_match(
    match: RuleCardMatch,
    values: dict[str, Any],
    safety_holds: Callable[[str], bool],
) -> RenderedCardResponse:
    """Render the tier response of ``match`` with ``values``.

    Triggered safety-check warnings replace the tier's static warnings.
    """
    response = match.card.responses[match.confidence]
    warnings = triggered_safety_warnings(match.card, safety_holds)

    return RenderedCardResponse(
        message=render_template(response.message_template, values),
        action_items=[render_template(item, values) for item in response.action_items],
        identity_reinforcement=response.identity_reinforcement,
        safety_warnings=warnings or list(response.safety_warnings),
        clarifying_question=(
            match.recommended_question.question if match.recommended_question else None
        ),
        follow_up_suggested=response.follow_up_suggested,
    )
