"""Rule card scoring and confidence-tier resolution.

All functions here are pure: they take the card, the lower-cased input
text, and the set of context fields available for the request.
"""

from __future__ import annotations

from typing import Callable

from sharpcoach.core.rulecards.models import (
    TIERS,
    ClarifyingQuestion,
    ConfidenceTier,
    RuleCard,
)

TRIGGER_POINTS = 10.0
FAMILY_POINTS = 15.0


def score_card(card: RuleCard, text: str, family_holds: Callable[[str], bool]) -> float:
    """Score one card against lower-cased input text.

    Each trigger found in the text is worth 10 points; a card whose family
    predicate holds for the request gets another 15. The sum is weighted by
    ``priority / 10``.
    """
    score = sum(TRIGGER_POINTS for trigger in card.triggers if trigger.lower() in text)
    if card.family and family_holds(card.family):
        score += FAMILY_POINTS
    return score * (card.priority / 10)


def determine_tier(card: RuleCard, available: set[str]) -> ConfidenceTier:
    """Return the highest tier whose required fields are all available."""
    for tier in TIERS:
        if set(card.requirements(tier)) <= available:
            return tier
    return "low"


def missing_context(card: RuleCard, available: set[str]) -> list[str]:
    """Fields the high tier needs that the request does not supply, in card order."""
    return [f for f in card.requirements("high") if f not in available]


def select_question(
    card: RuleCard, tier: ConfidenceTier, missing: list[str]
) -> ClarifyingQuestion | None:
    """Pick the most important question that fills a missing field.

    Nothing is asked at the high tier. Ties on importance keep card order.
    """
    if tier == "high" or not missing:
        return None
    wanted = set(missing)
    best: ClarifyingQuestion | None = None
    for question in card.clarifying_questions:
        if not question.addressed_fields() & wanted:
            continue
        if best is None or question.importance > best.importance:
            best = question
    return best
