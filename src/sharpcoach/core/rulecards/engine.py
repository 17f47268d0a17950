"""Rule cards engine: matches free-text requests against the card catalog.

The engine knows nothing about the coaching domain. A domain supplies:

* a :class:`ContextFieldResolver` reporting which context fields a request
  carries and the values used to fill templates;
* family predicates (``family -> (context, text) -> bool``) adding the
  context-relevance bonus;
* safety conditions (``condition -> (context, text) -> bool``) evaluated
  when a matched card is rendered.

Usage::

    registry = RuleCardRegistry()
    load_rule_card_directory(CARD_DIR, registry)
    engine = RuleCardsEngine(registry, fields=resolver,
                             family_predicates=FAMILIES,
                             safety_conditions=CONDITIONS)
    match = engine.find_best_match("what should I eat, training in 3 hours", ctx)
    if match:
        rendered = engine.generate_rule_card_response(match, ctx, text)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from sharpcoach.core.rulecards.matcher import (
    determine_tier,
    missing_context,
    score_card,
    select_question,
)
from sharpcoach.core.rulecards.models import (
    ConfidenceTier,
    RenderedCardResponse,
    RuleCard,
    RuleCardMatch,
)
from sharpcoach.core.rulecards.registry import RuleCardRegistry
from sharpcoach.core.rulecards.renderer import render_match

logger = logging.getLogger(__name__)

ContextPredicate = Callable[[Any, str], bool]

DEFAULT_MATCH_THRESHOLD = 10.0


@runtime_checkable
class ContextFieldResolver(Protocol):
    """Maps a request onto named context fields."""

    def available_fields(self, context: Any, text: str) -> set[str]: ...

    def template_values(self, context: Any, text: str) -> dict[str, Any]: ...


class RuleCardsEngine:
    """Scores, tiers, and renders rule cards. Stateless after construction."""

    def __init__(
        self,
        registry: RuleCardRegistry,
        *,
        fields: ContextFieldResolver,
        family_predicates: Mapping[str, ContextPredicate] | None = None,
        safety_conditions: Mapping[str, ContextPredicate] | None = None,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    ) -> None:
        self._registry = registry
        self._fields = fields
        self._families = dict(family_predicates or {})
        self._conditions = dict(safety_conditions or {})
        self._threshold = match_threshold

    @property
    def registry(self) -> RuleCardRegistry:
        return self._registry

    def score(self, card: RuleCard, text: str, context: Any) -> float:
        lowered = text.lower()

        def family_holds(family: str) -> bool:
            predicate = self._families.get(family)
            return bool(predicate and predicate(context, lowered))

        return score_card(card, lowered, family_holds)

    def find_best_match(self, text: str, context: Any) -> RuleCardMatch | None:
        """Return the highest-scoring card above the threshold, or None.

        Ties keep catalog order.
        """
        best: RuleCard | None = None
        best_score = 0.0
        for card in self._registry.all():
            card_score = self.score(card, text, context)
            if card_score > best_score:
                best, best_score = card, card_score

        if best is None or best_score <= self._threshold:
            logger.debug("No rule card above threshold (best=%.1f)", best_score)
            return None

        available = self._fields.available_fields(context, text)
        tier = determine_tier(best, available)
        missing = missing_context(best, available)
        match = RuleCardMatch(
            card=best,
            confidence=tier,
            match_score=best_score,
            missing_context=missing,
            recommended_question=select_question(best, tier, missing),
        )
        logger.info(
            "Rule card matched: %s score=%.1f tier=%s missing=%s",
            best.id, best_score, tier, missing,
        )
        return match

    def determine_confidence(self, card: RuleCard, context: Any, text: str = "") -> ConfidenceTier:
        return determine_tier(card, self._fields.available_fields(context, text))

    def evaluate_safety_condition(self, condition: str, context: Any, text: str = "") -> bool:
        """Unknown conditions never trigger."""
        predicate = self._conditions.get(condition)
        if predicate is None:
            logger.debug("No evaluator for safety condition %r", condition)
            return False
        return bool(predicate(context, text.lower()))

    def generate_rule_card_response(
        self, match: RuleCardMatch, context: Any, text: str = ""
    ) -> RenderedCardResponse:
        values = self._fields.template_values(context, text)
        return render_match(
            match,
            values,
            lambda condition: self.evaluate_safety_condition(condition, context, text),
        )
