"""Rule card registry: in-memory, ordered index of loaded cards."""

from __future__ import annotations

import logging

from sharpcoach.core.rulecards.models import RuleCard

logger = logging.getLogger(__name__)


class RuleCardRegistry:
    """In-memory registry of all loaded rule cards.

    Registration order is catalog order, which breaks score ties.
    """

    def __init__(self) -> None:
        self._cards: dict[str, RuleCard] = {}
        self._by_family: dict[str, list[str]] = {}

    def register(self, card: RuleCard) -> None:
        """Add a card to all indexes."""
        if card.id in self._cards:
            raise ValueError(f"Duplicate rule card id registered: {card.id!r}")
        self._cards[card.id] = card
        ids = self._by_family.setdefault(card.family, [])
        ids.append(card.id)

    def get(self, card_id: str) -> RuleCard | None:
        """Look up a card by ID."""
        return self._cards.get(card_id)

    def find_by_family(self, family: str) -> list[RuleCard]:
        return [self._cards[cid] for cid in self._by_family.get(family, [])]

    def all(self) -> list[RuleCard]:
        """Return all registered cards in catalog order."""
        return list(self._cards.values())

    def __len__(self) -> int:
        return len(self._cards)
