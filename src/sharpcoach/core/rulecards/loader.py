"""Rule card loader: reads YAML definitions from disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from sharpcoach.core.rulecards.models import (
    TIERS,
    ClarifyingQuestion,
    RuleCard,
    RuleResponse,
    SafetyCheck,
)
from sharpcoach.core.rulecards.registry import RuleCardRegistry

logger = logging.getLogger(__name__)


class RuleCardError(Exception):
    """Raised when a rule card definition cannot be loaded."""


def load_rule_card_directory(directory: str | Path, registry: RuleCardRegistry) -> int:
    """Load, validate, and register every YAML card in a directory.

    Cards that fail validation (including the nested-tier check) are
    logged and skipped. Files starting with an underscore are ignored.

    Returns the number of cards registered.
    """
    from sharpcoach.core.rulecards.validator import validate_rule_card

    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Rule card directory does not exist: %s", directory)
        return 0

    count = 0
    for path in sorted(directory.rglob("*.yaml")):
        if path.name.startswith("_"):
            continue
        try:
            card = load_rule_card_file(path)
        except RuleCardError:
            logger.exception("Failed to load rule card from %s", path)
            continue

        errors = validate_rule_card(card)
        if errors:
            for err in errors:
                logger.error("%s: %s", path.name, err)
            continue

        registry.register(card)
        count += 1
        logger.info("Loaded rule card: %s (priority %d)", card.id, card.priority)
    return count


def load_rule_card_file(path: Path) -> RuleCard:
    """Parse a YAML file into a RuleCard instance."""
    try:
        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise RuleCardError(f"Cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise RuleCardError(f"{path}: top level must be a mapping")
    return rule_card_from_dict(data)


def rule_card_from_dict(data: dict[str, Any]) -> RuleCard:
    """Build a RuleCard from its mapping form."""
    try:
        requirements = data.get("confidence_requirements", {})
        responses = data.get("responses", {})
        return RuleCard(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=(data.get("description") or "").strip(),
            family=data.get("family", ""),
            triggers=[str(t) for t in data.get("triggers", [])],
            confidence_requirements={
                tier: list(requirements.get(tier) or []) for tier in TIERS
            },
            responses={
                tier: _response_from_dict(responses[tier])
                for tier in TIERS
                if tier in responses
            },
            clarifying_questions=[
                ClarifyingQuestion(
                    question=q["question"],
                    importance=int(q.get("importance", 5)),
                    context_conditions=list(q.get("context_conditions", [])),
                    response_mapping=dict(q.get("response_mapping") or {}),
                )
                for q in data.get("clarifying_questions", [])
            ],
            safety_checks=[
                SafetyCheck(
                    condition=s["condition"],
                    warning=s["warning"],
                    action=s.get("action", "warn"),
                )
                for s in data.get("safety_checks", [])
            ],
            priority=int(data.get("priority", 5)),
            version=str(data.get("version", "1.0.0")),
            tags=list(data.get("tags", [])),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise RuleCardError(f"Invalid rule card {data.get('id', '?')!r}: {exc}") from exc


def _response_from_dict(data: dict[str, Any]) -> RuleResponse:
    return RuleResponse(
        message_template=data["message_template"].strip(),
        action_items=list(data.get("action_items", [])),
        identity_reinforcement=data.get("identity_reinforcement"),
        safety_warnings=list(data.get("safety_warnings", [])),
        follow_up_suggested=bool(data.get("follow_up_suggested", False)),
    )
