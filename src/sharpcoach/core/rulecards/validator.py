"""Rule card validator: ensures card definitions are well-formed.

The central authoring rule is tier nesting: every field the low tier
requires is also required by medium, and every medium field by high.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sharpcoach.core.rulecards.expressions import TemplateSyntaxError, compile_template
from sharpcoach.core.rulecards.loader import RuleCardError, load_rule_card_file
from sharpcoach.core.rulecards.models import TIERS, RuleCard

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["id", "name", "family"]
VALID_ACTIONS = {"warn", "refer_professional", "stop_advice"}


def check_tier_nesting(card: RuleCard) -> list[str]:
    """Return errors for every tier whose requirements are not a superset of the tier below."""
    errors: list[str] = []
    high = set(card.requirements("high"))
    medium = set(card.requirements("medium"))
    low = set(card.requirements("low"))
    if not medium <= high:
        errors.append(
            f"Tier nesting violated: high is missing medium fields {sorted(medium - high)}"
        )
    if not low <= medium:
        errors.append(
            f"Tier nesting violated: medium is missing low fields {sorted(low - medium)}"
        )
    return errors


def validate_rule_card(card: RuleCard) -> list[str]:
    """Validate an already-parsed card. Returns a list of error strings."""
    errors: list[str] = []

    for field_name in REQUIRED_FIELDS:
        if not getattr(card, field_name, None):
            errors.append(f"Missing or empty required field '{field_name}'")

    if not card.triggers:
        errors.append("No triggers defined")

    if not 1 <= card.priority <= 10:
        errors.append(f"Priority {card.priority} outside 1-10")

    errors.extend(check_tier_nesting(card))

    for tier in TIERS:
        response = card.responses.get(tier)
        if response is None:
            errors.append(f"No response defined for tier '{tier}'")
            continue
        for text in [response.message_template, *response.action_items]:
            try:
                compile_template(text)
            except TemplateSyntaxError as exc:
                errors.append(f"Tier '{tier}': {exc}")

    for question in card.clarifying_questions:
        if not 1 <= question.importance <= 10:
            errors.append(f"Question {question.question!r}: importance outside 1-10")
        if not question.context_conditions:
            errors.append(f"Question {question.question!r}: no context conditions")

    for check in card.safety_checks:
        if check.action not in VALID_ACTIONS:
            errors.append(f"Safety check '{check.condition}': unknown action '{check.action}'")

    return errors


def validate_rule_card_file(path: Path) -> tuple[RuleCard | None, list[str]]:
    """Validate a single rule card YAML file.

    Returns: (card_or_none, errors)
    """
    try:
        card = load_rule_card_file(path)
    except RuleCardError as exc:
        return None, [f"{path.name}: Failed to load: {exc}"]

    errors = [f"{path.name}: {err}" for err in validate_rule_card(card)]

    name = path.name
    if not (name == f"{card.id}.yaml" or name.startswith(f"{card.id}.")):
        errors.append(f"{name}: Filename should match rule card id '{card.id}'")

    return card, errors


def validate_rule_card_directory(directory: str | Path) -> tuple[int, list[str]]:
    """Validate all rule card YAML files in a directory.

    Returns: (card_count, errors)
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0, [f"Rule card directory not found: {directory}"]

    yaml_files = sorted(p for p in directory.rglob("*.yaml") if not p.name.startswith("_"))
    if not yaml_files:
        return 0, [f"No rule card YAML files found in {directory}"]

    errors: list[str] = []
    seen_ids: dict[str, Path] = {}
    loaded = 0

    for path in yaml_files:
        card, file_errors = validate_rule_card_file(path)
        if file_errors:
            errors.extend(file_errors)
            continue

        assert card is not None  # for type checkers
        loaded += 1

        if card.id in seen_ids:
            errors.append(
                f"{path.name}: Duplicate ID '{card.id}', already defined in "
                f"{seen_ids[card.id].name}"
            )
        else:
            seen_ids[card.id] = path

    return loaded, errors
