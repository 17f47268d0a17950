"""Data models for rule cards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ConfidenceTier = Literal["high", "medium", "low"]
SafetyAction = Literal["warn", "refer_professional", "stop_advice"]

# Highest tier first: confidence resolution walks this order.
TIERS: tuple[ConfidenceTier, ...] = ("high", "medium", "low")


@dataclass
class RuleResponse:
    """A tier-specific response template."""

    message_template: str
    action_items: list[str] = field(default_factory=list)
    identity_reinforcement: str | None = None
    safety_warnings: list[str] = field(default_factory=list)
    follow_up_suggested: bool = False


@dataclass
class ClarifyingQuestion:
    """A question that fills in missing context.

    ``context_conditions`` name the missing fields the question addresses,
    written as ``missing_<field>``.
    """

    question: str
    importance: int
    context_conditions: list[str] = field(default_factory=list)
    response_mapping: dict[str, dict[str, Any]] = field(default_factory=dict)

    def addressed_fields(self) -> set[str]:
        return {c.removeprefix("missing_") for c in self.context_conditions}


@dataclass
class SafetyCheck:
    condition: str
    warning: str
    action: SafetyAction = "warn"


@dataclass
class RuleCard:
    """A static scenario playbook."""

    id: str
    name: str
    description: str
    family: str
    triggers: list[str]
    confidence_requirements: dict[str, list[str]]
    responses: dict[str, RuleResponse]
    clarifying_questions: list[ClarifyingQuestion] = field(default_factory=list)
    safety_checks: list[SafetyCheck] = field(default_factory=list)
    priority: int = 5
    version: str = "1.0.0"
    tags: list[str] = field(default_factory=list)

    def requirements(self, tier: ConfidenceTier) -> list[str]:
        return self.confidence_requirements.get(tier, [])


@dataclass
class RuleCardMatch:
    """Result of scoring the catalog against one request."""

    card: RuleCard
    confidence: ConfidenceTier
    match_score: float
    missing_context: list[str] = field(default_factory=list)
    recommended_question: ClarifyingQuestion | None = None


@dataclass
class RenderedCardResponse:
    message: str
    action_items: list[str]
    identity_reinforcement: str | None = None
    safety_warnings: list[str] = field(default_factory=list)
    clarifying_question: str | None = None
    follow_up_suggested: bool = False
