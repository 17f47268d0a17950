"""MCP tools for adaptive interventions and graduated difficulty."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from sharpcoach.domains.coaching.domain_logic.coaching_models import PersonaType
from sharpcoach.domains.coaching.tools.coaching_tools import error_payload
from sharpcoach.domains.coaching.tools.payloads import (
    behavioral_context,
    logs_from_list,
    outcome_from_dict,
    rebuild_personalization,
)

if TYPE_CHECKING:
    from sharpcoach.core.audit.logger import AuditLogger
    from sharpcoach.core.storage.profiles import PersonalizationRepository
    from sharpcoach.domains.coaching.domain_logic.adaptive_interventions import (
        AdaptiveInterventionEngine,
    )
    from sharpcoach.domains.coaching.domain_logic.coaching_models import (
        ActivityLog,
        PersonalizationProfile,
    )

logger = logging.getLogger(__name__)


def register_intervention_tools(
    mcp: FastMCP,
    engine: AdaptiveInterventionEngine,
    profiles: PersonalizationRepository | None = None,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register intervention tools on the MCP server.

    With a profile repository, personalization is read from storage and
    rebuilt only when the refresh gate says it is stale.
    """

    def _audit(tool_name: str, tool_input: Any, start: float, user_id: str, **fields: Any) -> None:
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name=tool_name,
                tool_input=tool_input,
                user_id=user_id,
                duration_ms=(time.monotonic() - start) * 1000,
                **fields,
            )

    def _personalization(
        user_id: str, profile: dict | None, logs: list[ActivityLog]
    ) -> PersonalizationProfile:
        if profiles is None:
            return rebuild_personalization(user_id, profile, recent_logs=logs)
        return profiles.get_or_refresh(
            user_id, lambda previous: rebuild_personalization(user_id, profile, previous, logs)
        )

    @mcp.tool
    async def select_intervention(
        ctx: Context,
        user_id: str,
        recent_logs: list[dict] | None = None,
        profile: dict | None = None,
        now: str = "",
    ) -> str:
        """Pick the best-fitting nudge for this moment, if any clears the bar.

        Selecting an intervention counts as using it: cooldowns and daily
        caps apply to later calls.

        Args:
            user_id: Stable user identifier.
            recent_logs: Recent activity logs, any order.
            profile: User profile (persona_type, motivation_style, feedback_style, ...).
            now: The user's local time (ISO 8601). Defaults to now (UTC).
        """
        start = time.monotonic()
        tool_input = {"user_id": user_id, "recent_logs": recent_logs, "profile": profile, "now": now}
        try:
            context = behavioral_context(user_id, now)
            logs = logs_from_list(recent_logs)
            personalization = _personalization(user_id, profile, logs)
            intervention = engine.select_optimal_intervention(context, logs, personalization)
        except Exception as exc:
            logger.exception("select_intervention failed")
            _audit("select_intervention", tool_input, start, user_id,
                   status="failure", error_type=type(exc).__name__)
            return error_payload("select_intervention", exc)

        _audit("select_intervention", tool_input, start, user_id,
               metadata={"template_id": intervention.template_id if intervention else None})
        return json.dumps({
            "status": "ok",
            "intervention": intervention.to_dict() if intervention else None,
        })

    @mcp.tool
    async def record_intervention_outcome(
        ctx: Context,
        user_id: str,
        template_id: str,
        outcome: dict,
    ) -> str:
        """Feed back how the user responded to an intervention.

        Args:
            user_id: Stable user identifier.
            template_id: Template of the intervention shown, e.g. 'morning_energy_boost'.
            outcome: {engaged, action_taken, success_conditions_met, user_feedback}.
        """
        start = time.monotonic()
        tool_input = {"user_id": user_id, "template_id": template_id, "outcome": outcome}
        try:
            record = engine.record_intervention_outcome(user_id, template_id, outcome_from_dict(outcome))
        except Exception as exc:
            logger.exception("record_intervention_outcome failed")
            _audit("record_intervention_outcome", tool_input, start, user_id,
                   status="failure", error_type=type(exc).__name__)
            return error_payload("record_intervention_outcome", exc)

        _audit("record_intervention_outcome", tool_input, start, user_id)
        return json.dumps({
            "status": "ok",
            "template_id": template_id,
            "effectiveness": round(record.effectiveness, 4),
            "success_rate": round(record.success_rate, 4),
        })

    @mcp.tool
    def graduated_intervention(
        persona_type: str,
        habit_level: str = "beginner",
        recent_success_rate: float = 0.0,
    ) -> str:
        """Suggest activities sized to the user's current habit strength.

        Args:
            persona_type: endurance, strength, sport, professional, or weight_mgmt.
            habit_level: beginner, developing, or established.
            recent_success_rate: Fraction of recent attempts completed (0-1).
        """
        try:
            persona = PersonaType(persona_type)
            if habit_level not in ("beginner", "developing", "established"):
                raise ValueError(f"Invalid habit_level: {habit_level!r}")
            ladder = engine.get_graduated_intervention(persona, habit_level, recent_success_rate)
        except ValueError as exc:
            return error_payload("graduated_intervention", exc)
        return json.dumps({
            "status": "ok",
            "difficulty": ladder.difficulty,
            "suggestions": ladder.suggestions,
            "time_commitment": ladder.time_commitment,
        })
