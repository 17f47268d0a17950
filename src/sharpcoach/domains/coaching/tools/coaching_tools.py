"""MCP tools for coaching responses, safety screening, and pattern analysis.

Every tool takes JSON-style payloads, returns a JSON string, and leaves a
hashed audit record. Payload or engine failures come back as an error
object instead of a raised exception.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from sharpcoach.domains.coaching.domain_logic.coaching_models import UserProfile
from sharpcoach.domains.coaching.tools.payloads import context_from_dict, logs_from_list, parse_now

if TYPE_CHECKING:
    from sharpcoach.core.audit.logger import AuditLogger
    from sharpcoach.domains.coaching.domain_logic.orchestrator import CoachingDecisionOrchestrator
    from sharpcoach.domains.coaching.domain_logic.pattern_detection import PatternDetectionService
    from sharpcoach.domains.coaching.domain_logic.safety_monitor import SafetyMonitor

logger = logging.getLogger(__name__)


def error_payload(tool_name: str, exc: Exception) -> str:
    return json.dumps({
        "status": "error",
        "tool": tool_name,
        "error_type": type(exc).__name__,
        "message": str(exc),
    })


def register_coaching_tools(
    mcp: FastMCP,
    orchestrator: CoachingDecisionOrchestrator,
    safety: SafetyMonitor,
    patterns: PatternDetectionService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register the coaching decision tools on the MCP server."""

    def _audit(tool_name: str, tool_input: Any, start: float, **fields: Any) -> None:
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name=tool_name,
                tool_input=tool_input,
                duration_ms=(time.monotonic() - start) * 1000,
                **fields,
            )

    @mcp.tool
    async def generate_coaching_response(
        ctx: Context,
        text: str,
        context: dict | None = None,
    ) -> str:
        """Answer a free-text coaching question using the user's context.

        Args:
            text: The user's message, e.g. 'I have a tennis match in 3 hours, what should I eat?'.
            context: User context: profile, recent_logs, optional last_meal /
                last_workout / last_sleep pointers and known_patterns.
        """
        start = time.monotonic()
        tool_input = {"text": text, "context": context}
        try:
            user_context = context_from_dict(context)
            response = await orchestrator.generate_response(text, user_context)
        except Exception as exc:
            logger.exception("generate_coaching_response failed")
            _audit("generate_coaching_response", tool_input, start,
                   status="failure", error_type=type(exc).__name__)
            return error_payload("generate_coaching_response", exc)

        _audit(
            "generate_coaching_response", tool_input, start,
            scenario=response.scenario.value,
            confidence=response.confidence,
            safety_blocked=response.blocked,
        )
        return json.dumps({"status": "ok", "response": response.to_dict()})

    @mcp.tool
    async def comprehensive_safety_check(
        ctx: Context,
        text: str,
        profile: dict | None = None,
        recent_logs: list[dict] | None = None,
        now: str = "",
    ) -> str:
        """Screen a message and recent training load for medical and injury risks.

        Args:
            text: The user's message.
            profile: User profile (health_conditions, medications, resting_hr, ...).
            recent_logs: Recent activity logs used for the overtraining score.
            now: Reference time (ISO 8601). Defaults to now.
        """
        start = time.monotonic()
        tool_input = {"text": text, "profile": profile, "recent_logs": recent_logs}
        try:
            report = await safety.perform_comprehensive_safety_check(
                text,
                UserProfile.from_dict(profile),
                logs_from_list(recent_logs),
                now=parse_now(now),
            )
        except Exception as exc:
            logger.exception("comprehensive_safety_check failed")
            _audit("comprehensive_safety_check", tool_input, start,
                   status="failure", error_type=type(exc).__name__)
            return error_payload("comprehensive_safety_check", exc)

        _audit("comprehensive_safety_check", tool_input, start, safety_blocked=not report.safe,
               metadata={"highest_severity": report.highest_severity})
        return json.dumps({"status": "ok", "report": report.to_dict()})

    @mcp.tool
    async def analyze_patterns(
        ctx: Context,
        context: dict,
    ) -> str:
        """Mine the user's recent logs for sleep, nutrition, recovery, and mood patterns.

        Needs at least 10 logs inside the analysis window; otherwise the
        result is empty with zero confidence.

        Args:
            context: User context with profile and recent_logs.
        """
        start = time.monotonic()
        try:
            result = await patterns.analyze_patterns(context_from_dict(context))
        except Exception as exc:
            logger.exception("analyze_patterns failed")
            _audit("analyze_patterns", context, start,
                   status="failure", error_type=type(exc).__name__)
            return error_payload("analyze_patterns", exc)

        _audit("analyze_patterns", context, start,
               metadata={"patterns": len(result.patterns), "confidence": result.confidence})
        return json.dumps({"status": "ok", "result": result.to_dict()})
