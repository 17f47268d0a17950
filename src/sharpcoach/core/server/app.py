"""SharpCoach MCP server: application factory.

This module provides:
- create_app() for testability (integration tests build fresh servers)
- a lazy module-level ``mcp`` for FastMCP discovery
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastmcp import FastMCP

from sharpcoach.core.audit.logger import AuditLogger
from sharpcoach.core.config.settings import Settings, get_settings
from sharpcoach.core.storage.database import CoachingDatabase
from sharpcoach.core.storage.encryption import EncryptionError, FieldEncryptor
from sharpcoach.core.storage.history import InterventionHistoryStore, create_history_store
from sharpcoach.core.storage.profiles import PersonalizationRepository
from sharpcoach.domains.coaching.domain_logic.adaptive_interventions import AdaptiveInterventionEngine
from sharpcoach.domains.coaching.domain_logic.coaching_models import PersonalizationProfile, utcnow
from sharpcoach.domains.coaching.domain_logic.orchestrator import CoachingDecisionOrchestrator
from sharpcoach.domains.coaching.domain_logic.pattern_detection import PatternDetectionService
from sharpcoach.domains.coaching.domain_logic.rule_card_context import (
    RULE_CARD_DIR,
    build_rule_cards_engine,
)
from sharpcoach.domains.coaching.domain_logic.safety_monitor import SafetyMonitor
from sharpcoach.domains.coaching.tools.coaching_tools import register_coaching_tools
from sharpcoach.domains.coaching.tools.intervention_tools import register_intervention_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "SharpCoach"
VERSION = "0.1.0"


def create_app(
    *,
    settings_override: Settings | None = None,
    database_override: CoachingDatabase | None = None,
    history_store_override: InterventionHistoryStore | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastMCP:
    """Create and configure the SharpCoach MCP server.

    1. Opens the coaching database when a durable backend or encryption is configured
    2. Loads the rule card catalog
    3. Builds the safety, pattern, intervention, and orchestration engines
    4. Registers the tools
    """
    settings = settings_override or get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "SharpCoach: confidence-aware fitness and nutrition coaching. "
            "Screens every request for safety first, mines activity logs for "
            "patterns, answers from scenario handlers and rule cards, and asks "
            "a clarifying question when the context is too thin to be sure."
        ),
    )

    # --- Storage ---
    database = database_override
    if database is None and (settings.history_backend == "sqlite" or settings.encryption_key):
        database = CoachingDatabase(settings.db_path)
    if database is not None:
        database.initialize()
        logger.info("Coaching database ready: %s (schema v%d)", database.path, database.get_schema_version())

    audit_logger = AuditLogger(database) if database is not None else None

    profiles: PersonalizationRepository | None = None
    if database is not None and settings.encryption_key:
        try:
            profiles = PersonalizationRepository(
                database,
                FieldEncryptor(settings.encryption_key),
                PersonalizationProfile.from_dict,
                max_age_days=settings.profile_refresh_days,
                confidence_floor=settings.profile_confidence_floor,
                clock=clock,
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize profile storage: %s", exc)
            logger.warning("Continuing without stored personalization profiles")
    else:
        logger.info("No ENCRYPTION_KEY configured; personalization profiles are not persisted")

    history = history_store_override or create_history_store(settings.history_backend, database)

    # --- Engines ---
    rule_cards = build_rule_cards_engine(RULE_CARD_DIR, clock=clock)
    safety = SafetyMonitor()
    patterns = PatternDetectionService(
        window_days=settings.pattern_window_days,
        analysis_timeout=settings.pattern_analysis_timeout,
        clock=clock,
    )
    interventions = AdaptiveInterventionEngine(history, threshold=settings.intervention_threshold)
    orchestrator = CoachingDecisionOrchestrator(
        safety=safety,
        patterns=patterns,
        rule_cards=rule_cards,
        audit=audit_logger,
        clock=clock,
    )

    # --- Tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": SERVER_NAME,
            "version": VERSION,
            "rule_cards_loaded": len(rule_cards.registry),
            "intervention_templates": len(interventions.templates),
            "history_backend": settings.history_backend,
            "storage_enabled": database is not None,
            "profiles_enabled": profiles is not None,
        }
        if audit_logger is not None:
            status["audit_events"] = audit_logger.count_events()
        return status

    register_coaching_tools(server, orchestrator, safety, patterns, audit_logger)
    register_intervention_tools(server, interventions, profiles, audit_logger)
    logger.info("Coaching and intervention tools registered")

    return server


# Lazy: only created when accessed, so tests importing create_app stay side-effect free.
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
