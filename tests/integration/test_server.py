"""Integration tests for the SharpCoach MCP server."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import pytest
from conftest import FIXED_NOW
from fastmcp import Client

from sharpcoach.core.config.settings import Settings
from sharpcoach.core.server.app import create_app
from sharpcoach.core.storage.database import CoachingDatabase
from sharpcoach.core.storage.encryption import FieldEncryptor
from sharpcoach.core.storage.profiles import PersonalizationRepository
from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    PersonaType,
    PersonalizationProfile,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON text a tool returned."""
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "generate_coaching_response",
    "comprehensive_safety_check",
    "analyze_patterns",
    "select_intervention",
    "record_intervention_outcome",
    "graduated_intervention",
]

NOW = FIXED_NOW.isoformat()


@pytest.fixture
def database():
    return CoachingDatabase(":memory:")


@pytest.fixture
def client(database):
    """An MCP client over a fresh server with in-memory storage and a test key."""
    settings = Settings(
        history_backend="memory",
        encryption_key=FieldEncryptor.generate_key(),
    )
    mcp = create_app(
        settings_override=settings,
        database_override=database,
        clock=lambda: FIXED_NOW,
    )
    return Client(mcp)


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_reports_engines(client):
    async def _check():
        async with client:
            status = _payload(await client.call_tool("health_check", {}))
            assert status["status"] == "ok"
            assert status["rule_cards_loaded"] == 5
            assert status["intervention_templates"] == 4
            assert status["storage_enabled"] is True
            assert status["profiles_enabled"] is True
    _run(_check())


def test_coaching_response_asks_when_context_is_thin(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("generate_coaching_response", {
                "text": "I have a tennis match in 3 hours, what should I eat?",
                "context": {"profile": {"persona_type": "sport"}},
            }))
            response = result["response"]
            assert response["scenario"] == "pre_activity_nutrition"
            assert response["confidence"] == "low"
            assert response["clarifying_question"] == "Did you eat a full meal in the last 3 hours?"
    _run(_check())


def test_coaching_response_blocks_red_flags(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("generate_coaching_response", {
                "text": "I get chest pain when I sprint, can I train today?",
            }))
            assert result["response"]["blocked"] is True
            assert result["response"]["confidence"] == "high"
    _run(_check())


def test_safety_check_tool(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("comprehensive_safety_check", {
                "text": "boxing tonight",
                "profile": {"medications": ["blood thinners"]},
                "now": NOW,
            }))
            report = result["report"]
            assert report["safe"] is False
            assert report["highest_severity"] == "high"
    _run(_check())


def test_analyze_patterns_needs_enough_logs(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("analyze_patterns", {
                "context": {
                    "recent_logs": [
                        {"timestamp": NOW, "category": "sleep", "data": {"hours": 7}},
                    ],
                },
            }))
            assert result["result"]["patterns"] == []
            assert result["result"]["data_points"] == 1
    _run(_check())


def test_select_then_record_intervention(client):
    async def _check():
        async with client:
            args = {"user_id": "alice", "recent_logs": [], "now": NOW}
            first = _payload(await client.call_tool("select_intervention", args))
            assert first["intervention"]["template_id"] == "streak_recovery_gentle"

            # Selection counted as a use, so the cooldown now applies.
            second = _payload(await client.call_tool("select_intervention", args))
            assert second["intervention"] is None

            recorded = _payload(await client.call_tool("record_intervention_outcome", {
                "user_id": "alice",
                "template_id": "streak_recovery_gentle",
                "outcome": {"engaged": True, "action_taken": True},
            }))
            assert recorded["effectiveness"] == pytest.approx(0.79)
            assert recorded["success_rate"] == pytest.approx(0.76)
    _run(_check())


def test_personalization_profile_persisted(client, database):
    async def _check():
        async with client:
            await client.call_tool("select_intervention", {
                "user_id": "bob", "profile": {"persona_type": "endurance"}, "now": NOW,
            })
    _run(_check())
    count = database.connection.execute(
        "SELECT COUNT(*) FROM personalization_profiles"
    ).fetchone()[0]
    assert count == 1


def test_persona_detected_from_logs_when_not_stated(database):
    key = FieldEncryptor.generate_key()
    mcp = create_app(
        settings_override=Settings(history_backend="memory", encryption_key=key),
        database_override=database,
        clock=lambda: FIXED_NOW,
    )
    logs = [
        {
            "timestamp": (FIXED_NOW - timedelta(days=d)).isoformat(),
            "category": "exercise",
            "data": {"type": "tennis"},
            "original_text": "tennis practice",
        }
        for d in range(1, 6)
    ]

    async def _check():
        async with Client(mcp) as client:
            await client.call_tool("select_intervention", {
                "user_id": "carol", "recent_logs": logs, "now": NOW,
            })
    _run(_check())

    stored = PersonalizationRepository(
        database, FieldEncryptor(key), PersonalizationProfile.from_dict
    ).get("carol")
    assert stored.persona_type is PersonaType.SPORT
    assert stored.persona_confidence == 65.0


def test_graduated_intervention(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("graduated_intervention", {
                "persona_type": "strength",
                "habit_level": "established",
                "recent_success_rate": 0.9,
            }))
            assert result["difficulty"] == "ambitious"
            assert result["time_commitment"] == "30-60 minutes"
    _run(_check())


def test_bad_timestamp_returns_error_payload(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("select_intervention", {
                "user_id": "alice", "now": "yesterday-ish",
            }))
            assert result["status"] == "error"
            assert result["error_type"] == "ValueError"
    _run(_check())


def test_unknown_template_returns_error_payload(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool("record_intervention_outcome", {
                "user_id": "alice",
                "template_id": "does_not_exist",
                "outcome": {"engaged": True},
            }))
            assert result["status"] == "error"
            assert result["error_type"] == "KeyError"
    _run(_check())
