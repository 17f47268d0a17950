"""Audit logger for coaching tool invocations.

Every tool call leaves a row in ``audit_log`` without any raw user text:

* ``tool_input_hash``: SHA-256 of the canonical JSON input.
* ``user_id_hash``: SHA-256 of the user id, so events can be grouped per
  user without storing the id.
* ``scenario`` / ``confidence`` / ``safety_blocked``: the coaching outcome.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sharpcoach.core.storage.database import CoachingDatabase, DatabaseError

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 of canonical JSON, or ``""`` when ``data`` is not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'coaching_response' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    user_id_hash: str | None = None
    scenario: str | None = None
    confidence: str | None = None
    safety_blocked: bool = False
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Writes audit events to the ``audit_log`` table.

    A failed write is logged and reported as an empty event id; auditing
    never breaks the request being audited.

    Usage::

        audit = AuditLogger(db)
        audit.log_tool_call("analyze_patterns", {"user_id": "u1"},
                            confidence="medium", duration_ms=12.5)
    """

    def __init__(self, database: CoachingDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = json.dumps(event.metadata, separators=(",", ":")) if event.metadata else None

        try:
            with self._db.lock:
                self._db.connection.execute(
                    """INSERT INTO audit_log
                       (id, timestamp, action, tool_name, tool_input_hash, user_id_hash,
                        scenario, confidence, safety_blocked, duration_ms, status,
                        error_type, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.action,
                        event.tool_name or None,
                        event.tool_input_hash or None,
                        event.user_id_hash,
                        event.scenario,
                        event.confidence,
                        1 if event.safety_blocked else 0,
                        event.duration_ms,
                        event.status,
                        event.error_type,
                        metadata_json,
                    ),
                )
        except (sqlite3.Error, DatabaseError):
            logger.exception("Failed to write audit event, event lost")
            return ""
        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        user_id: str | None = None,
        scenario: str | None = None,
        confidence: str | None = None,
        safety_blocked: bool = False,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            user_id_hash=_hash_input(user_id) if user_id else None,
            scenario=scenario,
            confidence=confidence,
            safety_blocked=safety_blocked,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_coaching_response(
        self,
        text: str,
        *,
        scenario: str,
        confidence: str,
        safety_blocked: bool,
        duration_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record the outcome of one coaching decision. The text is only hashed."""
        return self.log_event(AuditEvent(
            action="coaching_response",
            tool_input_hash=_hash_input(text),
            scenario=scenario,
            confidence=confidence,
            safety_blocked=safety_blocked,
            duration_ms=duration_ms,
            metadata=metadata or {},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Audit events matching the filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        params.append(limit)
        with self._db.lock:
            rows = self._db.connection.execute(
                f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?", params
            ).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        with self._db.lock:
            if since:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
                ).fetchone()
            else:
                row = self._db.connection.execute("SELECT COUNT(*) FROM audit_log").fetchone()
        return row[0]

    def count_blocked(self) -> int:
        """How many coaching requests were stopped by the safety gate."""
        with self._db.lock:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE safety_blocked = 1"
            ).fetchone()
        return row[0]
