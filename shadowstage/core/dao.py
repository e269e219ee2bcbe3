"""
Audit trail for staging and commit operations.
Every stage-write, stage-delete and commit appends one row; writes never break the calling operation.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .db import get_db
from ..util.logging import logger


@dataclass
class AuditEvent:
    id: str
    ts: str
    actor: str
    action: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "actor": self.actor,
            "action": self.action,
            "details": self.details,
        }


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def add_audit_event(action: str, actor: str = "admin", details: Dict[str, Any] = None,
                    db_path: str = None) -> Optional[AuditEvent]:
    """Append an audit entry. Returns the entry, or None if it could not be stored."""
    event = AuditEvent(
        id=str(uuid.uuid4()),
        ts=utc_now_iso(),
        actor=str(actor or "admin"),
        action=str(action or "unknown"),
        details=details or {},
    )
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO audit_events (id, ts, actor, action, details_json) VALUES (?, ?, ?, ?, ?)",
                (event.id, event.ts, event.actor, event.action, json.dumps(event.details, sort_keys=True))
            )
            conn.commit()
    except Exception as e:
        logger.error(f"Failed to append audit event '{action}' for actor '{actor}': {e}")
        return None

    logger.log_operation(f"audit.{event.action}", "recorded", {"actor": event.actor, **event.details})
    return event


def list_audit_events(limit: int = 50, action: str = None, db_path: str = None) -> List[AuditEvent]:
    """List recent audit events, most recent first."""
    if limit <= 0:
        return []

    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            if action:
                cursor.execute(
                    "SELECT id, ts, actor, action, details_json FROM audit_events WHERE action = ? ORDER BY ts DESC LIMIT ?",
                    (action, limit)
                )
            else:
                cursor.execute(
                    "SELECT id, ts, actor, action, details_json FROM audit_events ORDER BY ts DESC LIMIT ?",
                    (limit,)
                )
            rows = cursor.fetchall()
    except Exception as e:
        logger.error(f"Failed to list audit events: {e}")
        return []

    events = []
    for event_id, ts, actor, event_action, details_json in rows:
        try:
            details = json.loads(details_json) if details_json else {}
        except (json.JSONDecodeError, ValueError):
            details = {"raw_data": details_json}
        events.append(AuditEvent(id=event_id, ts=ts, actor=actor, action=event_action, details=details))
    return events
