"""
Idempotency ledger: exactly-once semantics for (action, idempotency key) pairs.

record() is write-once. A second writer racing the first hits the UNIQUE
constraint, inserts nothing, and reads back the first writer's row.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .dao import utc_now_iso
from .db import get_db, init_db
from ..util.logging import logger


def serialize_response(payload: Dict[str, Any]) -> str:
    """Stable JSON text for a response body; stored once and replayed verbatim."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


@dataclass
class IdempotencyRecord:
    event_id: str
    ts: str
    action: str
    idempotency_key: str
    trace_id: Optional[str]
    status: int
    response_json: str

    @property
    def payload(self) -> Dict[str, Any]:
        return json.loads(self.response_json)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "ts": self.ts,
            "action": self.action,
            "idempotencyKey": self.idempotency_key,
            "traceId": self.trace_id,
            "status": self.status,
        }


def _row_to_record(row) -> IdempotencyRecord:
    return IdempotencyRecord(
        event_id=row[0],
        ts=row[1],
        action=row[2],
        idempotency_key=row[3],
        trace_id=row[4],
        status=int(row[5]),
        response_json=row[6],
    )


_SELECT = "SELECT event_id, ts, action, idempotency_key, trace_id, status, response_json FROM execute_events"


class IdempotencyLedger:

    def __init__(self, db_path: str = None):
        self.db_path = db_path
        init_db(db_path)

    def lookup(self, action: str, idempotency_key: str) -> Optional[IdempotencyRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"{_SELECT} WHERE action = ? AND idempotency_key = ?", (action, idempotency_key))
            row = cursor.fetchone()
        return _row_to_record(row) if row else None

    def record(self, action: str, idempotency_key: str, status: int, payload: Dict[str, Any],
               trace_id: str = None, event_id: str = None) -> IdempotencyRecord:
        """Insert the outcome once and return the row that won."""
        event_id = event_id or str(uuid.uuid4())
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO execute_events "
                "(event_id, ts, action, idempotency_key, trace_id, status, response_json) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (event_id, utc_now_iso(), action, idempotency_key, trace_id, int(status),
                 serialize_response(payload))
            )
            inserted = cursor.rowcount == 1
            conn.commit()
            cursor.execute(f"{_SELECT} WHERE action = ? AND idempotency_key = ?", (action, idempotency_key))
            row = cursor.fetchone()

        if not inserted:
            logger.info(f"Ledger entry for {action}/{idempotency_key} already recorded; keeping first writer")
        return _row_to_record(row)

    def recent(self, limit: int = 10) -> List[IdempotencyRecord]:
        if limit <= 0:
            return []
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"{_SELECT} ORDER BY ts DESC, rowid DESC LIMIT ?", (limit,))
            return [_row_to_record(row) for row in cursor.fetchall()]
