"""
Action dispatcher: plan, preview, apply, deploy, rollback and status requests.

Per request the state moves received -> authorized -> (cached-replay | token-checked)
-> executing -> recorded -> done. The ledger is consulted before any side effect
and the final outcome, success or terminal error, is recorded before returning,
so a retried request always sees the first outcome byte for byte.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .actions import BaseAction, parse_action_payload
from .commit import CommitEngine
from .dao import utc_now_iso
from .errors import (
    CommitFailed, InvalidAction, PlannerError, ShadowStageError, TOKEN_ERRORS,
)
from .ledger import IdempotencyLedger, serialize_response
from .overlay import OverlayStore
from .planner import IPatchPlanner, PlannerRequest
from .preview import build_preview
from .tokens import GENERIC_TOKEN_ACTION, ConfirmTokenAuthority
from ..util.logging import logger


@dataclass
class ActionEvent:
    event_id: str
    timestamp: str
    trace_id: str
    event_type: str
    action: str
    idempotency_key: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "eventId": self.event_id,
            "timestamp": self.timestamp,
            "traceId": self.trace_id,
            "eventType": self.event_type,
            "action": self.action,
            "idempotencyKey": self.idempotency_key,
        }
        if self.error is not None:
            data["error"] = self.error
        else:
            data["result"] = self.result or {}
        return data


@dataclass
class DispatchResult:
    status: int
    body: str
    replayed: bool = False

    @property
    def payload(self) -> Dict[str, Any]:
        return json.loads(self.body)


def _error_body(error: ShadowStageError, trace_id: str) -> str:
    return serialize_response({"error": error.to_dict(), "traceId": trace_id})


def _planner_routes(output: Dict[str, Any]) -> List[str]:
    """previewRoutes from a planner result, top level or inside executionPlan."""
    if not isinstance(output, dict):
        return []
    routes = output.get("previewRoutes")
    if routes is None and isinstance(output.get("executionPlan"), dict):
        routes = output["executionPlan"].get("previewRoutes")
    return [r for r in (routes or []) if isinstance(r, str)]


class ActionDispatcher:
    """Runs one action request through ledger, token check, execution and recording."""

    def __init__(self, overlay: OverlayStore, commit_engine: CommitEngine, ledger: IdempotencyLedger,
                 tokens: ConfirmTokenAuthority, planner: IPatchPlanner):
        self.overlay = overlay
        self.commit_engine = commit_engine
        self.ledger = ledger
        self.tokens = tokens
        self.planner = planner

    def dispatch(self, raw: Any, trace_id: str = None) -> DispatchResult:
        trace_id = trace_id or str(uuid.uuid4())
        raw_action = raw.get("action") if isinstance(raw, dict) else None
        logger.log_dispatch_state(trace_id, str(raw_action), "received")

        try:
            action = parse_action_payload(raw)
        except InvalidAction as e:
            logger.log_dispatch_state(trace_id, str(raw_action), "rejected", {"reason": e.message})
            return DispatchResult(status=e.status_code, body=_error_body(e, trace_id))
        logger.log_dispatch_state(trace_id, action.action, "authorized", {"actor": action.actor})

        cached = self.ledger.lookup(action.action, action.idempotencyKey)
        if cached is not None:
            logger.log_dispatch_state(trace_id, action.action, "cached-replay")
            logger.log_idempotent_replay(action.action, action.idempotencyKey, cached.status)
            return DispatchResult(status=cached.status, body=cached.response_json, replayed=True)

        if action.requires_token:
            try:
                self.tokens.verify_and_consume(action.confirmToken, action.action, action.idempotencyKey)
            except TOKEN_ERRORS as e:
                logger.log_security(f"Token rejected: {e.kind}", {"trace_id": trace_id, "action": action.action})
                return DispatchResult(status=e.status_code, body=_error_body(e, trace_id))
            except ShadowStageError as e:
                return DispatchResult(status=e.status_code, body=_error_body(e, trace_id))
            logger.log_dispatch_state(trace_id, action.action, "token-checked")

        logger.log_dispatch_state(trace_id, action.action, "executing")
        event_id = str(uuid.uuid4())
        try:
            result = self._execute(action, trace_id)
            status = 200
            event = ActionEvent(event_id, utc_now_iso(), trace_id, action.event_type, action.action,
                                action.idempotencyKey, result=result)
        except ShadowStageError as e:
            if e.retryable:
                # not recorded: nothing reached the remote, so the same key may be retried
                logger.warning(f"Retryable failure for {action.action}/{action.idempotencyKey}: {e.message}")
                return DispatchResult(status=e.status_code, body=self._retry_body(e, action, trace_id))
            status = e.status_code
            event = ActionEvent(event_id, utc_now_iso(), trace_id, "error", action.action,
                                action.idempotencyKey, error=e.to_dict())
        except Exception as e:
            logger.error(f"Unexpected failure in {action.action} ({trace_id}): {e}")
            status = 500
            event = ActionEvent(event_id, utc_now_iso(), trace_id, "error", action.action,
                                action.idempotencyKey,
                                error={"kind": "Error", "message": f"Action failed: {e}", "retryable": False})

        record = self.ledger.record(action.action, action.idempotencyKey, status, event.to_dict(),
                                    trace_id=trace_id, event_id=event_id)
        logger.log_dispatch_state(trace_id, action.action, "recorded", {"status": record.status})
        logger.log_dispatch_state(trace_id, action.action, "done")
        return DispatchResult(status=record.status, body=record.response_json,
                              replayed=record.event_id != event_id)

    def _retry_body(self, error: ShadowStageError, action: BaseAction, trace_id: str) -> str:
        """Error body for a retryable failure. The presented token stays used; a fresh one
        bound to the same key is issued for the retry."""
        body = {"error": error.to_dict(), "traceId": trace_id}
        if action.requires_token:
            body.update(self.tokens.mint(GENERIC_TOKEN_ACTION, action.idempotencyKey, trace_id).to_dict())
        return serialize_response(body)

    def _plan(self, mode: str, action: BaseAction) -> Dict[str, Any]:
        request = PlannerRequest(mode=mode, command=action.command, target=action.target, page=action.page)
        output = self.planner.run(request)
        if not isinstance(output, dict):
            raise PlannerError("Planner returned a non-object result.")
        return output

    def _stage_actions(self, output: Dict[str, Any], actor: str) -> List[Dict[str, str]]:
        edits = output.get("actions") or []
        if not isinstance(edits, list):
            raise PlannerError("Planner actions must be a list.")
        staged = []
        for edit in edits:
            op = str((edit or {}).get("op") or "").lower()
            path = (edit or {}).get("path")
            if op == "write":
                entry = self.overlay.write(path, str(edit.get("content") or ""), actor)
            elif op == "delete":
                entry = self.overlay.delete(path, actor)
            else:
                raise PlannerError(f"Unsupported planner edit op: {op or '<missing>'}")
            staged.append({"op": op, "path": entry.path})
        return staged

    def _commit(self, action: BaseAction, message: str = None) -> Dict[str, Any]:
        outcome = self.commit_engine.commit(message or action.command, actor=action.actor)
        if not outcome.ok:
            raise CommitFailed(outcome)
        return outcome.to_dict()

    def _execute(self, action: BaseAction, trace_id: str) -> Dict[str, Any]:
        if action.action == "status":
            return {
                "commands": [r.to_dict() for r in self.ledger.recent(action.limit)],
                "staged": self.overlay.summary(),
            }

        if action.action == "plan":
            return {"plan": self._plan("plan", action)}

        if action.action == "preview":
            output = self._plan("plan", action)
            files = list(action.files) + sorted(self.overlay.list())
            if action.page and action.page != "all":
                files.append(action.page)
            preview = build_preview(list(action.routes) + _planner_routes(output), files,
                                    show_zones=action.showZones)
            minted = self.tokens.mint(GENERIC_TOKEN_ACTION, action.idempotencyKey, trace_id)
            return {"plan": output, **preview, **minted.to_dict()}

        if action.action == "apply":
            output = self._plan("apply", action)
            staged = self._stage_actions(output, action.actor)
            commit = self._commit(action, action.message)
            return {"plan": output, "staged": staged, "commit": commit, "whatChanged": commit["whatChanged"]}

        if action.action == "deploy":
            output = self._plan("deploy", action)
            commit = self._commit(action, action.message)
            return {"plan": output, "commit": commit, "whatChanged": commit["whatChanged"]}

        if action.action == "rollback":
            return {"plan": self._plan("rollback_last", action)}

        raise InvalidAction(f"Unsupported action: {action.action}")
