"""
Atomic commit engine: publish the staged overlay to the remote repository as one logical change.

The remote has no multi-file transaction, so the commit is a sequence of
per-path calls. The overlay stays the record of what has not been durably
published: it is cleared only when every step succeeded, and the outcome
reports fully-applied, partially-applied or not-applied.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import config
from .dao import add_audit_event
from .errors import ProtectedPathBlocked, ShadowStageError
from .overlay import OverlayStore
from .paths import is_protected_path, protected_override_allowed, safe_path
from .remote import IRemoteRepository
from ..util.logging import logger

FULLY_APPLIED = "fully-applied"
PARTIALLY_APPLIED = "partially-applied"
NOT_APPLIED = "not-applied"


@dataclass
class CommitStep:
    path: str
    operation: str  # create | update | delete
    object_id: Optional[str] = None
    content: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "operation": self.operation}


@dataclass
class CommitPlan:
    steps: List[CommitStep] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # deletions already absent remotely


@dataclass
class CommitOutcome:
    status: str
    message: str
    applied: List[CommitStep] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed_path: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    overlay_cleared: bool = True

    @property
    def ok(self) -> bool:
        return self.status == FULLY_APPLIED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "message": self.message,
            "changed": [step.to_dict() for step in self.applied],
            "skipped": list(self.skipped),
            "whatChanged": [f"{step.operation}: {step.path}" for step in self.applied],
        }
        if self.failed_path:
            data["failedPath"] = self.failed_path
        if self.error:
            data["error"] = self.error
            data["retryable"] = self.retryable
        if not self.overlay_cleared:
            data["overlayCleared"] = False
        return data


class CommitEngine:
    """Turns the current overlay into one commit against the remote repository."""

    def __init__(self, overlay: OverlayStore, remote: IRemoteRepository, audit_db_path: str = None):
        self.overlay = overlay
        self.remote = remote
        self.audit_db_path = audit_db_path

    def blocked_paths(self) -> List[str]:
        return sorted(p for p in self.overlay.list() if is_protected_path(p))

    def _remote_object_id(self, path: str) -> Optional[str]:
        """Current object id, or None when the path is absent. Outages propagate."""
        current = self.remote.read_file(path)
        return current.object_id if current is not None else None

    def plan(self) -> CommitPlan:
        """Build the ordered create/update/delete plan from the overlay.

        Raises BackingStoreUnavailable if the remote cannot be read.
        """
        plan = CommitPlan()
        for path, entry in sorted(self.overlay.list().items()):
            safe = safe_path(path)
            if not safe:
                continue
            object_id = self._remote_object_id(safe)
            if entry.deleted:
                if not object_id:
                    plan.skipped.append(safe)
                    continue
                plan.steps.append(CommitStep(path=safe, operation="delete", object_id=object_id))
                continue
            blob = self.overlay.read(safe)
            if blob is None:
                continue
            if blob.deleted:
                if object_id:
                    plan.steps.append(CommitStep(path=safe, operation="delete", object_id=object_id))
                else:
                    plan.skipped.append(safe)
                continue
            plan.steps.append(CommitStep(
                path=safe,
                operation="update" if object_id else "create",
                object_id=object_id,
                content=blob.content,
            ))
        return plan

    def commit(self, message: str = None, allow_protected: bool = False, confirmation: str = "",
               actor: str = "admin") -> CommitOutcome:
        """Publish the overlay. Raises ProtectedPathBlocked before any remote call."""
        message = str(message or config.COMMIT_MESSAGE_DEFAULT).strip() or config.COMMIT_MESSAGE_DEFAULT

        blocked = self.blocked_paths()
        if blocked and not protected_override_allowed(allow_protected, confirmation):
            logger.log_security("Commit blocked by protected paths", {"paths": blocked, "actor": actor})
            raise ProtectedPathBlocked(blocked)

        try:
            plan = self.plan()
        except ShadowStageError as e:
            return self._abort(message, CommitPlan(), [], None, f"Commit planning failed: {e.message}",
                               actor, e.retryable)

        applied: List[CommitStep] = []
        for step in plan.steps:
            try:
                if step.operation == "delete":
                    self.remote.delete_file(step.path, step.object_id, f"{message}: delete {step.path}")
                else:
                    self.remote.write_file(step.path, step.content, f"{message}: update {step.path}",
                                           known_object_id=step.object_id)
            except ShadowStageError as e:
                return self._abort(message, plan, applied, step.path, e.message, actor, e.retryable)
            except Exception as e:
                return self._abort(message, plan, applied, step.path, str(e), actor)
            applied.append(step)

        add_audit_event("repo.commit", actor, {
            "changedCount": len(applied),
            "changed": [s.to_dict() for s in applied],
        }, db_path=self.audit_db_path)

        outcome = CommitOutcome(status=FULLY_APPLIED, message=message, applied=applied, skipped=plan.skipped)
        try:
            self.overlay.clear()
        except ShadowStageError as e:
            # remote already holds every change
            outcome.overlay_cleared = False
            outcome.error = f"Published, but clearing the overlay failed: {e.message}"
            logger.error(f"Overlay clear after commit failed: {e.message}")

        logger.log_commit(FULLY_APPLIED, len(applied), {"skipped": len(plan.skipped),
                                                        "overlay_cleared": outcome.overlay_cleared})
        return outcome

    def _abort(self, message: str, plan: CommitPlan, applied: List[CommitStep], failed_path: Optional[str],
               error: str, actor: str, retryable: bool = False) -> CommitOutcome:
        status = PARTIALLY_APPLIED if applied else NOT_APPLIED
        # partial results need manual reconciliation, never a blind retry
        retryable = retryable and not applied
        add_audit_event("repo.commit.failed", actor, {
            "status": status,
            "failedPath": failed_path,
            "changed": [s.to_dict() for s in applied],
            "error": error[:200],
        }, db_path=self.audit_db_path)
        logger.log_commit(status, len(applied), {"failed_path": failed_path, "error": error[:200]})
        return CommitOutcome(
            status=status,
            message=message,
            applied=list(applied),
            skipped=plan.skipped,
            failed_path=failed_path,
            error=error,
            retryable=retryable,
        )
