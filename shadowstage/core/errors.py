"""
Error taxonomy shared by the overlay, resolver, commit engine, token authority and dispatcher.
Each error carries a stable kind, an HTTP status and whether the same idempotency key may be retried.
"""

from typing import Any, Dict, List, Optional


class ShadowStageError(Exception):
    """Base class for every error surfaced to callers."""

    kind = "Error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data.update(self.details)
        return data


class InvalidPath(ShadowStageError):
    kind = "InvalidPath"
    status_code = 400


class ProtectedPath(ShadowStageError):
    """Stage-time refusal to write or delete a control-plane file."""
    kind = "ProtectedPath"
    status_code = 403

    def __init__(self, path: str, op: str):
        super().__init__(
            f"Protected core shell file cannot be {'deleted' if op == 'delete' else 'edited'}: {path}",
            {"path": path, "op": op},
        )
        self.path = path


class ProtectedPathBlocked(ShadowStageError):
    """Commit-time refusal: protected files are staged and no valid override was given."""
    kind = "ProtectedPathBlocked"
    status_code = 403

    def __init__(self, paths: List[str]):
        super().__init__(
            "Protected core shell files are staged. Commit blocked unless explicit override is supplied.",
            {"protectedPaths": list(paths)},
        )
        self.paths = list(paths)


class Gone(ShadowStageError):
    kind = "Gone"
    status_code = 410


class NotFound(ShadowStageError):
    kind = "NotFound"
    status_code = 404


class BackingStoreUnavailable(ShadowStageError):
    """Remote repository or key-value store unreachable. Safe to retry with the same key."""
    kind = "BackingStoreUnavailable"
    status_code = 503
    retryable = True


class InvalidToken(ShadowStageError):
    kind = "InvalidToken"
    status_code = 403


class TokenExpired(ShadowStageError):
    kind = "TokenExpired"
    status_code = 403


class TokenAlreadyUsed(ShadowStageError):
    kind = "TokenAlreadyUsed"
    status_code = 409


class TokenMismatch(ShadowStageError):
    kind = "TokenMismatch"
    status_code = 403


class InvalidAction(ShadowStageError):
    kind = "InvalidAction"
    status_code = 400


class PlannerError(ShadowStageError):
    kind = "PlannerError"
    status_code = 502


class CommitFailed(ShadowStageError):
    """A commit stopped part-way or before its first remote call; the overlay was kept.

    Retryable only when nothing was applied and the cause was a store outage.
    """
    kind = "CommitFailed"
    status_code = 502

    def __init__(self, outcome):
        super().__init__(
            f"Commit {outcome.status}: {outcome.error or 'remote operation failed'}",
            {"outcome": outcome.to_dict()},
        )
        self.outcome = outcome
        self.retryable = bool(outcome.retryable)
        if self.retryable:
            self.status_code = BackingStoreUnavailable.status_code


TOKEN_ERRORS = (InvalidToken, TokenExpired, TokenAlreadyUsed, TokenMismatch)
