"""
Path normalization and the protected-path guard.
Every component that accepts a user-supplied file path goes through safe_path first.
"""

import re

from . import config
from .errors import InvalidPath, ProtectedPath

SAFE_PATH_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")

# The control-plane shell: the entry worker, its config and the admin shell's own files
PROTECTED_CORE_PATHS = frozenset([
    "worker.js",
    "wrangler.toml",
    "admin/integrated-dashboard.html",
    "admin/ccos.js",
    "admin/ccos.css",
])

CORE_SHELL_RISK_PATHS = frozenset([
    "worker.js",
    "admin/integrated-dashboard.html",
    "admin/ccos.js",
])


def safe_path(value) -> str:
    """Canonicalize a user path; returns "" when the path is not acceptable."""
    normalized = str(value or "").strip().replace("\\", "/").lstrip("/")
    if not normalized:
        return ""
    if ".." in normalized:
        return ""
    if not SAFE_PATH_RE.match(normalized):
        return ""
    return normalized


def require_safe_path(value) -> str:
    """Like safe_path, but raises InvalidPath instead of returning ""."""
    normalized = safe_path(value)
    if not normalized:
        raise InvalidPath(f"Invalid path: {str(value or '')[:200]!r}", {"path": str(value or "")[:200]})
    return normalized


def is_protected_path(path) -> bool:
    return str(path or "").strip() in PROTECTED_CORE_PATHS


def guard_stage_write(path: str, op: str = "write") -> None:
    """Refuse stage-time writes and deletes of protected paths."""
    if is_protected_path(path):
        raise ProtectedPath(path, op)


def protected_override_allowed(allow_protected, confirmation) -> bool:
    """Commit-time override: the flag must be exactly True and the phrase must match exactly."""
    return allow_protected is True and str(confirmation or "") == config.CONFIRMATION_PHRASE


def classify_risk(path: str) -> str:
    """Rough risk bucket used by the staged-changes summary."""
    if path in CORE_SHELL_RISK_PATHS:
        return "core-shell"
    if path.startswith("admin/"):
        return "admin"
    if path.endswith(".css"):
        return "styling"
    return "normal"
