"""
Runtime configuration for the staging overlay, commit engine and confirmation tokens.
Values are read from the environment once at import; accessor functions re-read where they must stay dynamic.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/shadowstage.db")

# Debug flag
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Overlay backend selection (sqlite|memory); memory is for local runs and tests only
SHADOW_BACKEND = os.getenv("SHADOW_BACKEND", "sqlite")

# Confirmation tokens
CONFIRM_TOKEN_TTL_SEC = int(os.getenv("CONFIRM_TOKEN_TTL_SEC", "600"))
CONFIRM_TOKEN_VERSION = 1

# Commit-time override for protected shell files
CONFIRMATION_PHRASE = os.getenv("CONFIRMATION_PHRASE", "hell yeah ship it")
COMMIT_MESSAGE_DEFAULT = os.getenv("COMMIT_MESSAGE_DEFAULT", "Command Center commit")

# Static asset fallback bundle
ASSET_ROOT = os.getenv("ASSET_ROOT", "./public")

# Dispatcher request size limit (1MB)
MAX_REQUEST_BYTES = int(os.getenv("MAX_REQUEST_BYTES", str(1024 * 1024)))

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_shadow_backend():
    """Get overlay backend name (sqlite|memory)."""
    return os.getenv("SHADOW_BACKEND", SHADOW_BACKEND).strip().lower()


def get_confirm_secret():
    """HMAC secret for confirmation tokens; ORCH_TOKEN is the legacy fallback."""
    return (os.getenv("CONFIRM_TOKEN_SECRET") or os.getenv("ORCH_TOKEN") or "").strip()


def get_confirm_ttl_sec():
    """Get confirmation token lifetime in seconds."""
    return CONFIRM_TOKEN_TTL_SEC


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if get_shadow_backend() not in ["sqlite", "memory"]:
        issues.append(f"Invalid SHADOW_BACKEND: {get_shadow_backend()}")

    if not get_confirm_secret():
        issues.append("CONFIRM_TOKEN_SECRET (or ORCH_TOKEN) is not set")

    if CONFIRM_TOKEN_TTL_SEC < 1:
        issues.append("CONFIRM_TOKEN_TTL_SEC must be >= 1")

    if not CONFIRMATION_PHRASE.strip():
        issues.append("CONFIRMATION_PHRASE must not be empty")

    return issues
