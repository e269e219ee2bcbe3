"""
Structured logging for staging, commit, token and dispatch operations.
Wraps the stdlib logger so every component emits the same "Operation: ..., Status: ..." shape.
"""

import logging
from typing import Any, Dict, List

# Fields whose values must never reach a log line verbatim
SENSITIVE_FIELDS = ['content', 'token', 'confirmToken', 'confirm_token', 'secret', 'password']


class StructuredLogger:
    """Structured logger for overlay, commit, token and dispatcher operations."""

    def __init__(self, name: str = "shadowstage"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.info(message)

    def log_overlay_operation(self, operation: str, path: str, byte_size: int = None, status: str = "success"):
        """Log a staged write/delete/clear against the overlay."""
        details = {"path": path}
        if byte_size is not None:
            details["bytes"] = byte_size

        self.log_operation(f"overlay.{operation}", status, details)

    def log_commit(self, status: str, applied_count: int, details: Dict[str, Any] = None):
        """Log the terminal state of a commit attempt."""
        log_details = {"applied_count": applied_count}
        if details:
            log_details.update(details)

        self.log_operation("commit", status, log_details)

    def log_token_event(self, event: str, action: str, idempotency_key: str, details: Dict[str, Any] = None):
        """Log confirmation token lifecycle events (never the token itself)."""
        log_details = {"action": action, "idempotency_key": idempotency_key}
        if details:
            log_details.update(details)

        self.log_operation(f"token.{event}", "ok", log_details)

    def log_security(self, message: str, details: Dict[str, Any] = None):
        """Log a rejected or suspicious request at warning level."""
        line = f"Security: {message}"
        if details:
            line += f", Details: {sanitize_payload(details)}"

        self.logger.warning(line)

    def log_dispatch_state(self, trace_id: str, action: str, state: str, details: Dict[str, Any] = None):
        """Log a dispatcher state transition."""
        log_details = {"trace_id": trace_id, "action": action}
        if details:
            log_details.update(details)

        self.log_operation(f"dispatch.{state}", "transition", log_details)

    def log_idempotent_replay(self, action: str, idempotency_key: str, status: int):
        """Log a ledger hit that short-circuited execution."""
        self.log_operation("ledger.replay", "cached", {
            "action": action,
            "idempotency_key": idempotency_key,
            "status": status
        })

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None):
    """General audit event logging with content redaction."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)
