"""
Structured logging and redaction tests.
"""

import logging

import pytest

from shadowstage.util.logging import StructuredLogger, audit_event, logger, sanitize_payload


class TestSanitizePayload:

    def test_redacts_sensitive_fields(self):
        payload = {"path": "a.html", "content": "<p>secret copy</p>", "confirmToken": "abc.def"}
        assert sanitize_payload(payload) == {"path": "a.html", "content": "[REDACTED]", "confirmToken": "[REDACTED]"}

    def test_nested_and_truncated(self):
        payload = {"items": [{"token": "t"}, "x" * 150]}
        sanitized = sanitize_payload(payload)
        assert sanitized["items"][0] == {"token": "[REDACTED]"}
        assert sanitized["items"][1] == "x" * 100 + "..."

    def test_reveal_sensitive(self):
        assert sanitize_payload({"content": "c"}, reveal_sensitive=True) == {"content": "c"}


class TestStructuredLogger:

    @pytest.fixture
    def capture(self, caplog):
        caplog.set_level(logging.INFO, logger="shadowstage")
        return caplog

    def test_operation_format(self, capture):
        logger.log_commit("fully-applied", 2, {"failed_path": None})
        assert "Operation: commit, Status: fully-applied" in capture.text
        assert "'applied_count': 2" in capture.text

    def test_dispatch_state_transition(self, capture):
        logger.log_dispatch_state("trace-1", "apply", "cached-replay")
        assert "Operation: dispatch.cached-replay, Status: transition" in capture.text
        assert "trace-1" in capture.text

    def test_security_logs_at_warning(self, capture):
        logger.log_security("Token rejected: InvalidToken", {"confirmToken": "abc.def"})
        record = capture.records[-1]
        assert record.levelno == logging.WARNING
        assert "abc.def" not in capture.text

    def test_audit_event_redacts_payload(self, capture):
        audit_event("repo.commit", {"actor": "alice"}, {"content": "<p>body</p>", "path": "a.html"})
        assert "Operation: repo_commit, Status: audit" in capture.text
        assert "<p>body</p>" not in capture.text

    def test_single_handler_per_name(self):
        first = StructuredLogger("shadowstage.test-handlers")
        second = StructuredLogger("shadowstage.test-handlers")
        assert first.logger is second.logger
        assert len(second.logger.handlers) == 1


class TestNoTokenPlaintext:

    def test_token_never_logged(self, workspace, caplog):
        caplog.set_level(logging.INFO, logger="shadowstage")
        preview = workspace.dispatch_action({"action": "preview", "idempotencyKey": "k1", "command": "c"})
        token = preview.payload["result"]["confirmToken"]
        workspace.dispatch_action({"action": "deploy", "idempotencyKey": "k1", "confirmToken": token})
        workspace.dispatch_action({"action": "deploy", "idempotencyKey": "k2", "confirmToken": token})

        assert "Operation: token.minted" in caplog.text
        assert "Operation: token.consumed" in caplog.text
        assert token not in caplog.text
        assert token.split(".")[1] not in caplog.text
