"""
Confirmation token authority.

A token is base64url(payload) + "." + base64url(HMAC-SHA256(secret, base64url(payload))).
Only sha256(token) is persisted. Consumption is a single conditional UPDATE,
so two requests presenting the same token cannot both succeed.
"""

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from . import config
from .db import get_db, init_db
from .errors import InvalidToken, ShadowStageError, TokenAlreadyUsed, TokenExpired, TokenMismatch
from ..util.logging import logger

GENERIC_TOKEN_ACTION = "execute"
MUTATING_ACTIONS = ("apply", "deploy", "rollback")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def token_action_matches(token_action: str, requested_action: str) -> bool:
    """Exact match, or a generic execute token presented for a mutating action.

    A token minted for "preview" is not accepted by any other action.
    """
    if token_action == requested_action:
        return True
    return token_action == GENERIC_TOKEN_ACTION and requested_action in MUTATING_ACTIONS


@dataclass
class MintedToken:
    confirm_token: str
    confirm_by: str  # ISO-8601 expiry
    expires_at_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {"confirmToken": self.confirm_token, "confirmBy": self.confirm_by}


@dataclass
class VerifiedToken:
    action: str
    idempotency_key: str
    expires_at_ms: int
    stateless: bool


class ConfirmTokenAuthority:
    """Mints and consumes short-lived single-use confirmation tokens."""

    def __init__(self, db_path: str = None, secret: str = None, ttl_sec: int = None):
        self.db_path = db_path
        self.secret = secret if secret is not None else config.get_confirm_secret()
        self.ttl_sec = ttl_sec if ttl_sec is not None else config.get_confirm_ttl_sec()
        init_db(db_path)

    def _require_secret(self) -> bytes:
        if not self.secret:
            raise InvalidToken("Confirmation token secret is not configured.")
        return self.secret.encode("utf-8")

    def _sign(self, encoded_payload: str) -> str:
        digest = hmac.new(self._require_secret(), encoded_payload.encode("ascii"), hashlib.sha256).digest()
        return b64url_encode(digest)

    def mint(self, action: str, idempotency_key: str, trace_id: str = None,
             now_ms: int = None) -> MintedToken:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        exp = now_ms + self.ttl_sec * 1000
        payload = {
            "v": config.CONFIRM_TOKEN_VERSION,
            "action": action,
            "idempotencyKey": idempotency_key,
            "exp": exp,
            "nonce": secrets.token_hex(8),
        }
        encoded = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        token = f"{encoded}.{self._sign(encoded)}"

        try:
            with get_db(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO confirm_tokens (token_hash, action, idempotency_key, trace_id, expires_at, used_at) "
                    "VALUES (?, ?, ?, ?, ?, NULL)",
                    (token_hash(token), action, idempotency_key, trace_id, ms_to_iso(exp))
                )
                conn.commit()
        except ShadowStageError as e:
            # signature and expiry still protect the token
            logger.warning(f"Token persistence failed, issuing stateless token: {e.message}")

        logger.log_token_event("minted", action, idempotency_key, {"trace_id": trace_id, "expires_at": ms_to_iso(exp)})
        return MintedToken(confirm_token=token, confirm_by=ms_to_iso(exp), expires_at_ms=exp)

    def verify(self, token: str, action: str, idempotency_key: str, now_ms: int = None) -> Dict[str, Any]:
        """Check signature, expiry and binding without consuming. Returns the payload."""
        if not token or not isinstance(token, str):
            raise InvalidToken("Missing confirmation token.")
        parts = token.strip().split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise InvalidToken("Malformed confirmation token.")
        encoded, signature = parts

        expected = self._sign(encoded)
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", "replace")):
            logger.log_security("Confirmation token signature mismatch", {"action": action})
            raise InvalidToken("Invalid confirmation token signature.")

        try:
            payload = json.loads(b64url_decode(encoded).decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            raise InvalidToken("Invalid confirmation token payload.")
        if not isinstance(payload, dict) or payload.get("v") != config.CONFIRM_TOKEN_VERSION:
            raise InvalidToken("Invalid confirmation token payload.")

        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        exp = payload.get("exp")
        if not isinstance(exp, int) or exp <= now_ms:
            raise TokenExpired("Confirmation token expired.")

        if payload.get("idempotencyKey") != idempotency_key:
            raise TokenMismatch("Confirmation token idempotency key mismatch.")
        if not token_action_matches(str(payload.get("action") or ""), action):
            raise TokenMismatch("Confirmation token action mismatch.")
        return payload

    def verify_and_consume(self, token: str, action: str, idempotency_key: str,
                           now_ms: int = None) -> VerifiedToken:
        """Verify the token and mark it used. Raises one of the token errors."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        payload = self.verify(token, action, idempotency_key, now_ms=now_ms)
        hashed = token_hash(token.strip())
        now_iso = ms_to_iso(now_ms)

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT used_at, expires_at FROM confirm_tokens WHERE token_hash = ?", (hashed,))
            row = cursor.fetchone()
            if row is None:
                logger.log_token_event("consumed", action, idempotency_key, {"mode": "stateless"})
                return VerifiedToken(action=payload["action"], idempotency_key=idempotency_key,
                                     expires_at_ms=payload["exp"], stateless=True)

            cursor.execute(
                "UPDATE confirm_tokens SET used_at = ? WHERE token_hash = ? AND used_at IS NULL AND expires_at > ?",
                (now_iso, hashed, now_iso)
            )
            consumed = cursor.rowcount == 1
            conn.commit()

            if not consumed:
                cursor.execute("SELECT used_at, expires_at FROM confirm_tokens WHERE token_hash = ?", (hashed,))
                used_at, _ = cursor.fetchone()
                if used_at:
                    logger.log_security("Confirmation token replay rejected", {"action": action})
                    raise TokenAlreadyUsed("Confirmation token already used.")
                raise TokenExpired("Confirmation token expired.")

        logger.log_token_event("consumed", action, idempotency_key, {"mode": "persisted"})
        return VerifiedToken(action=payload["action"], idempotency_key=idempotency_key,
                             expires_at_ms=payload["exp"], stateless=False)

    def purge_expired(self, now_ms: int = None) -> int:
        """Delete token rows past their expiry. Returns the number removed."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM confirm_tokens WHERE expires_at <= ?", (ms_to_iso(now_ms),))
            removed = cursor.rowcount
            conn.commit()
        return removed
