"""
Preview tokens.

A token is `base64url(canonical JSON payload) + "." + hex HMAC-SHA256`.
The payload carries the mutation intent, a digest of that intent, issue and
expiry times, and a nonce. Decoding verifies the signature, the digest and
the expiry; `TokenReplayGuard` makes each token usable once.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ...adapters.db.sqlite import Sqlite
from ...config import BULK_TOKEN_SECRET, BULK_TOKEN_SECRET_CONFIGURED, BULK_TOKEN_TTL_SECONDS
from ...shared import ErrorCode, Result, get_logger
from .models import MutationIntent

logger = get_logger(__name__)

TOKEN_VERSION = 1
MAX_TOKEN_LENGTH = 4 * 1024 * 1024

_secret_warning_logged = False


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def intent_digest(intent: MutationIntent) -> str:
    return hashlib.sha256(canonical_json(intent.to_dict()).encode("utf-8")).hexdigest()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode((text + padding).encode("ascii"))


@dataclass(frozen=True)
class DecodedToken:
    intent: MutationIntent
    nonce: str
    issued_at: int
    expires_at: int


class PreviewTokenCodec:
    def __init__(
        self,
        secret: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        global _secret_warning_logged
        if secret is None:
            secret = BULK_TOKEN_SECRET
            if not BULK_TOKEN_SECRET_CONFIGURED and not _secret_warning_logged:
                logger.warning("DAM_BULK_TOKEN_SECRET is not set; preview tokens will not survive a restart")
                _secret_warning_logged = True
        if not secret:
            raise ValueError("preview token secret must not be empty")
        self._key = str(secret).encode("utf-8")
        self._ttl = int(ttl_seconds if ttl_seconds is not None else BULK_TOKEN_TTL_SECONDS)
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def _sign(self, body: str) -> str:
        return hmac.new(self._key, body.encode("ascii"), hashlib.sha256).hexdigest()

    def encode(self, intent: MutationIntent, *, issued_at: Optional[int] = None, nonce: Optional[str] = None) -> str:
        """Deterministic given `(intent, issued_at, nonce)`."""
        iat = int(issued_at if issued_at is not None else self._clock())
        payload: Dict[str, Any] = {
            "v": TOKEN_VERSION,
            "intent": intent.to_dict(),
            "digest": intent_digest(intent),
            "iat": iat,
            "exp": iat + self._ttl,
            "nonce": nonce or secrets.token_hex(16),
        }
        body = _b64encode(canonical_json(payload).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def decode(self, token: Any) -> Result[DecodedToken]:
        if not isinstance(token, str) or not token.strip():
            return Result.Err(ErrorCode.TOKEN_INVALID, "Missing preview token")
        token = token.strip()
        if len(token) > MAX_TOKEN_LENGTH:
            return Result.Err(ErrorCode.TOKEN_INVALID, "Preview token is too large")

        body, sep, signature = token.rpartition(".")
        if not sep or not body or not signature or not token.isascii():
            return Result.Err(ErrorCode.TOKEN_INVALID, "Malformed preview token")
        if not hmac.compare_digest(self._sign(body), signature.lower()):
            return Result.Err(ErrorCode.TOKEN_INVALID, "Preview token signature mismatch")

        try:
            payload = json.loads(_b64decode(body).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return Result.Err(ErrorCode.TOKEN_INVALID, "Malformed preview token")
        if not isinstance(payload, dict) or payload.get("v") != TOKEN_VERSION:
            return Result.Err(ErrorCode.TOKEN_INVALID, "Unsupported preview token version")

        try:
            intent = MutationIntent.from_dict(payload.get("intent"))
            iat = int(payload["iat"])
            exp = int(payload["exp"])
            nonce = str(payload["nonce"])
        except (KeyError, TypeError, ValueError) as exc:
            return Result.Err(ErrorCode.TOKEN_INVALID, f"Malformed preview token: {exc}")

        if not hmac.compare_digest(intent_digest(intent).encode("ascii"), str(payload.get("digest") or "").encode("utf-8")):
            return Result.Err(ErrorCode.TOKEN_INVALID, "Preview token digest mismatch")
        if int(self._clock()) >= exp:
            return Result.Err(ErrorCode.TOKEN_EXPIRED, "Preview has expired; generate a new preview", expired_at=exp)

        return Result.Ok(DecodedToken(intent=intent, nonce=nonce, issued_at=iat, expires_at=exp))


class TokenReplayGuard:
    """Records used token nonces so a preview can be executed only once."""

    def __init__(self, db: Sqlite, clock: Callable[[], float] = time.time):
        self.db = db
        self._clock = clock

    async def consume(self, nonce: str, expires_at: int) -> Result[bool]:
        now = int(self._clock())
        pruned = await self.db.aexecute("DELETE FROM bulk_tokens_used WHERE expires_at < ?", (now,))
        if not pruned.ok:
            logger.warning("Failed to prune used preview tokens: %s", pruned.error)

        res = await self.db.aexecute(
            "INSERT OR IGNORE INTO bulk_tokens_used (nonce, expires_at, used_at) VALUES (?, ?, ?)",
            (str(nonce), int(expires_at), now),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to record preview token")
        if not res.data:
            return Result.Err(ErrorCode.TOKEN_REPLAYED, "This preview has already been executed")
        return Result.Ok(True)

    async def is_used(self, nonce: str) -> bool:
        res = await self.db.aquery_one("SELECT nonce FROM bulk_tokens_used WHERE nonce = ?", (str(nonce),))
        return bool(res.ok and res.data)
