"""
CLCA Bridge - Ingest Token Signing

Short-lived bearer tokens for the CLCA ingest endpoint.

Claims:
    scope   "ingest:content"
    issuer  this system's id ("ttg")
    aud     the remote system's id ("clca")
    iat/exp issued-at and expiry (iat + ttl, 300s by default)
    jti     the request id, so a token maps to exactly one request

Signing is behind the TokenSigner protocol so the ingest client never
depends on a concrete JWT library and tests can inject a fake.
"""

from __future__ import annotations

import time
from typing import Any, Protocol, runtime_checkable

import jwt
from loguru import logger

from .errors import TokenSigningError

INGEST_SCOPE = "ingest:content"
DEFAULT_TOKEN_TTL_SECONDS = 300


@runtime_checkable
class TokenSigner(Protocol):
    """Signs a claim set into a compact bearer token."""

    algorithm: str

    def sign(self, claims: dict[str, Any]) -> str: ...


class HS256TokenSigner:
    """HMAC-SHA256 JWT signer using a pre-shared secret."""

    algorithm = "HS256"

    def __init__(self, secret: str):
        self._secret = secret

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def sign(self, claims: dict[str, Any]) -> str:
        if not self._secret:
            raise TokenSigningError("Authentication token generation failed: no secret configured")
        try:
            return jwt.encode(claims, self._secret, algorithm=self.algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.error(f"Failed to generate JWT token: {type(e).__name__}")
            raise TokenSigningError("Authentication token generation failed") from e

    def __repr__(self) -> str:
        return "HS256TokenSigner(secret=[REDACTED])"


def build_ingest_claims(
    issuer: str,
    audience: str,
    jti: str,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Build the claim set for one ingest or health request.

    Args:
        issuer: Id of this system
        audience: Id of the receiving system
        jti: Unique request id
        ttl_seconds: Token lifetime
        now: Epoch seconds (defaults to time.time())
    """
    issued_at = int(now if now is not None else time.time())
    return {
        "scope": INGEST_SCOPE,
        "issuer": issuer,
        "aud": audience,
        "exp": issued_at + ttl_seconds,
        "iat": issued_at,
        "jti": jti,
    }
