"""
tests/helpers.py

Shared test doubles and utilities.

FakeSigner and FrozenClock stand in for the token signer and the wall clock
so retry timestamps and request headers are exact. database_url() reports
the PostgreSQL used by `integration` tests, if any.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FakeSigner:
    """Deterministic signer that records the claims it was asked to sign."""

    algorithm = "HS256"

    def __init__(self, token: str = "test-token"):
        self.token = token
        self.claims: list[dict[str, Any]] = []

    def sign(self, claims: dict[str, Any]) -> str:
        self.claims.append(claims)
        return self.token


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# Read at import, before the autouse fixture strips DATABASE_URL from the environment
_INTEGRATION_DSN = os.environ.get("TEST_DATABASE_URL") or os.environ.get("DATABASE_URL")


def database_url() -> str | None:
    """DSN for integration tests (TEST_DATABASE_URL wins over DATABASE_URL)."""
    return _INTEGRATION_DSN or None
