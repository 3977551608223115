"""
tests/conftest.py

Pytest configuration and shared fixtures for the CLCA Bridge test suite.

Unit tests never touch the network or a database:
  - HTTP goes through httpx.MockTransport
  - the DLQ uses InMemoryDLQStore
  - token signing uses FakeSigner
  - time comes from FrozenClock

Tests marked `integration` need a live PostgreSQL in DATABASE_URL and are
skipped otherwise.
"""

from __future__ import annotations

import os
import random
from typing import Any, Callable, Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from clca_bridge.core.config import reset_settings
from clca_bridge.core.metrics import PipelineMetrics
from clca_bridge.models.contentdoc import EVENT_FEATURE_KEY, ContentDoc, IngestResult
from clca_bridge.models.domain import Event, Game
from clca_bridge.services.contentdoc_mapper import ContentDocMapper
from clca_bridge.services.ingest_client import ClcaIngestClient
from clca_bridge.workers.backoff import RetryPolicy
from clca_bridge.workers.dead_letter_queue import DeadLetterQueue
from clca_bridge.workers.dlq_store import InMemoryDLQStore
from tests.helpers import FakeSigner, FrozenClock

_PIPELINE_ENV_PREFIXES = (
    "CLCA_",
    "TTG_",
    "DLQ_",
    "RESYNC_",
    "DATABASE_URL",
    "ENVIRONMENT",
    "LOG_LEVEL",
    "LOG_JSON",
)


# =============================================================================
# GLOBAL TEST CONFIGURATION
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring a live PostgreSQL (DATABASE_URL)",
    )


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip pipeline variables from the environment and drop cached Settings."""
    for key in list(os.environ):
        if key.startswith(_PIPELINE_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


# =============================================================================
# Fixtures: infrastructure
# =============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def metrics() -> PipelineMetrics:
    return PipelineMetrics()


@pytest.fixture
def store() -> InMemoryDLQStore:
    return InMemoryDLQStore()


@pytest.fixture
def policy() -> RetryPolicy:
    """Backoff without jitter so retry_after values are exact."""
    return RetryPolicy(jitter_ratio=0.0, rng=random.Random(7))


@pytest.fixture
def ingest_client() -> MagicMock:
    """ClcaIngestClient double; publish_content succeeds unless reconfigured."""
    client = MagicMock(spec=ClcaIngestClient)
    client.publish_content = AsyncMock(
        return_value=IngestResult(status="created", id="clca-1", ingest_request_id="req-1")
    )
    client.is_configured.return_value = True
    return client


@pytest.fixture
def dlq(
    store: InMemoryDLQStore,
    ingest_client: MagicMock,
    policy: RetryPolicy,
    metrics: PipelineMetrics,
    clock: FrozenClock,
) -> DeadLetterQueue:
    return DeadLetterQueue(store, ingest_client, policy=policy, metrics=metrics, clock=clock)


@pytest.fixture
def mapper(clock: FrozenClock) -> ContentDocMapper:
    return ContentDocMapper(base_url="https://ttg.example.com", clock=clock)


# =============================================================================
# Fixtures: record factories
# =============================================================================


@pytest.fixture
def make_event() -> Callable[..., Event]:
    def _make(**overrides: Any) -> Event:
        data: dict[str, Any] = {
            "id": 42,
            "firebaseDocId": "evt-abc",
            "title": "Friday Board Game Night!",
            "description": "Bring snacks",
            "date": "2026-11-14",
            "time": "19:00",
            "endTime": "23:00",
            "location": "Main Hall",
            "status": "upcoming",
            "eventType": "game_night",
            "gameId": 7,
            "gameName": "Catan",
            "game": {"title": "Catan", "genre": "Strategy", "numberOfPlayers": "3-4"},
            "minPlayers": 3,
            "maxPlayers": 4,
            "rsvps": [
                {"playerId": 1, "status": "confirmed"},
                {"playerId": 2, "status": "confirmed"},
                {"playerId": 3, "status": "maybe"},
                {"playerId": 4, "status": "declined"},
                {"playerId": 5, "status": "waitlist"},
            ],
            "createdAt": "2026-10-01T10:00:00Z",
            "updatedAt": "2026-10-02T10:00:00Z",
        }
        data.update(overrides)
        return Event.model_validate(data)

    return _make


@pytest.fixture
def make_game() -> Callable[..., Game]:
    def _make(**overrides: Any) -> Game:
        data: dict[str, Any] = {
            "id": 7,
            "title": "Catan",
            "description": "Trade and build",
            "genre": "Strategy",
            "numberOfPlayers": "3-4",
            "difficulty": "medium",
            "status": "active",
            "approved": True,
            "tags": ["Classic", "Trading"],
            "image": "https://img.example.com/catan.png",
            "createdAt": "2026-09-01T08:00:00Z",
            "updatedAt": "2026-09-05T08:00:00Z",
        }
        data.update(overrides)
        return Game.model_validate(data)

    return _make


@pytest.fixture
def make_doc() -> Callable[..., ContentDoc]:
    def _make(**overrides: Any) -> ContentDoc:
        data: dict[str, Any] = {
            "id": "ttg:event:42",
            "title": "Board Game Night",
            "status": "published",
            "tags": ["content-type:event", "system:ttg"],
            "features": {
                EVENT_FEATURE_KEY: {
                    "startTime": "2026-11-14T19:00:00.000Z",
                    "endTime": "2026-11-14T23:00:00.000Z",
                    "location": "Main Hall",
                }
            },
            "owner_system": "ttg",
            "original_id": "event:42",
            "created_at": "2026-10-01T10:00:00.000Z",
            "updated_at": "2026-10-02T10:00:00.000Z",
        }
        data.update(overrides)
        return ContentDoc(**data)

    return _make
