"""
Tests for pipeline wiring.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from clca_bridge import bootstrap
from clca_bridge.bootstrap import build_pipeline, build_retry_policy, create_store, open_pipeline
from clca_bridge.core.config import Settings
from clca_bridge.workers.dlq_store import InMemoryDLQStore, PostgresDLQStore


class TestBuildPipeline:
    def test_settings_flow_into_components(self):
        settings = Settings(
            CLCA_INGEST_URL="https://clca.example.com/",
            CLCA_JWT_SECRET="secret",
            CLCA_SYSTEM_ID="ttg",
            TTG_TIMEZONE="Europe/London",
            DLQ_MAX_RETRIES=3,
            DLQ_BATCH_SIZE=25,
            DLQ_RETRY_NON_RETRYABLE=True,
            RESYNC_DELAY_SECONDS=0,
        )

        pipeline = build_pipeline(settings)

        assert pipeline.client.base_url == "https://clca.example.com"
        assert pipeline.client.is_configured()
        assert pipeline.mapper.owner_system == "ttg"
        assert str(pipeline.mapper.tz) == "Europe/London"
        assert pipeline.dlq.max_retries == 3
        assert pipeline.dlq.batch_size == 25
        assert pipeline.dlq.retry_non_retryable
        assert pipeline.orchestrator.resync_delay == 0
        assert isinstance(pipeline.store, InMemoryDLQStore)

    def test_components_share_one_metrics_instance(self):
        pipeline = build_pipeline(Settings())

        assert pipeline.dlq.metrics is pipeline.metrics
        assert pipeline.orchestrator.metrics is pipeline.metrics
        assert pipeline.orchestrator.dlq is pipeline.dlq

    def test_pipelines_are_independent(self):
        first = build_pipeline(Settings())
        second = build_pipeline(Settings())

        assert first.metrics is not second.metrics
        assert first.store is not second.store

    def test_unconfigured_client(self):
        assert not build_pipeline(Settings()).client.is_configured()

    def test_retry_policy_from_settings(self):
        policy = build_retry_policy(
            Settings(DLQ_BASE_DELAY_SECONDS=10, DLQ_MAX_DELAY_SECONDS=40, DLQ_JITTER_RATIO=0)
        )

        assert [policy.delay_for(n) for n in range(1, 5)] == [10, 20, 40, 40]


class TestCreateStore:
    @pytest.mark.asyncio
    async def test_in_memory_without_database(self):
        assert isinstance(await create_store(Settings()), InMemoryDLQStore)

    @pytest.mark.asyncio
    async def test_unreachable_database_raises(self, monkeypatch):
        monkeypatch.setattr(bootstrap, "init_db_pool", AsyncMock(return_value=None))

        with pytest.raises(RuntimeError):
            await create_store(Settings(DATABASE_URL="postgresql://u@localhost:1/db"))

    @pytest.mark.asyncio
    async def test_schema_failure_closes_pool(self, monkeypatch):
        close = AsyncMock()
        monkeypatch.setattr(bootstrap, "init_db_pool", AsyncMock(return_value=MagicMock()))
        monkeypatch.setattr(bootstrap, "close_db_pool", close)
        monkeypatch.setattr(
            PostgresDLQStore, "ensure_schema", AsyncMock(side_effect=RuntimeError("permission denied"))
        )

        with pytest.raises(RuntimeError, match="permission denied"):
            await create_store(Settings(DATABASE_URL="postgresql://u@localhost/db"))

        close.assert_awaited_once()


@pytest.mark.asyncio
async def test_open_pipeline_yields_usable_pipeline():
    async with open_pipeline(Settings()) as pipeline:
        stats = await pipeline.dlq.get_dlq_stats()

    assert stats.total_items == 0
