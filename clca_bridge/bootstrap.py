"""
CLCA Bridge - Pipeline Wiring

Builds one pipeline instance (mapper, client, queue, orchestrator) from
Settings. Nothing here is a module-level singleton: callers own the
Pipeline and close it.

Usage:
    async with open_pipeline(get_settings()) as pipeline:
        await pipeline.orchestrator.handle_event_change(event)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from .core.config import Settings
from .core.metrics import PipelineMetrics
from .core.security import HS256TokenSigner, TokenSigner
from .db import close_db_pool, init_db_pool
from .services.contentdoc_mapper import ContentDocMapper
from .services.contentdoc_validator import ContentDocValidator
from .services.ingest_client import ClcaIngestClient
from .services.sync_orchestrator import SyncOrchestrator
from .workers.backoff import RetryPolicy
from .workers.dead_letter_queue import DeadLetterQueue
from .workers.dlq_store import DLQStore, InMemoryDLQStore, PostgresDLQStore

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    settings: Settings
    metrics: PipelineMetrics
    mapper: ContentDocMapper
    client: ClcaIngestClient
    store: DLQStore
    dlq: DeadLetterQueue
    orchestrator: SyncOrchestrator

    async def aclose(self) -> None:
        await self.client.aclose()


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        base_delay=settings.DLQ_BASE_DELAY_SECONDS,
        max_delay=settings.DLQ_MAX_DELAY_SECONDS,
        jitter_ratio=settings.DLQ_JITTER_RATIO,
        max_retries=settings.DLQ_MAX_RETRIES,
    )


def build_pipeline(
    settings: Settings,
    store: Optional[DLQStore] = None,
    signer: Optional[TokenSigner] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    metrics: Optional[PipelineMetrics] = None,
) -> Pipeline:
    """
    Wire a pipeline from settings.

    Args:
        store: Queue store; defaults to an in-memory store
        signer: Token signer; defaults to HS256 with CLCA_JWT_SECRET
        http_client: Shared httpx client (tests pass one with a MockTransport)
        metrics: Counter set; a fresh one per pipeline by default
    """
    metrics = metrics or PipelineMetrics()
    validator = ContentDocValidator(settings.CLCA_SYSTEM_ID)
    mapper = ContentDocMapper(
        owner_system=settings.CLCA_SYSTEM_ID,
        base_url=settings.TTG_APP_BASE_URL,
        tz_name=settings.TTG_TIMEZONE,
        validator=validator,
    )
    client = ClcaIngestClient(
        settings.CLCA_INGEST_URL,
        signer or HS256TokenSigner(settings.CLCA_JWT_SECRET),
        issuer=settings.CLCA_SYSTEM_ID,
        audience=settings.CLCA_AUDIENCE,
        token_ttl_seconds=settings.CLCA_TOKEN_TTL_SECONDS,
        timeout=settings.CLCA_REQUEST_TIMEOUT_SECONDS,
        health_timeout=settings.CLCA_HEALTH_TIMEOUT_SECONDS,
        user_agent=settings.CLCA_USER_AGENT,
        http_client=http_client,
    )
    if store is None:
        store = InMemoryDLQStore()
    dlq = DeadLetterQueue(
        store,
        client,
        policy=build_retry_policy(settings),
        metrics=metrics,
        batch_size=settings.DLQ_BATCH_SIZE,
        retry_non_retryable=settings.DLQ_RETRY_NON_RETRYABLE,
    )
    orchestrator = SyncOrchestrator(
        mapper,
        client,
        dlq,
        metrics=metrics,
        resync_delay=settings.RESYNC_DELAY_SECONDS,
    )
    return Pipeline(
        settings=settings,
        metrics=metrics,
        mapper=mapper,
        client=client,
        store=store,
        dlq=dlq,
        orchestrator=orchestrator,
    )


async def create_store(settings: Settings) -> DLQStore:
    """
    PostgreSQL store when DATABASE_URL is set and reachable.

    Raises:
        RuntimeError: DATABASE_URL is set but the pool could not be opened
    """
    if not settings.database_url:
        logger.warning("DATABASE_URL not set - using in-memory DLQ store, entries will not persist")
        return InMemoryDLQStore()

    pool = await init_db_pool(settings.database_url)
    if pool is None:
        raise RuntimeError("Could not connect to DATABASE_URL for the DLQ store")

    store = PostgresDLQStore(pool)
    try:
        await store.ensure_schema()
    except Exception:
        await close_db_pool()
        raise
    return store


@asynccontextmanager
async def open_pipeline(settings: Settings) -> AsyncIterator[Pipeline]:
    """Build a pipeline with its configured store and close it on exit."""
    store = await create_store(settings)
    pipeline = build_pipeline(settings, store=store)
    try:
        yield pipeline
    finally:
        await pipeline.aclose()
        if isinstance(store, PostgresDLQStore):
            await close_db_pool()
