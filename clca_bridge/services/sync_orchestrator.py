"""
CLCA Bridge - Sync Orchestrator

Decides, per TTG change, whether and how the pipeline runs.

Visibility:
    event  visible when status == "upcoming"
    game   visible when approved and status == "active"

Policy:
    becomes or stays visible  -> map, validate, send
    visible -> hidden         -> send the mapped doc; its status
                                 (archived/deleted/draft/pending) tells CLCA
                                 to archive the item
    hidden -> hidden / new hidden record -> skipped

Failure routing for a direct send:
    validation error                -> raised, nothing queued
    missing configuration           -> raised, nothing queued
    retryable ingest failure        -> queued at attempt 1, then raised
    non-retryable ingest failure    -> recorded in the failed store, then raised

publish_event/publish_game raise; handle_event_change/handle_game_change
wrap them for store listeners and never raise for pipeline failures.

CLCA de-duplicates on (ownerSystem, originalId) and only accepts a newer
updatedAt, so running the same object twice (directly or from the queue) is
safe. Nothing here orders a queued retry against a later direct send.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Literal, Optional

from ..core.errors import ContentDocValidationError, IngestConfigurationError
from ..core.logging import LogContext
from ..core.metrics import PipelineMetrics, get_metrics
from ..models.contentdoc import ContentDoc, IngestResult
from ..models.dlq import DLQContext
from ..models.domain import Event, Game
from ..workers.dead_letter_queue import DeadLetterQueue
from .contentdoc_mapper import ContentDocMapper
from .ingest_client import ClcaIngestClient

logger = logging.getLogger(__name__)

VISIBLE_EVENT_STATUS = "upcoming"
VISIBLE_GAME_STATUS = "active"
DEFAULT_RESYNC_DELAY_SECONDS = 0.5

SyncAction = Literal["published", "archived", "skipped", "failed"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_event_visible(event: Event) -> bool:
    return event.status == VISIBLE_EVENT_STATUS


def is_game_visible(game: Game) -> bool:
    return game.approved and game.status == VISIBLE_GAME_STATUS


# =============================================================================
# Results
# =============================================================================


@dataclass
class SyncStatus:
    """Last known sync state of one source record."""

    synced: bool
    synced_at: Optional[datetime] = None
    clca_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SyncOutcome:
    action: SyncAction
    result: Optional[IngestResult] = None
    error: Optional[str] = None


@dataclass
class ResyncSummary:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


# =============================================================================
# Orchestrator
# =============================================================================


class SyncOrchestrator:
    """Runs the pipeline for TTG events and games."""

    def __init__(
        self,
        mapper: ContentDocMapper,
        client: ClcaIngestClient,
        dlq: DeadLetterQueue,
        metrics: Optional[PipelineMetrics] = None,
        resync_delay: float = DEFAULT_RESYNC_DELAY_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.mapper = mapper
        self.client = client
        self.dlq = dlq
        self.metrics = metrics or get_metrics()
        self.resync_delay = resync_delay
        self.clock = clock
        self._status: dict[str, SyncStatus] = {}

    # -------------------------------------------------------------------------
    # Sync status
    # -------------------------------------------------------------------------

    def get_sync_status(self, original_id: str) -> Optional[SyncStatus]:
        """Status keyed by originalId, e.g. "event:42"."""
        return self._status.get(original_id)

    def _mark_synced(self, original_id: str, result: IngestResult) -> None:
        self._status[original_id] = SyncStatus(
            synced=True, synced_at=self.clock(), clca_id=result.id
        )

    def _mark_failed(self, original_id: str, error: BaseException) -> None:
        self._status[original_id] = SyncStatus(
            synced=False, error=str(error) or type(error).__name__
        )

    # -------------------------------------------------------------------------
    # Direct publish
    # -------------------------------------------------------------------------

    async def publish_event(self, event: Event) -> IngestResult:
        """
        Map, validate and send one event.

        Raises:
            ContentDocValidationError: mapped doc is not sendable (not queued)
            IngestError: delivery failed (queued or recorded as failed first)
        """
        original_id = self.mapper.original_id("event", event.id)
        with LogContext(event_id=event.source_id):
            try:
                doc = self.mapper.map_event(event)
            except ContentDocValidationError as e:
                self._mark_failed(original_id, e)
                raise
            return await self._send(doc, event.source_id)

    async def publish_game(self, game: Game) -> IngestResult:
        """Map, validate and send one catalog game. Raises like publish_event."""
        original_id = self.mapper.original_id("game", game.id)
        with LogContext(event_id=game.source_id):
            try:
                doc = self.mapper.map_game(game)
            except ContentDocValidationError as e:
                self._mark_failed(original_id, e)
                raise
            return await self._send(doc, game.source_id)

    async def _send(self, doc: ContentDoc, source_id: str) -> IngestResult:
        original_id = doc.original_id or doc.id
        try:
            result = await self.client.publish_content(doc)
        except Exception as e:
            self.metrics.increment("publish_failures")
            self._mark_failed(original_id, e)
            await self._route_failure(doc, e, source_id)
            raise

        self.metrics.increment("published")
        self._mark_synced(original_id, result)
        return result

    async def _route_failure(self, doc: ContentDoc, error: BaseException, source_id: str) -> None:
        if isinstance(error, IngestConfigurationError):
            logger.warning("CLCA not configured, change not queued", extra={"event_id": source_id})
            return

        context = DLQContext(event_id=source_id or doc.original_id or doc.id, attempt=1)
        if self.dlq.should_enqueue(error):
            await self.dlq.add_to_dlq(doc, error, context)
        else:
            await self.dlq.record_terminal_failure(doc, error, context)

    # -------------------------------------------------------------------------
    # Change handlers
    # -------------------------------------------------------------------------

    async def handle_event_change(
        self,
        event: Event,
        previous: Optional[Event] = None,
    ) -> SyncOutcome:
        """
        React to an event create (previous=None) or update.

        Failures are logged and reported in the outcome, never raised.
        """
        visible = is_event_visible(event)
        was_visible = previous is not None and is_event_visible(previous)
        return await self._handle_change(
            visible, was_visible, lambda: self.publish_event(event), event.source_id
        )

    async def handle_game_change(
        self,
        game: Game,
        previous: Optional[Game] = None,
    ) -> SyncOutcome:
        visible = is_game_visible(game)
        was_visible = previous is not None and is_game_visible(previous)
        return await self._handle_change(
            visible, was_visible, lambda: self.publish_game(game), game.source_id
        )

    async def _handle_change(
        self,
        visible: bool,
        was_visible: bool,
        publish: Callable[[], Any],
        source_id: str,
    ) -> SyncOutcome:
        if not visible and not was_visible:
            logger.debug("Change not externally visible, skipping", extra={"event_id": source_id})
            return SyncOutcome(action="skipped")

        if not self.client.is_configured():
            logger.warning("CLCA not configured, skipping sync", extra={"event_id": source_id})
            return SyncOutcome(action="skipped")

        try:
            result = await publish()
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(
                "Failed to sync change to CLCA: %s", message, extra={"event_id": source_id}
            )
            return SyncOutcome(action="failed", error=message)

        return SyncOutcome(action="published" if visible else "archived", result=result)

    # -------------------------------------------------------------------------
    # Bulk resync
    # -------------------------------------------------------------------------

    async def resync_all(
        self,
        events: Iterable[Event] = (),
        games: Iterable[Game] = (),
    ) -> ResyncSummary:
        """
        Send every visible event and game, one at a time.

        Hidden records are counted as skipped. Failures take the same routing
        as a direct send and are collected in the summary.

        Raises:
            IngestConfigurationError: CLCA is not configured
        """
        if not self.client.is_configured():
            raise IngestConfigurationError("CLCA integration not properly configured")

        summary = ResyncSummary()
        items: list[tuple[str, Callable[[], Any]]] = []

        for event in events:
            if not is_event_visible(event):
                summary.skipped += 1
                continue
            items.append((event.source_id, lambda e=event: self.publish_event(e)))

        for game in games:
            if not is_game_visible(game):
                summary.skipped += 1
                continue
            items.append((game.source_id, lambda g=game: self.publish_game(g)))

        logger.info("Starting bulk resync", extra={"count": len(items)})

        for index, (source_id, publish) in enumerate(items):
            if index and self.resync_delay > 0:
                await asyncio.sleep(self.resync_delay)
            try:
                await publish()
            except Exception as e:
                summary.failed += 1
                summary.errors.append({"source_id": source_id, "error": str(e) or type(e).__name__})
                continue
            summary.success += 1

        logger.info(
            "Bulk resync complete: success=%d failed=%d skipped=%d",
            summary.success,
            summary.failed,
            summary.skipped,
        )
        return summary
