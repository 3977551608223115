"""
CLCA Bridge - Dead Letter Queue

Durable retry of ContentDocs whose first delivery to CLCA failed.

Entry lifecycle:
    pending(attempt=n) -- retry succeeds -------------> deleted
    pending(attempt=n) -- retry fails (retryable) ----> pending(attempt=n+1)
    pending(attempt>=max_retries) -------------------> failed store ("Max retries exceeded")
    pending(any) -- retry fails (non-retryable) -----> failed store ("non_retryable:<status>")

Failure semantics:
    add_to_dlq never raises. A lost write is logged, counted as
    dlq_write_failures and reported as a None id; delivery for that change
    is then at-most-once.
    Moving to the failed store is best-effort and idempotent per pending entry.
    process_dlq never raises; one bad entry does not stop the batch.

Concurrency:
    process_dlq assumes a single caller at a time (see dlq_worker, which
    schedules it with max_instances=1). Overlapping runs may send the same
    entry twice; CLCA de-duplicates on (ownerSystem, originalId).

Usage:
    dlq = DeadLetterQueue(InMemoryDLQStore(), client)
    await dlq.add_to_dlq(doc, error, DLQContext(event_id="abc"))
    result = await dlq.process_dlq()
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from ..core.errors import (
    IngestConfigurationError,
    IngestError,
    TokenSigningError,
    error_snapshot,
)
from ..core.metrics import PipelineMetrics, get_metrics
from ..models.contentdoc import ContentDoc
from ..models.dlq import (
    FAILURE_MAX_RETRIES,
    DLQContext,
    DLQEntry,
    DLQProcessResult,
    DLQStats,
    ErrorSnapshot,
    FailedEntry,
    non_retryable_reason,
)
from .backoff import RetryPolicy
from .dlq_store import DLQStore

if TYPE_CHECKING:
    from ..services.ingest_client import ClcaIngestClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_ITEMS_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(error: BaseException) -> ErrorSnapshot:
    return ErrorSnapshot.model_validate(error_snapshot(error))


def _is_terminal(error: BaseException) -> bool:
    return isinstance(error, IngestError) and not error.retryable


class DeadLetterQueue:
    """Retry queue service. Construct one per pipeline and inject it."""

    def __init__(
        self,
        store: DLQStore,
        client: ClcaIngestClient,
        policy: Optional[RetryPolicy] = None,
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], datetime] = _utcnow,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_non_retryable: bool = False,
    ):
        self.store = store
        self.client = client
        self.policy = policy or RetryPolicy()
        self.metrics = metrics or get_metrics()
        self.clock = clock
        self.batch_size = batch_size
        self.retry_non_retryable = retry_non_retryable

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries

    def should_enqueue(self, error: BaseException) -> bool:
        """False for failures that retrying cannot fix."""
        if not isinstance(error, IngestError):
            return True
        if isinstance(error, (IngestConfigurationError, TokenSigningError)):
            return False
        return error.retryable or self.retry_non_retryable

    def _with_max_retries(self, context: DLQContext) -> DLQContext:
        if context.max_retries is not None:
            return context
        return context.model_copy(update={"max_retries": self.max_retries})

    def _is_exhausted(self, entry: DLQEntry) -> bool:
        limit = entry.context.max_retries or self.max_retries
        return entry.context.attempt >= limit

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    async def add_to_dlq(
        self,
        content_doc: ContentDoc,
        error: BaseException,
        context: DLQContext,
    ) -> Optional[str]:
        """
        Queue a failed delivery for retry.

        retry_after = now + backoff(context.attempt), raised to the server's
        Retry-After hint when that is longer.

        Returns:
            The new entry id, or None if the write was lost
        """
        now = self.clock()
        retry_after_hint = error.retry_after if isinstance(error, IngestError) else None
        entry = DLQEntry(
            content_doc=content_doc,
            error=_snapshot(error),
            context=self._with_max_retries(context),
            created_at=now,
            last_attempt_at=now,
            retry_after=self.policy.next_retry_at(context.attempt, now, retry_after_hint),
        )

        try:
            entry_id = await self.store.insert_pending(entry)
        except Exception as e:
            self.metrics.increment("dlq_write_failures")
            logger.error(
                "Failed to add item to DLQ, retry opportunity lost: %s",
                str(e) or type(e).__name__,
                extra={"content_doc_id": content_doc.id, "event_id": context.event_id},
            )
            return None

        self.metrics.increment("dlq_enqueued")
        logger.info(
            "Added failed ingestion to DLQ",
            extra={
                "dlq_id": entry_id,
                "content_doc_id": content_doc.id,
                "event_id": context.event_id,
                "attempt": context.attempt,
            },
        )
        return entry_id

    async def record_terminal_failure(
        self,
        content_doc: ContentDoc,
        error: BaseException,
        context: DLQContext,
    ) -> Optional[str]:
        """Write a first-send failure straight to the failed store."""
        now = self.clock()
        status_code = error.status_code if isinstance(error, IngestError) else None
        failed = FailedEntry(
            content_doc=content_doc,
            error=_snapshot(error),
            context=self._with_max_retries(context),
            created_at=now,
            last_attempt_at=now,
            failed_at=now,
            failure_reason=non_retryable_reason(status_code),
        )
        return await self._insert_failed(failed)

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_dlq(self) -> DLQProcessResult:
        """Retry one batch of due entries, oldest retry_after first."""
        result = DLQProcessResult()
        now = self.clock()

        try:
            entries = await self.store.fetch_due(now, self.batch_size)
        except Exception as e:
            logger.error("Error processing DLQ: %s", str(e) or type(e).__name__)
            return result

        if not entries:
            logger.debug("No DLQ items ready for retry")
            return result

        logger.info("Processing DLQ items", extra={"count": len(entries)})

        for entry in entries:
            result.processed += 1
            try:
                outcome = await self._process_entry(entry)
            except Exception as e:
                result.failed += 1
                logger.error(
                    "Unexpected error processing DLQ item: %s",
                    str(e) or type(e).__name__,
                    extra={"dlq_id": entry.id},
                )
                continue

            if outcome == "succeeded":
                result.succeeded += 1
            elif outcome == "exhausted":
                result.exhausted += 1
            else:
                result.failed += 1

        logger.info(
            "DLQ batch complete: processed=%d succeeded=%d failed=%d exhausted=%d",
            result.processed,
            result.succeeded,
            result.failed,
            result.exhausted,
        )
        return result

    async def _process_entry(self, entry: DLQEntry) -> str:
        assert entry.id is not None

        if self._is_exhausted(entry):
            if await self.move_to_failed(entry, FAILURE_MAX_RETRIES) is None:
                return "failed"
            self.metrics.increment("dlq_exhausted")
            logger.warning(
                "DLQ item exceeded max retries, moving to failed collection",
                extra={
                    "dlq_id": entry.id,
                    "event_id": entry.context.event_id,
                    "attempt": entry.context.attempt,
                },
            )
            return "exhausted"

        try:
            await self.client.publish_content(entry.content_doc)
        except Exception as e:
            return await self._record_retry_failure(entry, e)

        await self.store.delete_pending(entry.id)
        self.metrics.increment("dlq_retry_succeeded")
        logger.info(
            "DLQ item retry succeeded",
            extra={
                "dlq_id": entry.id,
                "event_id": entry.context.event_id,
                "attempt": entry.context.attempt,
            },
        )
        return "succeeded"

    async def _record_retry_failure(self, entry: DLQEntry, error: BaseException) -> str:
        assert entry.id is not None
        now = self.clock()
        attempt = entry.context.attempt + 1
        snapshot = _snapshot(error)
        self.metrics.increment("dlq_retry_failed")

        if _is_terminal(error) and not self.retry_non_retryable:
            failed_entry = entry.model_copy(
                update={
                    "error": snapshot,
                    "context": entry.context.model_copy(update={"attempt": attempt}),
                    "last_attempt_at": now,
                }
            )
            status_code = error.status_code if isinstance(error, IngestError) else None
            await self.move_to_failed(failed_entry, non_retryable_reason(status_code))
            logger.warning(
                "DLQ item failed with non-retryable error, moving to failed collection",
                extra={"dlq_id": entry.id, "status_code": status_code},
            )
            return "failed"

        retry_after_hint = error.retry_after if isinstance(error, IngestError) else None
        await self.store.update_pending(
            entry.id,
            attempt=attempt,
            error=snapshot,
            retry_after=self.policy.next_retry_at(attempt, now, retry_after_hint),
            last_attempt_at=now,
        )
        logger.warning(
            "DLQ item retry failed",
            extra={
                "dlq_id": entry.id,
                "event_id": entry.context.event_id,
                "attempt": attempt,
                "status_code": snapshot.status_code,
            },
        )
        return "failed"

    async def move_to_failed(self, entry: DLQEntry, reason: str) -> Optional[str]:
        """
        Demote a pending entry to the failed store and delete it.

        Best-effort: on a write failure the pending entry is left in place so
        the next run can try again.
        """
        assert entry.id is not None
        failed_id = await self._insert_failed(FailedEntry.from_entry(entry, self.clock(), reason))
        if failed_id is None:
            return None

        try:
            await self.store.delete_pending(entry.id)
        except Exception as e:
            logger.error(
                "Failed to delete DLQ item after moving it to failed collection: %s",
                str(e) or type(e).__name__,
                extra={"dlq_id": entry.id},
            )
        return failed_id

    async def _insert_failed(self, failed: FailedEntry) -> Optional[str]:
        try:
            failed_id = await self.store.insert_failed(failed)
        except Exception as e:
            self.metrics.increment("failed_store_write_failures")
            logger.error(
                "Failed to move item to failed collection: %s",
                str(e) or type(e).__name__,
                extra={"dlq_id": failed.original_dlq_id, "event_id": failed.context.event_id},
            )
            return None

        self.metrics.increment("terminal_failures")
        logger.info(
            "Item recorded in failed collection",
            extra={
                "dlq_id": failed.original_dlq_id,
                "event_id": failed.context.event_id,
                "content_doc_id": failed.content_doc.id,
            },
        )
        return failed_id

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    async def get_dlq_stats(self) -> DLQStats:
        """Counts for operators. Returns zeros if the store cannot be read."""
        try:
            now = self.clock()
            total = await self.store.count_pending()
            ready = await self.store.count_pending(due_before=now)
            attempts = await self.store.sum_attempts()
            failed = await self.store.count_failed()
        except Exception as e:
            logger.error("Error getting DLQ stats: %s", str(e) or type(e).__name__)
            return DLQStats()

        return DLQStats(
            total_items=total,
            ready_for_retry=ready,
            pending_retry=total - ready,
            average_attempts=round(attempts / total, 2) if total else 0.0,
            failed_items=failed,
        )

    async def get_dlq_items(self, limit: int = DEFAULT_ITEMS_LIMIT) -> list[DLQEntry]:
        """Newest pending entries first."""
        try:
            return await self.store.list_pending(limit)
        except Exception as e:
            logger.error("Error getting DLQ items: %s", str(e) or type(e).__name__)
            return []

    async def get_failed_items(self, limit: int = DEFAULT_ITEMS_LIMIT) -> list[FailedEntry]:
        try:
            return await self.store.list_failed(limit)
        except Exception as e:
            logger.error("Error getting failed items: %s", str(e) or type(e).__name__)
            return []

    async def find_by_event_id(self, event_id: str) -> tuple[list[DLQEntry], list[FailedEntry]]:
        """Pending and failed entries for one source record."""
        return (
            await self.store.find_pending(event_id),
            await self.store.find_failed(event_id),
        )

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    async def clear_dlq(self) -> int:
        """Delete every pending entry. Errors propagate."""
        try:
            cleared = await self.store.clear_pending()
        except Exception:
            logger.exception("Error clearing DLQ")
            raise
        logger.warning("DLQ cleared", extra={"count": cleared})
        return cleared
