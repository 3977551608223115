"""
CLCA Bridge - Dead Letter Queue Storage

Two logical collections:
    clca_ingestion_dlq     pending retries, queried by retry_after / created_at / event_id
    clca_ingestion_failed  terminal failures kept for manual inspection

Implementations:
    InMemoryDLQStore   - tests and local runs without a database
    PostgresDLQStore   - psycopg 3 async pool, JSONB payloads

Concurrency: no in-process lock. Each write is a single-row statement, so
concurrent writers resolve last-writer-wins per entry. process_dlq() is
expected to be driven by one scheduler at a time.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from ..models.contentdoc import ContentDoc
from ..models.dlq import DLQContext, DLQEntry, ErrorSnapshot, FailedEntry

logger = logging.getLogger(__name__)

DLQ_TABLE = "clca_ingestion_dlq"
FAILED_TABLE = "clca_ingestion_failed"


class DLQStore(ABC):
    """Persistence for pending and failed queue entries."""

    # -------------------------------------------------------------------------
    # Pending
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_pending(self, entry: DLQEntry) -> str:
        """Persist a new pending entry and return its id."""

    @abstractmethod
    async def fetch_due(self, now: datetime, limit: int) -> list[DLQEntry]:
        """Entries with retry_after <= now, oldest retry_after first."""

    @abstractmethod
    async def update_pending(
        self,
        entry_id: str,
        *,
        attempt: int,
        error: ErrorSnapshot,
        retry_after: datetime,
        last_attempt_at: datetime,
    ) -> None:
        """Record a failed retry in place."""

    @abstractmethod
    async def delete_pending(self, entry_id: str) -> bool:
        """Remove a pending entry; False if it did not exist."""

    @abstractmethod
    async def list_pending(self, limit: int) -> list[DLQEntry]:
        """Newest first by created_at."""

    @abstractmethod
    async def count_pending(self, due_before: Optional[datetime] = None) -> int:
        """All pending entries, or only those due at due_before."""

    @abstractmethod
    async def sum_attempts(self) -> int:
        """Total of context.attempt across pending entries."""

    @abstractmethod
    async def clear_pending(self) -> int:
        """Delete every pending entry and return how many were removed."""

    @abstractmethod
    async def find_pending(self, event_id: str) -> list[DLQEntry]:
        """Pending entries for one source record."""

    # -------------------------------------------------------------------------
    # Failed
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_failed(self, entry: FailedEntry) -> str:
        """
        Persist a failed entry and return its id.

        Idempotent per original_dlq_id: a second insert for the same pending
        entry returns the existing record's id.
        """

    @abstractmethod
    async def list_failed(self, limit: int) -> list[FailedEntry]:
        """Newest first by failed_at."""

    @abstractmethod
    async def count_failed(self) -> int: ...

    @abstractmethod
    async def find_failed(self, event_id: str) -> list[FailedEntry]: ...


# =============================================================================
# In-memory
# =============================================================================


class InMemoryDLQStore(DLQStore):
    """Dict-backed store. Entries are copied on the way in and out."""

    def __init__(self) -> None:
        self.pending: dict[str, DLQEntry] = {}
        self.failed: dict[str, FailedEntry] = {}

    async def insert_pending(self, entry: DLQEntry) -> str:
        entry_id = uuid.uuid4().hex
        self.pending[entry_id] = entry.model_copy(update={"id": entry_id}, deep=True)
        return entry_id

    async def fetch_due(self, now: datetime, limit: int) -> list[DLQEntry]:
        due = [e for e in self.pending.values() if e.retry_after <= now]
        due.sort(key=lambda e: e.retry_after)
        return [e.model_copy(deep=True) for e in due[:limit]]

    async def update_pending(
        self,
        entry_id: str,
        *,
        attempt: int,
        error: ErrorSnapshot,
        retry_after: datetime,
        last_attempt_at: datetime,
    ) -> None:
        current = self.pending.get(entry_id)
        if current is None:
            raise KeyError(f"No pending entry {entry_id}")
        self.pending[entry_id] = current.model_copy(
            update={
                "context": current.context.model_copy(update={"attempt": attempt}),
                "error": error,
                "retry_after": retry_after,
                "last_attempt_at": last_attempt_at,
            },
            deep=True,
        )

    async def delete_pending(self, entry_id: str) -> bool:
        return self.pending.pop(entry_id, None) is not None

    async def list_pending(self, limit: int) -> list[DLQEntry]:
        ordered = sorted(self.pending.values(), key=lambda e: e.created_at, reverse=True)
        return [e.model_copy(deep=True) for e in ordered[:limit]]

    async def count_pending(self, due_before: Optional[datetime] = None) -> int:
        if due_before is None:
            return len(self.pending)
        return sum(1 for e in self.pending.values() if e.retry_after <= due_before)

    async def sum_attempts(self) -> int:
        return sum(e.context.attempt for e in self.pending.values())

    async def clear_pending(self) -> int:
        count = len(self.pending)
        self.pending.clear()
        return count

    async def find_pending(self, event_id: str) -> list[DLQEntry]:
        return [
            e.model_copy(deep=True)
            for e in self.pending.values()
            if e.context.event_id == event_id
        ]

    async def insert_failed(self, entry: FailedEntry) -> str:
        if entry.original_dlq_id is not None:
            for existing_id, existing in self.failed.items():
                if existing.original_dlq_id == entry.original_dlq_id:
                    return existing_id
        entry_id = uuid.uuid4().hex
        self.failed[entry_id] = entry.model_copy(update={"id": entry_id}, deep=True)
        return entry_id

    async def list_failed(self, limit: int) -> list[FailedEntry]:
        ordered = sorted(self.failed.values(), key=lambda e: e.failed_at, reverse=True)
        return [e.model_copy(deep=True) for e in ordered[:limit]]

    async def count_failed(self) -> int:
        return len(self.failed)

    async def find_failed(self, event_id: str) -> list[FailedEntry]:
        return [
            e.model_copy(deep=True) for e in self.failed.values() if e.context.event_id == event_id
        ]


# =============================================================================
# PostgreSQL
# =============================================================================

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {DLQ_TABLE} (
    id              uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    event_id        text        NOT NULL,
    content_doc     jsonb       NOT NULL,
    error           jsonb       NOT NULL,
    attempt         integer     NOT NULL CHECK (attempt >= 1),
    max_retries     integer     NOT NULL CHECK (max_retries >= 1),
    created_at      timestamptz NOT NULL DEFAULT now(),
    retry_after     timestamptz NOT NULL,
    last_attempt_at timestamptz
);
CREATE INDEX IF NOT EXISTS {DLQ_TABLE}_retry_after_idx ON {DLQ_TABLE} (retry_after);
CREATE INDEX IF NOT EXISTS {DLQ_TABLE}_created_at_idx ON {DLQ_TABLE} (created_at);
CREATE INDEX IF NOT EXISTS {DLQ_TABLE}_event_id_idx ON {DLQ_TABLE} (event_id);

CREATE TABLE IF NOT EXISTS {FAILED_TABLE} (
    id              uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    original_dlq_id uuid UNIQUE,
    event_id        text        NOT NULL,
    content_doc     jsonb       NOT NULL,
    error           jsonb       NOT NULL,
    attempt         integer     NOT NULL,
    max_retries     integer     NOT NULL,
    created_at      timestamptz NOT NULL,
    retry_after     timestamptz,
    last_attempt_at timestamptz,
    failed_at       timestamptz NOT NULL DEFAULT now(),
    failure_reason  text        NOT NULL
);
CREATE INDEX IF NOT EXISTS {FAILED_TABLE}_failed_at_idx ON {FAILED_TABLE} (failed_at);
CREATE INDEX IF NOT EXISTS {FAILED_TABLE}_event_id_idx ON {FAILED_TABLE} (event_id);
"""

_PENDING_COLUMNS = (
    "id, event_id, content_doc, error, attempt, max_retries, "
    "created_at, retry_after, last_attempt_at"
)
_FAILED_COLUMNS = _PENDING_COLUMNS + ", failed_at, failure_reason, original_dlq_id"


def _context_from_row(row: dict[str, Any]) -> DLQContext:
    return DLQContext(
        event_id=row["event_id"],
        attempt=row["attempt"],
        max_retries=row["max_retries"],
    )


def _pending_from_row(row: dict[str, Any]) -> DLQEntry:
    return DLQEntry(
        id=str(row["id"]),
        content_doc=ContentDoc.model_validate(row["content_doc"]),
        error=ErrorSnapshot.model_validate(row["error"]),
        context=_context_from_row(row),
        created_at=row["created_at"],
        retry_after=row["retry_after"],
        last_attempt_at=row["last_attempt_at"],
    )


def _failed_from_row(row: dict[str, Any]) -> FailedEntry:
    return FailedEntry(
        id=str(row["id"]),
        content_doc=ContentDoc.model_validate(row["content_doc"]),
        error=ErrorSnapshot.model_validate(row["error"]),
        context=_context_from_row(row),
        created_at=row["created_at"],
        retry_after=row["retry_after"],
        last_attempt_at=row["last_attempt_at"],
        failed_at=row["failed_at"],
        failure_reason=row["failure_reason"],
        original_dlq_id=str(row["original_dlq_id"]) if row["original_dlq_id"] else None,
    )


class PostgresDLQStore(DLQStore):
    """Store backed by two tables on an AsyncConnectionPool."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("DLQ schema ensured (%s, %s)", DLQ_TABLE, FAILED_TABLE)

    async def _fetch(self, query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return list(await cur.fetchall())

    async def _scalar(self, query: str, params: tuple[Any, ...] = ()) -> Any:
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                return row[0] if row else None

    # -------------------------------------------------------------------------
    # Pending
    # -------------------------------------------------------------------------

    async def insert_pending(self, entry: DLQEntry) -> str:
        entry_id = await self._scalar(
            f"""
            INSERT INTO {DLQ_TABLE}
                (event_id, content_doc, error, attempt, max_retries,
                 created_at, retry_after, last_attempt_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                entry.context.event_id,
                Jsonb(entry.content_doc.to_wire()),
                Jsonb(entry.error.to_document()),
                entry.context.attempt,
                entry.context.max_retries,
                entry.created_at,
                entry.retry_after,
                entry.last_attempt_at,
            ),
        )
        return str(entry_id)

    async def fetch_due(self, now: datetime, limit: int) -> list[DLQEntry]:
        rows = await self._fetch(
            f"""
            SELECT {_PENDING_COLUMNS}
            FROM {DLQ_TABLE}
            WHERE retry_after <= %s
            ORDER BY retry_after ASC
            LIMIT %s
            """,
            (now, limit),
        )
        return [_pending_from_row(row) for row in rows]

    async def update_pending(
        self,
        entry_id: str,
        *,
        attempt: int,
        error: ErrorSnapshot,
        retry_after: datetime,
        last_attempt_at: datetime,
    ) -> None:
        async with self.pool.connection() as conn:
            cur = await conn.execute(
                f"""
                UPDATE {DLQ_TABLE}
                SET attempt = %s, error = %s, retry_after = %s, last_attempt_at = %s
                WHERE id = %s
                """,
                (attempt, Jsonb(error.to_document()), retry_after, last_attempt_at, entry_id),
            )
            if cur.rowcount == 0:
                raise KeyError(f"No pending entry {entry_id}")

    async def delete_pending(self, entry_id: str) -> bool:
        async with self.pool.connection() as conn:
            cur = await conn.execute(f"DELETE FROM {DLQ_TABLE} WHERE id = %s", (entry_id,))
            return cur.rowcount > 0

    async def list_pending(self, limit: int) -> list[DLQEntry]:
        rows = await self._fetch(
            f"SELECT {_PENDING_COLUMNS} FROM {DLQ_TABLE} ORDER BY created_at DESC LIMIT %s",
            (limit,),
        )
        return [_pending_from_row(row) for row in rows]

    async def count_pending(self, due_before: Optional[datetime] = None) -> int:
        if due_before is None:
            return int(await self._scalar(f"SELECT count(*) FROM {DLQ_TABLE}") or 0)
        return int(
            await self._scalar(
                f"SELECT count(*) FROM {DLQ_TABLE} WHERE retry_after <= %s", (due_before,)
            )
            or 0
        )

    async def sum_attempts(self) -> int:
        return int(await self._scalar(f"SELECT coalesce(sum(attempt), 0) FROM {DLQ_TABLE}") or 0)

    async def clear_pending(self) -> int:
        async with self.pool.connection() as conn:
            cur = await conn.execute(f"DELETE FROM {DLQ_TABLE}")
            return cur.rowcount

    async def find_pending(self, event_id: str) -> list[DLQEntry]:
        rows = await self._fetch(
            f"""
            SELECT {_PENDING_COLUMNS} FROM {DLQ_TABLE}
            WHERE event_id = %s ORDER BY created_at DESC
            """,
            (event_id,),
        )
        return [_pending_from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Failed
    # -------------------------------------------------------------------------

    async def insert_failed(self, entry: FailedEntry) -> str:
        params = (
            entry.original_dlq_id,
            entry.context.event_id,
            Jsonb(entry.content_doc.to_wire()),
            Jsonb(entry.error.to_document()),
            entry.context.attempt,
            entry.context.max_retries,
            entry.created_at,
            entry.retry_after,
            entry.last_attempt_at,
            entry.failed_at,
            entry.failure_reason,
        )
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"""
                    INSERT INTO {FAILED_TABLE}
                        (original_dlq_id, event_id, content_doc, error, attempt, max_retries,
                         created_at, retry_after, last_attempt_at, failed_at, failure_reason)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (original_dlq_id) DO NOTHING
                    RETURNING id
                    """,
                    params,
                )
                row = await cur.fetchone()
                if row:
                    return str(row[0])

                await cur.execute(
                    f"SELECT id FROM {FAILED_TABLE} WHERE original_dlq_id = %s",
                    (entry.original_dlq_id,),
                )
                existing = await cur.fetchone()
                if existing is None:
                    raise psycopg.DataError("Failed entry insert returned no row")
                return str(existing[0])

    async def list_failed(self, limit: int) -> list[FailedEntry]:
        rows = await self._fetch(
            f"SELECT {_FAILED_COLUMNS} FROM {FAILED_TABLE} ORDER BY failed_at DESC LIMIT %s",
            (limit,),
        )
        return [_failed_from_row(row) for row in rows]

    async def count_failed(self) -> int:
        return int(await self._scalar(f"SELECT count(*) FROM {FAILED_TABLE}") or 0)

    async def find_failed(self, event_id: str) -> list[FailedEntry]:
        rows = await self._fetch(
            f"""
            SELECT {_FAILED_COLUMNS} FROM {FAILED_TABLE}
            WHERE event_id = %s ORDER BY failed_at DESC
            """,
            (event_id,),
        )
        return [_failed_from_row(row) for row in rows]
