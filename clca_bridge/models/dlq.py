"""
CLCA Bridge - Dead Letter Queue Records

Pending entries (one per failed delivery awaiting retry) and failed entries
(terminal, kept for manual inspection). Both serialize to camelCase JSON so
the stored documents read the same as the ContentDoc they carry.

Lifecycle of a pending entry:
    created on first failure (attempt = 1)
    -> updated in place on each failed retry (attempt += 1, retry_after recomputed)
    -> deleted on success, or moved to the failed store once attempt >= max_retries
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .contentdoc import ContentDoc

FAILURE_MAX_RETRIES = "Max retries exceeded"
FAILURE_NON_RETRYABLE_PREFIX = "non_retryable"


def non_retryable_reason(status_code: int | None) -> str:
    return f"{FAILURE_NON_RETRYABLE_PREFIX}:{status_code if status_code is not None else 'unknown'}"


class _RecordModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """camelCase JSON document for storage (id excluded)."""
        return self.model_dump(by_alias=True, mode="json", exclude={"id"})


class ErrorSnapshot(_RecordModel):
    """Most recent failure of a queued delivery."""

    message: str
    stack: Optional[str] = None
    status_code: Optional[int] = None
    request_id: Optional[str] = None


class DLQContext(_RecordModel):
    event_id: str = Field(..., min_length=1, description="Source record id, for logs and lookup")
    attempt: int = Field(default=1, ge=1)
    max_retries: Optional[int] = Field(default=None, ge=1, description="Defaults to the queue policy")


class DLQEntry(_RecordModel):
    """A pending retry."""

    id: Optional[str] = None
    content_doc: ContentDoc
    error: ErrorSnapshot
    context: DLQContext
    created_at: datetime
    retry_after: datetime
    last_attempt_at: Optional[datetime] = None


class FailedEntry(_RecordModel):
    """A delivery that will not be retried automatically."""

    id: Optional[str] = None
    content_doc: ContentDoc
    error: ErrorSnapshot
    context: DLQContext
    created_at: datetime
    retry_after: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    failed_at: datetime
    failure_reason: str
    original_dlq_id: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: DLQEntry, failed_at: datetime, reason: str) -> "FailedEntry":
        return cls(
            content_doc=entry.content_doc,
            error=entry.error,
            context=entry.context,
            created_at=entry.created_at,
            retry_after=entry.retry_after,
            last_attempt_at=entry.last_attempt_at,
            failed_at=failed_at,
            failure_reason=reason,
            original_dlq_id=entry.id,
        )


@dataclass
class DLQStats:
    total_items: int = 0
    ready_for_retry: int = 0
    pending_retry: int = 0
    average_attempts: float = 0.0
    failed_items: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DLQProcessResult:
    """Outcome counts of one process_dlq() run."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
