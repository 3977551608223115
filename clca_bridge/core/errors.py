"""
CLCA Bridge - Error Taxonomy

Structured error classification for the ingestion pipeline.

Categories:
- VALIDATION: ContentDoc failed structural/semantic checks. Never retried,
  never queued; the source record has to be fixed.
- INGEST: delivery to CLCA failed. Carries the HTTP status (if any), the
  Retry-After hint and the remote request id so the exact failure can be
  snapshotted into the dead letter queue.
- AUTH: 401/403 from CLCA, or a token that could not be signed.

Retryability:
    timeout (408), 429, 5xx, network failures, unparseable 2xx bodies -> retryable
    400, 401, 403, other 4xx, missing configuration                    -> terminal
"""

from __future__ import annotations

import traceback
from enum import Enum
from typing import Any

RETRYABLE_STATUS_CODES = frozenset({408, 429})
AUTH_STATUS_CODES = frozenset({401, 403})


class ClcaBridgeError(Exception):
    """Base class for all pipeline errors."""


# =============================================================================
# Validation
# =============================================================================


class ValidationErrorKind(str, Enum):
    """Why a ContentDoc was rejected before transmission."""

    MISSING_FIELD = "missing-field"
    INVALID_OWNER = "invalid-owner"
    EMPTY_FEATURES = "empty-features"
    BAD_TIMESTAMP = "bad-timestamp"
    INVALID_EVENT_FEATURE = "invalid-event-feature"


class ContentDocValidationError(ClcaBridgeError):
    """Raised when a ContentDoc is malformed."""

    def __init__(
        self,
        kind: ValidationErrorKind,
        message: str,
        field: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.field = field

    def __repr__(self) -> str:
        return f"ContentDocValidationError(kind={self.kind.value!r}, field={self.field!r})"


# =============================================================================
# Ingest
# =============================================================================


class IngestError(ClcaBridgeError):
    """
    Delivery to the CLCA ingest endpoint failed.

    Attributes:
        status_code: HTTP status (408 for timeouts, None for network failures)
        retry_after: Minimum delay hint in seconds from the Retry-After header
        request_id: Remote request id from the error body, if present
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.request_id = request_id

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        if self.status_code in RETRYABLE_STATUS_CODES:
            return True
        return self.status_code >= 500

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in AUTH_STATUS_CODES

    def snapshot(self) -> dict[str, Any]:
        """Error fields persisted with a dead letter queue entry."""
        return {
            "message": self.message,
            "stack": format_stack(self),
            "statusCode": self.status_code,
            "requestId": self.request_id,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(status_code={self.status_code!r}, "
            f"request_id={self.request_id!r}, message={self.message!r})"
        )


class IngestTimeoutError(IngestError):
    """The request exceeded its timeout and was aborted."""

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message, status_code=408)


class IngestNetworkError(IngestError):
    """Connection-level failure before any HTTP response was received."""


class IngestProtocolError(IngestError):
    """CLCA answered 2xx but the body was not a valid ingest result."""

    @property
    def retryable(self) -> bool:
        return True


class IngestConfigurationError(IngestError):
    """CLCA_INGEST_URL or CLCA_JWT_SECRET is missing."""

    @property
    def retryable(self) -> bool:
        return False


class TokenSigningError(IngestError):
    """The bearer token could not be produced."""

    @property
    def retryable(self) -> bool:
        return False


# =============================================================================
# Helpers
# =============================================================================


def format_stack(error: BaseException) -> str | None:
    """Render an exception traceback, or None if it was never raised."""
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def error_snapshot(error: BaseException) -> dict[str, Any]:
    """Snapshot any exception in the shape stored on a queue entry."""
    if isinstance(error, IngestError):
        return error.snapshot()
    return {
        "message": str(error) or type(error).__name__,
        "stack": format_stack(error),
        "statusCode": None,
        "requestId": None,
    }
