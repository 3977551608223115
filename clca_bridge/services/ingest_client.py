"""
CLCA Bridge - Ingest Client

Publishes one ContentDoc to the CLCA ingest endpoint and classifies the
outcome. The client never retries: retry policy belongs to the dead letter
queue, so a failure here is surfaced as exactly one IngestError carrying
everything the queue needs (status, Retry-After, remote request id).

Endpoints:
    POST {base_url}/api/ingest/content   body: ContentDoc (camelCase JSON)
    GET  {base_url}/api/health           operational probe only

Outcome classification:
    201 / 200 with {status, id}     -> IngestResult (created | updated | noop)
    2xx with an unreadable body     -> IngestProtocolError (retryable)
    4xx / 5xx                       -> IngestError(status_code, retry_after, request_id)
    timeout                         -> IngestTimeoutError (408, retryable)
    connection failure              -> IngestNetworkError (retryable)

Usage:
    client = ClcaIngestClient(base_url, HS256TokenSigner(secret))
    result = await client.publish_content(doc)
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Literal, Optional

import httpx
from pydantic import ValidationError

from ..core.errors import (
    IngestConfigurationError,
    IngestError,
    IngestNetworkError,
    IngestProtocolError,
    IngestTimeoutError,
)
from ..core.logging import Timer
from ..core.security import DEFAULT_TOKEN_TTL_SECONDS, TokenSigner, build_ingest_claims
from ..models.contentdoc import ContentDoc, IngestResult

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

INGEST_PATH = "/api/ingest/content"
HEALTH_PATH = "/api/health"
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_HEALTH_TIMEOUT = 5.0
DEFAULT_USER_AGENT = "TTG-Sync/1.0"

_REQUEST_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_request_id() -> str:
    """Request id of the form ttg-<epoch ms>-<9 base36 chars>."""
    suffix = "".join(random.choices(_REQUEST_ID_ALPHABET, k=9))
    return f"ttg-{int(time.time() * 1000)}-{suffix}"


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None for missing or unreadable values; never negative.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


@dataclass
class HealthStatus:
    status: Literal["healthy", "unhealthy"]
    latency_ms: Optional[float] = None
    status_code: Optional[int] = None

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


# =============================================================================
# Client
# =============================================================================


class ClcaIngestClient:
    """Stateless sender for ContentDocs."""

    def __init__(
        self,
        base_url: str,
        signer: TokenSigner,
        *,
        issuer: str = "ttg",
        audience: str = "clca",
        token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.signer = signer
        self.issuer = issuer
        self.audience = audience
        self.token_ttl_seconds = token_ttl_seconds
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.user_agent = user_agent
        self._http = http_client
        self._owns_http = http_client is None

        if not self.base_url:
            logger.warning("CLCA_INGEST_URL not configured - CLCA integration disabled")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def is_configured(self) -> bool:
        # Signers without a `configured` flag (test fakes) are always ready
        return bool(self.base_url) and getattr(self.signer, "configured", True)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "ClcaIngestClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def _bearer_token(self, request_id: str) -> str:
        claims = build_ingest_claims(
            issuer=self.issuer,
            audience=self.audience,
            jti=request_id,
            ttl_seconds=self.token_ttl_seconds,
        )
        return self.signer.sign(claims)

    # -------------------------------------------------------------------------
    # Publish
    # -------------------------------------------------------------------------

    async def publish_content(self, doc: ContentDoc) -> IngestResult:
        """
        Deliver one ContentDoc.

        Raises:
            IngestError: any failure, classified (see module docstring)
        """
        if not self.is_configured():
            raise IngestConfigurationError("CLCA integration not properly configured")

        request_id = generate_request_id()
        timer = Timer()
        with timer:
            try:
                token = self._bearer_token(request_id)
                response = await self._post(doc, token, request_id)
                result = self._parse_result(response)
            except IngestError as e:
                logger.error(
                    "Failed to publish content to CLCA: %s",
                    e.message,
                    extra={
                        "content_doc_id": doc.id,
                        "status_code": e.status_code,
                        "request_id": e.request_id or request_id,
                        "latency_ms": timer.elapsed_ms,
                    },
                )
                raise

        logger.info(
            "Content published to CLCA successfully",
            extra={
                "content_doc_id": doc.id,
                "status": result.status,
                "request_id": result.ingest_request_id or request_id,
                "latency_ms": timer.elapsed_ms,
            },
        )
        return result

    async def _post(self, doc: ContentDoc, token: str, request_id: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Request-ID": request_id,
        }
        try:
            response = await self._client().post(
                f"{self.base_url}{INGEST_PATH}",
                json=doc.to_wire(),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise IngestTimeoutError() from e
        except httpx.HTTPError as e:
            raise IngestNetworkError(f"Network error: {str(e) or type(e).__name__}") from e

        if response.is_success:
            return response
        raise self._error_from_response(response)

    @staticmethod
    def _error_from_response(response: httpx.Response) -> IngestError:
        message = f"Ingestion failed: {response.status_code} {response.reason_phrase}"
        request_id: Optional[str] = None
        body = response.text

        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            message += f" - {data.get('message') or body}"
            raw_request_id = data.get("requestId")
            request_id = str(raw_request_id) if raw_request_id else None
        elif body:
            message += f" - {body}"

        return IngestError(
            message,
            status_code=response.status_code,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            request_id=request_id,
        )

    @staticmethod
    def _parse_result(response: httpx.Response) -> IngestResult:
        try:
            return IngestResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IngestProtocolError(
                f"Invalid ingest response body: {type(e).__name__}",
                status_code=response.status_code,
            ) from e

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def health_check(self) -> HealthStatus:
        """Authenticated GET against the health endpoint. Never raises."""
        if not self.is_configured():
            return HealthStatus(status="unhealthy")

        timer = Timer()
        try:
            with timer:
                request_id = generate_request_id()
                response = await self._client().get(
                    f"{self.base_url}{HEALTH_PATH}",
                    headers={
                        "Authorization": f"Bearer {self._bearer_token(request_id)}",
                        "User-Agent": self.user_agent,
                        "X-Request-ID": request_id,
                    },
                    timeout=self.health_timeout,
                )
        except (httpx.HTTPError, IngestError) as e:
            logger.warning("CLCA health check failed: %s", str(e) or type(e).__name__)
            return HealthStatus(status="unhealthy")

        return HealthStatus(
            status="healthy" if response.is_success else "unhealthy",
            latency_ms=timer.elapsed_ms,
            status_code=response.status_code,
        )
