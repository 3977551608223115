"""
Tests for the CLCA Ingest Client.

HTTP is served by httpx.MockTransport; no network access.
"""

import json
import re
from datetime import datetime, timezone

import httpx
import pytest

from clca_bridge.core.errors import (
    IngestConfigurationError,
    IngestError,
    IngestNetworkError,
    IngestProtocolError,
    IngestTimeoutError,
)
from clca_bridge.services.ingest_client import (
    ClcaIngestClient,
    generate_request_id,
    parse_retry_after,
)

BASE_URL = "https://clca.example.com"


def _client(signer, handler, base_url=BASE_URL):
    transport = httpx.MockTransport(handler)
    return ClcaIngestClient(base_url, signer, http_client=httpx.AsyncClient(transport=transport))


# =============================================================================
# Unit Tests: helpers
# =============================================================================


class TestHelpers:
    def test_request_id_format(self):
        assert re.fullmatch(r"ttg-\d{13}-[a-z0-9]{9}", generate_request_id())

    def test_parse_retry_after_seconds(self):
        assert parse_retry_after("30") == 30.0
        assert parse_retry_after("-5") == 0.0

    def test_parse_retry_after_http_date(self):
        now = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_retry_after("Mon, 19 Oct 2026 12:02:00 GMT", now=now) == 120.0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_parse_retry_after_unreadable(self, value):
        assert parse_retry_after(value) is None


# =============================================================================
# Unit Tests: publish_content
# =============================================================================


class TestPublishContent:
    """Tests for ClcaIngestClient.publish_content."""

    @pytest.mark.asyncio
    async def test_success_sends_signed_request(self, signer, make_doc):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                201, json={"status": "created", "id": "clca-123", "ingestRequestId": "r-1"}
            )

        async with _client(signer, handler, base_url=BASE_URL + "/") as client:
            result = await client.publish_content(make_doc())

        assert result.status == "created"
        assert result.id == "clca-123"
        assert result.ingest_request_id == "r-1"

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/api/ingest/content"
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "TTG-Sync/1.0"

        body = json.loads(request.content)
        assert body["ownerSystem"] == "ttg"
        assert body["originalId"] == "event:42"
        assert "owner_system" not in body

    @pytest.mark.asyncio
    async def test_token_claims_match_request(self, signer, make_doc):
        request_ids: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            request_ids.append(request.headers["X-Request-ID"])
            return httpx.Response(200, json={"status": "updated", "id": "clca-123"})

        async with _client(signer, handler) as client:
            await client.publish_content(make_doc())

        claims = signer.claims[0]
        assert claims["jti"] == request_ids[0]
        assert claims["scope"] == "ingest:content"
        assert claims["issuer"] == "ttg"
        assert claims["aud"] == "clca"
        assert claims["exp"] - claims["iat"] == 300

    @pytest.mark.asyncio
    async def test_server_error_is_retryable_and_carries_details(self, signer, make_doc):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                500,
                json={"message": "boom", "requestId": "clca-req-9"},
                headers={"Retry-After": "120"},
            )

        async with _client(signer, handler) as client:
            with pytest.raises(IngestError) as exc_info:
                await client.publish_content(make_doc())

        error = exc_info.value
        assert error.status_code == 500
        assert error.retry_after == 120.0
        assert error.request_id == "clca-req-9"
        assert error.message == "Ingestion failed: 500 Internal Server Error - boom"
        assert error.retryable

    @pytest.mark.asyncio
    async def test_plain_text_error_body(self, signer, make_doc):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        async with _client(signer, handler) as client:
            with pytest.raises(IngestError) as exc_info:
                await client.publish_content(make_doc())

        assert exc_info.value.message.endswith("- bad gateway")
        assert exc_info.value.request_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, retryable, auth",
        [
            (400, False, False),
            (401, False, True),
            (403, False, True),
            (408, True, False),
            (429, True, False),
            (503, True, False),
        ],
    )
    async def test_status_classification(self, signer, make_doc, status, retryable, auth):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"message": "nope"})

        async with _client(signer, handler) as client:
            with pytest.raises(IngestError) as exc_info:
                await client.publish_content(make_doc())

        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is retryable
        assert exc_info.value.is_auth_error is auth

    @pytest.mark.asyncio
    async def test_timeout(self, signer, make_doc):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(signer, handler) as client:
            with pytest.raises(IngestTimeoutError) as exc_info:
                await client.publish_content(make_doc())

        assert exc_info.value.status_code == 408
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_network_failure(self, signer, make_doc):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(signer, handler) as client:
            with pytest.raises(IngestNetworkError) as exc_info:
                await client.publish_content(make_doc())

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable
        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreadable_success_body(self, signer, make_doc):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>ok</html>")

        async with _client(signer, handler) as client:
            with pytest.raises(IngestProtocolError) as exc_info:
                await client.publish_content(make_doc())

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_not_configured_sends_nothing(self, signer, make_doc):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        async with _client(signer, handler, base_url="") as client:
            assert not client.is_configured()
            with pytest.raises(IngestConfigurationError):
                await client.publish_content(make_doc())

        assert calls == []


# =============================================================================
# Unit Tests: health_check
# =============================================================================


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, signer):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/health"
            assert request.headers["Authorization"] == "Bearer test-token"
            return httpx.Response(200, json={"status": "ok"})

        async with _client(signer, handler) as client:
            status = await client.health_check()

        assert status.healthy
        assert status.status_code == 200
        assert status.latency_ms is not None

    @pytest.mark.asyncio
    async def test_unhealthy_status(self, signer):
        async with _client(signer, lambda request: httpx.Response(503)) as client:
            status = await client.health_check()

        assert status.status == "unhealthy"
        assert status.status_code == 503

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self, signer):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        async with _client(signer, handler) as client:
            status = await client.health_check()

        assert not status.healthy
