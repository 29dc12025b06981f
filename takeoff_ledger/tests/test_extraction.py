"""Tests for extraction clients."""

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from takeoff_ledger.extraction import (
    ExtractionError,
    ExtractionKind,
    HttpExtractionClient,
    ProjectDocument,
    StaticExtractionClient,
)
from takeoff_ledger.pipeline import CancellationToken, StageCancelledError


DOC = ProjectDocument(id="doc_1", name="A-101", uri="gs://plans/a-101.pdf", type="architectural")


class TestStaticExtractionClient:
    """Tests for StaticExtractionClient."""

    def test_returns_findings_by_kind(self):
        """Test kinds given as strings or enums."""
        client = StaticExtractionClient({"doc_1": {"text": [{"content": {"text": "a"}}]}})
        assert asyncio.run(client.extract_text(DOC)) == [{"content": {"text": "a"}}]
        assert asyncio.run(client.extract(ExtractionKind.TABLES, DOC)) == []

    def test_raises_configured_error(self):
        """Test an exception payload is raised."""
        client = StaticExtractionClient({"doc_1": {"symbols": ExtractionError("down")}})
        with pytest.raises(ExtractionError, match="down"):
            asyncio.run(client.extract_symbols(DOC))

    def test_vision_page_limit(self):
        """Test max_pages filters vision findings."""
        client = StaticExtractionClient({
            "doc_1": {"vision": [{"pageNumber": 1}, {"pageNumber": 60}]}
        })
        assert asyncio.run(client.analyze_vision(DOC, max_pages=50)) == [{"pageNumber": 1}]

    def test_cancelled_token(self):
        """Test a cancelled token stops extraction."""
        token = CancellationToken()
        token.cancel("user abort")
        with pytest.raises(StageCancelledError):
            asyncio.run(StaticExtractionClient().extract_text(DOC, token))


class TestHttpExtractionClient:
    """Tests for HttpExtractionClient against a mock transport."""

    def test_posts_request(self):
        """Test request shape and parsed items."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"items": [{"pageNumber": 2}]})

        async def scenario():
            async with HttpExtractionClient(
                "https://extract.example.com/", api_key="k-1", transport=httpx.MockTransport(handler)
            ) as client:
                return await client.analyze_vision(DOC, CancellationToken(timeout_s=30), max_pages=5)

        items = asyncio.run(scenario())

        assert items == [{"pageNumber": 2}]
        assert seen["path"] == "/extract"
        assert seen["auth"] == "Bearer k-1"
        assert seen["body"]["kind"] == "vision"
        assert seen["body"]["document"]["id"] == "doc_1"
        assert seen["body"]["options"] == {"max_pages": 5}

    def test_client_error_not_retried(self):
        """Test 4xx responses raise immediately."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"detail": "unsupported document"})

        client = HttpExtractionClient("https://extract.example.com", transport=httpx.MockTransport(handler))
        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(client.extract_tables(DOC))
        assert exc_info.value.status_code == 400
        assert len(calls) == 1

    def test_missing_items(self):
        """Test responses without an items list are rejected."""
        client = HttpExtractionClient(
            "https://extract.example.com",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": []})),
        )
        with pytest.raises(ExtractionError, match="items"):
            asyncio.run(client.extract_text(DOC))

    def test_no_auth_header_without_key(self):
        """Test headers without an API key."""
        client = HttpExtractionClient("https://extract.example.com")
        assert "Authorization" not in client._get_headers()

    def test_request_timeout_follows_token_deadline(self):
        """Test the per-request timeout is capped by the token, even at zero."""
        seen = []

        def handler(request):
            seen.append(request.extensions["timeout"]["read"])
            return httpx.Response(200, json={"items": []})

        client = HttpExtractionClient(
            "https://extract.example.com", timeout=120.0, transport=httpx.MockTransport(handler)
        )
        expiring = MagicMock(spec=CancellationToken)
        expiring.remaining.return_value = 0.0

        async def scenario():
            async with client:
                await client.extract_text(DOC, CancellationToken(timeout_s=30))
                await client.extract_text(DOC, expiring)

        asyncio.run(scenario())

        assert 0 < seen[0] <= 30
        assert seen[1] == 0.0
