"""
Boundary to the external extraction service.

The service turns a source document into raw text, table, symbol,
dimension and vision findings. Each finding is a plain mapping:

    {"pageNumber": 3, "confidence": 0.9, "content": {...},
     "metadata": {...}, "boundingBox": {...}, "evidenceType": "schedule"}

which the EvidenceCollection stage validates into ``Evidence``.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..pipeline.stage import CancellationToken

logger = logging.getLogger(__name__)


class ExtractionKind(str, Enum):
    TEXT = "text"
    TABLES = "tables"
    SYMBOLS = "symbols"
    DIMENSIONS = "dimensions"
    VISION = "vision"


class ProjectDocument(BaseModel):
    """Descriptor of a source document handed to the first stage."""

    id: str = Field(..., min_length=1)
    name: str
    uri: str
    type: str = Field(default="general", description="architectural, structural, ...")


class ExtractionError(Exception):
    """Base exception for extraction service errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionRateLimitError(ExtractionError):
    """Raised when the extraction service rate limits us."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ExtractionClient(ABC):
    """Source of raw findings for a document."""

    @abstractmethod
    async def extract(
        self,
        kind: ExtractionKind,
        document: ProjectDocument,
        token: Optional[CancellationToken] = None,
        **options: Any,
    ) -> list[dict[str, Any]]:
        """Return raw findings of ``kind`` for ``document``."""
        pass

    async def extract_text(self, document, token=None) -> list[dict[str, Any]]:
        return await self.extract(ExtractionKind.TEXT, document, token)

    async def extract_tables(self, document, token=None) -> list[dict[str, Any]]:
        return await self.extract(ExtractionKind.TABLES, document, token)

    async def extract_symbols(self, document, token=None) -> list[dict[str, Any]]:
        return await self.extract(ExtractionKind.SYMBOLS, document, token)

    async def extract_dimensions(self, document, token=None) -> list[dict[str, Any]]:
        return await self.extract(ExtractionKind.DIMENSIONS, document, token)

    async def analyze_vision(
        self, document, token=None, max_pages: Optional[int] = None
    ) -> list[dict[str, Any]]:
        return await self.extract(ExtractionKind.VISION, document, token, max_pages=max_pages)

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "ExtractionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class StaticExtractionClient(ExtractionClient):
    """
    Serves precomputed findings.

    ``payloads`` maps document id to ``{kind: [finding, ...]}``; kinds may be
    given as ``ExtractionKind`` or their string values. A finding list that is
    an exception instance is raised instead, which lets callers simulate a
    failing sub-task.
    """

    def __init__(self, payloads: Optional[dict[str, dict[str, Any]]] = None):
        self._payloads: dict[str, dict[str, Any]] = {}
        for doc_id, by_kind in (payloads or {}).items():
            self.add_document(doc_id, by_kind)

    def add_document(self, doc_id: str, by_kind: dict[str, Any]) -> None:
        self._payloads[doc_id] = {ExtractionKind(k).value: v for k, v in by_kind.items()}

    async def extract(self, kind, document, token=None, **options):
        if token is not None:
            token.raise_if_cancelled()

        findings = self._payloads.get(document.id, {}).get(ExtractionKind(kind).value, [])
        if isinstance(findings, Exception):
            raise findings

        max_pages = options.get("max_pages")
        if max_pages:
            findings = [f for f in findings if f.get("pageNumber", f.get("page_number", 1)) <= max_pages]
        return list(findings)


def _log_retry(retry_state) -> None:
    logger.warning(f"Retrying extraction request after {retry_state.outcome.exception()}")


class HttpExtractionClient(ExtractionClient):
    """Client for a remote extraction service speaking JSON over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _handle_response_error(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise ExtractionRateLimitError(
                "Rate limited by extraction service",
                retry_after=int(retry_after) if retry_after else None,
            )
        elif response.status_code >= 400:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            raise ExtractionError(
                f"Extraction service error: {error_detail}",
                status_code=response.status_code,
            )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, ExtractionRateLimitError)),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any], timeout: Optional[float]) -> dict[str, Any]:
        response = await self.client.post(
            "/extract",
            json=payload,
            timeout=httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        self._handle_response_error(response)
        return response.json()

    async def extract(self, kind, document, token=None, **options):
        if token is not None:
            token.raise_if_cancelled()

        remaining = token.remaining() if token is not None else None
        timeout = min(self.timeout, remaining) if remaining is not None else None

        payload = {
            "kind": ExtractionKind(kind).value,
            "document": document.model_dump(),
            "options": {k: v for k, v in options.items() if v is not None},
        }
        data = await self._post(payload, timeout)

        if token is not None:
            token.raise_if_cancelled()

        items = data.get("items")
        if not isinstance(items, list):
            raise ExtractionError("Extraction service response has no 'items' list")
        return items
