"""Reference-knowledge retrieval for templates that ask for it.

The vector index itself lives elsewhere; this module talks to it through
the :class:`VectorSearchService` protocol.  :class:`HttpVectorSearch` is the
default, a small httpx client for a ``POST /search`` endpoint.

:class:`ContextRetriever` applies the template's threshold and chunk limit
and bounds the call with a timeout.  Every failure surfaces as
:class:`~radscribe.errors.RetrievalUnavailable`; the orchestrator decides
what to do about it (it carries on without context).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx
from pydantic import TypeAdapter

from radscribe.errors import RetrievalUnavailable
from radscribe.models import RetrievalConfig, RetrievedChunk

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

_CHUNKS = TypeAdapter(list[RetrievedChunk])


class VectorSearchService(Protocol):
    async def search(
        self, query: str, org_scope: str, threshold: float, limit: int
    ) -> list[RetrievedChunk]: ...


class HttpVectorSearch:
    """Vector search over HTTP.

    Request body: ``{query, org_scope, threshold, limit}``.
    Response body: ``{"chunks": [{text, source, similarity_score, title?}, ...]}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout = timeout
        self._transport = transport

    async def search(
        self, query: str, org_scope: str, threshold: float, limit: int
    ) -> list[RetrievedChunk]:
        payload = {"query": query, "org_scope": org_scope, "threshold": threshold, "limit": limit}
        async with httpx.AsyncClient(
            timeout=self._timeout, headers=self._headers, transport=self._transport
        ) as client:
            resp = await client.post(f"{self.base_url}/search", json=payload)
            resp.raise_for_status()
            body: Any = resp.json()
        raw = body.get("chunks", []) if isinstance(body, dict) else body
        return _CHUNKS.validate_python(raw)


class ContextRetriever:
    def __init__(
        self,
        search: VectorSearchService,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._search = search
        self._timeout = timeout_seconds

    async def retrieve(
        self,
        query_text: str,
        config: RetrievalConfig | None,
        org_scope: str,
    ) -> list[RetrievedChunk]:
        """Chunks scoring above the threshold, best first, at most ``max_chunks``.

        *query_text* must already be redacted.

        Raises:
            RetrievalUnavailable: The search failed, timed out or returned junk.
        """
        if config is None or not config.enabled:
            return []

        try:
            chunks = await asyncio.wait_for(
                self._search.search(
                    query_text, org_scope, config.similarity_threshold, config.max_chunks
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RetrievalUnavailable(
                f"Vector search timed out after {self._timeout:g}s"
            ) from exc
        except Exception as exc:
            raise RetrievalUnavailable(f"Vector search failed: {type(exc).__name__}") from exc

        kept = [c for c in chunks if c.similarity_score > config.similarity_threshold]
        kept.sort(key=lambda c: c.similarity_score, reverse=True)
        kept = kept[: config.max_chunks]
        logger.debug(
            "Retrieved %d/%d chunks above %.2f",
            len(kept),
            len(chunks),
            config.similarity_threshold,
        )
        return kept
