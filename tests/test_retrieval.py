"""Tests for knowledge retrieval: filtering, ordering, timeouts and failures."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from conftest import FakeSearch

from radscribe.errors import RetrievalUnavailable
from radscribe.models import RetrievalConfig, RetrievedChunk
from radscribe.stages.retrieval import ContextRetriever, HttpVectorSearch


def _chunk(score: float, source: str = "acr-guideline") -> RetrievedChunk:
    return RetrievedChunk(text=f"text {score}", source=source, similarity_score=score)


_ENABLED = RetrievalConfig(enabled=True, similarity_threshold=0.7, max_chunks=2)


class TestContextRetriever:
    @pytest.mark.asyncio
    async def test_filters_sorts_and_truncates(self) -> None:
        search = FakeSearch([_chunk(0.72), _chunk(0.5), _chunk(0.95), _chunk(0.8), _chunk(0.7)])
        chunks = await ContextRetriever(search).retrieve("query", _ENABLED, "org-1")
        assert [c.similarity_score for c in chunks] == [0.95, 0.8]

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(self) -> None:
        search = FakeSearch([_chunk(0.7)])
        assert await ContextRetriever(search).retrieve("q", _ENABLED, "org-1") == []

    @pytest.mark.asyncio
    async def test_disabled_config_skips_search(self) -> None:
        search = FakeSearch([_chunk(0.9)])
        chunks = await ContextRetriever(search).retrieve("q", RetrievalConfig(), "org-1")
        assert chunks == []
        assert search.queries == []

    @pytest.mark.asyncio
    async def test_search_error_becomes_retrieval_unavailable(self) -> None:
        search = FakeSearch(error=httpx.ConnectError("refused"))
        with pytest.raises(RetrievalUnavailable):
            await ContextRetriever(search).retrieve("q", _ENABLED, "org-1")

    @pytest.mark.asyncio
    async def test_timeout_becomes_retrieval_unavailable(self) -> None:
        class SlowSearch:
            async def search(self, query, org_scope, threshold, limit):  # type: ignore[no-untyped-def]
                await asyncio.sleep(1)
                return []

        retriever = ContextRetriever(SlowSearch(), timeout_seconds=0.01)
        with pytest.raises(RetrievalUnavailable, match="timed out"):
            await retriever.retrieve("q", _ENABLED, "org-1")


class TestHttpVectorSearch:
    @pytest.mark.asyncio
    async def test_posts_query_and_parses_chunks(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"chunks": [{"text": "t", "source": "s", "similarity_score": 0.9}]},
            )

        search = HttpVectorSearch(
            "https://kb.example/", "secret", transport=httpx.MockTransport(handler)
        )
        chunks = await search.search("[PATIENT_NAME] knee pain", "org-1", 0.7, 5)

        assert chunks == [RetrievedChunk(text="t", source="s", similarity_score=0.9)]
        assert seen["url"] == "https://kb.example/search"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {
            "query": "[PATIENT_NAME] knee pain",
            "org_scope": "org-1",
            "threshold": 0.7,
            "limit": 5,
        }

    @pytest.mark.asyncio
    async def test_server_error_surfaces_through_retriever(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        search = HttpVectorSearch("https://kb.example", transport=transport)
        with pytest.raises(RetrievalUnavailable):
            await ContextRetriever(search).retrieve("q", _ENABLED, "org-1")

    @pytest.mark.asyncio
    async def test_malformed_body_surfaces_through_retriever(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"chunks": [{"text": "no score"}]})
        )
        search = HttpVectorSearch("https://kb.example", transport=transport)
        with pytest.raises(RetrievalUnavailable):
            await ContextRetriever(search).retrieve("q", _ENABLED, "org-1")
