"""
Retrieval pipeline tests against scripted providers.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from knowledge_search.core import config
from knowledge_search.core.context import RequestContext
from knowledge_search.core.errors import (
    ConfigurationError,
    DeadlineExceeded,
    PartialFailure,
    UpstreamUnavailable,
    ValidationError,
)
from knowledge_search.core.search_service import RetrievalService, create_search_service, resolve_count
from knowledge_search.vector.embeddings import IEmbeddingProvider
from knowledge_search.vector.index import ISimilarityIndex, enforce_contract
from knowledge_search.vector.store import InMemoryRecordStore
from knowledge_search.vector.types import Match


class RecordingEmbedder(IEmbeddingProvider):
    """Returns a fixed vector and remembers the text it was asked to embed."""

    def __init__(self, error=None):
        self.texts = []
        self.error = error

    async def embed_text(self, text):
        self.texts.append(text)
        if self.error:
            raise self.error
        return [0.1, 0.2, 0.3]

    def get_dimension(self):
        return 3


class ScriptedIndex(ISimilarityIndex):
    """Serves canned matches per pool while honoring the index guarantees."""

    def __init__(self, pools=None, errors=None, delay=0):
        self.pools = pools or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls = []

    async def search(self, pool, vector, threshold, max_count, filters=None, authorization=None):
        self.calls.append({
            "pool": pool,
            "threshold": threshold,
            "max_count": max_count,
            "filters": filters,
            "authorization": authorization,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if pool in self.errors:
            raise self.errors[pool]
        return enforce_contract(list(self.pools.get(pool, [])), threshold, max_count)


def _ctx(**kwargs):
    return RequestContext(kwargs.pop("timeout_sec", 5), authorization="Bearer user", **kwargs)


@pytest.fixture
def quote_pools():
    return {
        "quotes": [
            Match("q1", 0.62, {"quote_text": "Culture eats strategy", "source_author": "Drucker", "topic_tags": ["culture"]}),
            Match("q2", 0.45, {"quote_text": "Move fast", "source_author": "Zuck"}),
            Match("q3", 0.38, {"quote_text": "Below threshold"}),
        ],
        "quotables": [
            Match("k1", 0.71, {"title": "AI Adoption Report", "url": "https://example.com/ai", "quotables": ["AI is a team sport"]}),
            Match("k2", 0.5, {"title": "Board Memo", "google_drive_url": "https://drive/memo", "quotables": ["Start small", "Scale fast"]}),
            Match("k3", 0.2, {"title": "Too far", "quotables": ["never"]}),
        ],
    }


@pytest.fixture
def image_pools():
    return {
        "images": [
            Match("img1", 0.8, {"title": "Quarterly revenue", "description": "Revenue by quarter", "storage_url": None, "chart_type": "bar_chart"}),
            Match("img2", 0.4, {"title": None, "description": "Regional split", "storage_url": "https://storage/img2"}),
            Match("img3", 0.3, {"title": "Noise", "description": "Too weak"}),
        ],
    }


@pytest.fixture
def image_store():
    store = InMemoryRecordStore()
    store.add("images", {
        "id": "img1",
        "title": "Full revenue title",
        "key_insight": "Q4 doubled",
        "google_drive_url": "https://drive/img1",
        "topic_tags": ["finance"],
        "source_attribution": "Annual report",
    })
    store.add("images", {"id": "img2", "title": "Regions", "key_insight": "West leads", "google_drive_url": "https://drive/img2"})
    return store


def test_find_quotes_fuses_both_pools(quote_pools):
    embedder = RecordingEmbedder()
    index = ScriptedIndex(quote_pools)
    service = RetrievalService(embedder, index, InMemoryRecordStore())

    payload = asyncio.run(service.find_quotes("enterprise AI adoption", "board", 5, _ctx()))

    assert "executive leadership C-suite strategic business impact" in embedder.texts[0]
    results = payload["results"]
    assert len(results) == 5
    assert [r["id"] for r in results] == ["k1-quote-0", "q1", "k2-quote-0", "k2-quote-1", "q2"]
    assert [r["provenance"] for r in results] == ["secondary", "primary", "secondary", "secondary", "primary"]
    assert results[0]["source_title"] == "AI Adoption Report"
    assert results[0]["knowledge_item_id"] == "k1"
    assert results[1]["source_author"] == "Drucker"

    stats = payload["stats"]
    assert stats["total_found"] == 5
    assert stats["per_provenance"] == {"primary": 2, "secondary": 3}
    assert stats["matched"] == {"quotes": 2, "quotables": 3}
    assert stats["hydration"] == "skipped"


def test_find_quotes_pool_parameters(quote_pools):
    index = ScriptedIndex(quote_pools)
    service = RetrievalService(RecordingEmbedder(), index, InMemoryRecordStore())

    asyncio.run(service.find_quotes("growth", count=3, ctx=_ctx()))

    calls = {c["pool"]: c for c in index.calls}
    assert calls["quotes"]["threshold"] == config.QUOTE_MATCH_THRESHOLD
    assert calls["quotes"]["max_count"] == 3
    assert calls["quotables"]["threshold"] == config.QUOTABLE_MATCH_THRESHOLD
    assert calls["quotables"]["max_count"] == config.QUOTABLE_MATCH_COUNT
    assert all(c["authorization"] == "Bearer user" for c in index.calls)


def test_find_quotes_searches_pools_concurrently(quote_pools):
    index = ScriptedIndex(quote_pools, delay=0.2)
    service = RetrievalService(RecordingEmbedder(), index, InMemoryRecordStore())

    async def timed():
        loop = asyncio.get_running_loop()
        begin = loop.time()
        await service.find_quotes("growth", ctx=_ctx())
        return loop.time() - begin

    assert asyncio.run(timed()) < 0.35


def test_find_quotes_default_count(quote_pools):
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(quote_pools), InMemoryRecordStore())

    payload = asyncio.run(service.find_quotes("growth", ctx=_ctx()))

    assert len(payload["results"]) == config.DEFAULT_QUOTE_COUNT


def test_find_quotes_results_sorted_and_above_threshold(quote_pools):
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(quote_pools), InMemoryRecordStore())

    results = asyncio.run(service.find_quotes("growth", count=50, ctx=_ctx()))["results"]

    scores = [r["similarity"] for r in results]
    assert scores == sorted(scores, reverse=True)
    for r in results:
        floor = config.QUOTE_MATCH_THRESHOLD if r["provenance"] == "primary" else config.QUOTABLE_MATCH_THRESHOLD
        assert r["similarity"] >= floor


def test_find_quotes_is_idempotent(quote_pools):
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(quote_pools), InMemoryRecordStore())

    first = asyncio.run(service.find_quotes("growth", "pitch", 4, _ctx()))
    second = asyncio.run(service.find_quotes("growth", "pitch", 4, _ctx()))

    assert first == second


def test_find_quotes_pool_failure_aborts(quote_pools):
    index = ScriptedIndex(quote_pools, errors={"quotables": UpstreamUnavailable("Similarity search failed for quotables (status 500)")})
    service = RetrievalService(RecordingEmbedder(), index, InMemoryRecordStore())

    with pytest.raises(UpstreamUnavailable, match="quotables"):
        asyncio.run(service.find_quotes("growth", ctx=_ctx()))


def test_embedding_failure_aborts_before_search(quote_pools):
    embedder = RecordingEmbedder(error=UpstreamUnavailable("Failed to generate embedding (status 500)"))
    index = ScriptedIndex(quote_pools)
    service = RetrievalService(embedder, index, InMemoryRecordStore())

    with pytest.raises(UpstreamUnavailable) as exc_info:
        asyncio.run(service.find_quotes("growth", ctx=_ctx()))

    assert exc_info.value.status_code == 500
    assert index.calls == []


def test_deadline_during_search_is_504(quote_pools):
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(quote_pools, delay=1), InMemoryRecordStore())

    with pytest.raises(DeadlineExceeded) as exc_info:
        asyncio.run(service.find_quotes("growth", ctx=_ctx(timeout_sec=0.05)))

    assert exc_info.value.status_code == 504


def test_find_images_augments_and_filters(image_pools, image_store):
    embedder = RecordingEmbedder()
    index = ScriptedIndex(image_pools)
    service = RetrievalService(embedder, index, image_store)

    payload = asyncio.run(service.find_images("revenue growth", "bar_chart", ctx=_ctx()))

    assert embedder.texts == ["revenue growth bar chart chart visualization"]
    assert index.calls[0]["filters"] == {"filter_chart_type": "bar_chart"}
    assert index.calls[0]["threshold"] == config.IMAGE_MATCH_THRESHOLD
    assert index.calls[0]["max_count"] == config.DEFAULT_IMAGE_COUNT
    assert [r["id"] for r in payload["results"]] == ["img1", "img2"]
    assert all(r["similarity"] >= 0.35 for r in payload["results"])


def test_find_images_hydrates_with_match_wins(image_pools, image_store):
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(image_pools), image_store)

    payload = asyncio.run(service.find_images("revenue", ctx=_ctx()))
    first, second = payload["results"]

    assert first["title"] == "Quarterly revenue"
    assert first["key_insight"] == "Q4 doubled"
    assert first["url"] == "https://drive/img1"
    assert first["topics"] == ["finance"]
    assert first["source"] == "Annual report"
    assert second["title"] == "Regions"
    assert second["url"] == "https://storage/img2"
    assert second["use_cases"] == []
    assert payload["stats"]["hydration"] == "complete"
    assert image_store.calls == 1


def test_find_images_hydration_failure_keeps_match_fields(image_pools):
    failing = AsyncMock()
    failing.fetch_many.side_effect = PartialFailure("Detail fetch from images failed (status 503)")
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(image_pools), failing)

    payload = asyncio.run(service.find_images("revenue", ctx=_ctx()))
    first, second = payload["results"]

    assert len(payload["results"]) == 2
    assert first["title"] == "Quarterly revenue"
    assert first["description"] == "Revenue by quarter"
    assert "key_insight" not in first
    assert second["title"] == "Untitled"
    assert payload["stats"]["hydration"] == "partial"


def test_find_images_unexpected_store_error_keeps_results(image_pools):
    broken = AsyncMock()
    broken.fetch_many.side_effect = RuntimeError("connection pool exhausted")
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex(image_pools), broken)

    payload = asyncio.run(service.find_images("revenue", ctx=_ctx()))

    assert [r["id"] for r in payload["results"]] == ["img1", "img2"]
    assert payload["stats"]["hydration"] == "partial"


def test_find_images_no_matches_is_empty_success(image_store):
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex({}), image_store)

    payload = asyncio.run(service.find_images("nothing here", ctx=_ctx()))

    assert payload["results"] == []
    assert payload["stats"]["total_found"] == 0
    assert payload["stats"]["hydration"] == "skipped"
    assert image_store.calls == 0


def test_search_knowledge_uses_status_filter():
    index = ScriptedIndex({"knowledge": [Match("k1", 0.9, {"title": "Playbook", "summary": None})]})
    store = InMemoryRecordStore()
    store.add("knowledge_items", {"id": "k1", "title": "Stored", "summary": "How we sell", "content": "long body"})
    service = RetrievalService(RecordingEmbedder(), index, store)

    payload = asyncio.run(service.search_knowledge("sales playbook", ctx=_ctx()))

    call = index.calls[0]
    assert call["filters"] == {"filter_status": config.KNOWLEDGE_FILTER_STATUS}
    assert call["threshold"] == config.KNOWLEDGE_MATCH_THRESHOLD
    assert call["max_count"] == config.DEFAULT_KNOWLEDGE_COUNT
    result = payload["results"][0]
    assert result["title"] == "Playbook"
    assert result["summary"] == "How we sell"
    assert "content" not in result


def test_find_sources_builds_context():
    index = ScriptedIndex({"knowledge": [
        Match("k1", 0.55, {"title": "Churn Study"}),
        Match("k2", 0.35, {"title": "Pricing Notes"}),
        Match("k3", 0.1, {"title": "Unrelated"}),
    ]})
    store = InMemoryRecordStore()
    store.add("knowledge_items", {"id": "k1", "title": "Churn Study", "content": "Customers leave when...", "url": "https://example.com/churn"})
    store.add("knowledge_items", {"id": "k2", "title": "Pricing Notes", "summary": "Price tiers", "content": None})
    service = RetrievalService(RecordingEmbedder(), index, store)

    payload = asyncio.run(service.find_sources("Why do customers churn?", ctx=_ctx()))

    count, threshold = config.SOURCE_MODES["standard"]
    assert index.calls[0]["threshold"] == threshold
    assert index.calls[0]["max_count"] == count
    assert [r["id"] for r in payload["results"]] == ["k1", "k2"]
    assert payload["results"][0]["has_full_content"] is True
    assert payload["results"][0]["url"] == "https://example.com/churn"
    assert payload["results"][1]["has_full_content"] is False
    assert payload["stats"]["with_full_content"] == 1
    assert payload["stats"]["total_searched"] == 2
    assert payload["source_mapping"] == ['[1] = "Churn Study"', '[2] = "Pricing Notes"']
    assert "Customers leave when..." in payload["context"]


def test_find_sources_rejects_unknown_mode():
    service = RetrievalService(RecordingEmbedder(), ScriptedIndex({}), InMemoryRecordStore())

    with pytest.raises(ValidationError, match="Mode"):
        asyncio.run(service.find_sources("question", "exhaustive", _ctx()))


@pytest.mark.parametrize("method,kwargs", [
    ("find_quotes", {"query": "  "}),
    ("find_images", {"query": None, "chart_type": "bar_chart", "count": 3}),
    ("search_knowledge", {"query": ""}),
    ("find_sources", {"question": None}),
])
def test_missing_query_is_validation_error(method, kwargs):
    embedder = RecordingEmbedder()
    service = RetrievalService(embedder, ScriptedIndex({}), InMemoryRecordStore())

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(getattr(service, method)(**kwargs))

    assert exc_info.value.status_code == 400
    assert embedder.texts == []


def test_resolve_count():
    assert resolve_count(None, 5) == 5
    assert resolve_count(3, 5) == 3
    assert resolve_count(config.MAX_RESULT_COUNT + 100, 5) == config.MAX_RESULT_COUNT


@pytest.mark.parametrize("count", [0, -1, True, 2.5, "3"])
def test_resolve_count_rejects_invalid(count):
    with pytest.raises(ValidationError):
        resolve_count(count, 5)


def test_create_search_service_requires_credentials(monkeypatch):
    monkeypatch.setattr(config, "EMBED_PROVIDER", "google")
    monkeypatch.setattr(config, "GOOGLE_API_KEY", None)

    with pytest.raises(ConfigurationError, match="GOOGLE_API_KEY not configured"):
        create_search_service()


def test_create_search_service_dev_backends(monkeypatch):
    monkeypatch.setattr(config, "EMBED_PROVIDER", "hash")
    monkeypatch.setattr(config, "INDEX_PROVIDER", "memory")

    service = create_search_service()

    payload = asyncio.run(service.find_quotes("anything", ctx=_ctx()))
    assert payload["results"] == []
