"""
Retrieval pipelines: augment -> embed -> similarity search -> fuse -> hydrate -> respond.

One RetrievalService is built per process. It holds no per-request state; every
call receives its own RequestContext carrying the deadline, cancellation and
the caller's bearer credential.
"""

import time
from typing import Any, Dict, List, Optional

from . import config
from .augment import augment_image_query, augment_quote_query, chart_type_filter, require_query
from .context import RequestContext, new_context
from .errors import UpstreamMalformed, UpstreamUnavailable, ValidationError
from .fusion import flatten_quotables, fuse, fuse_single_pool, quote_fields, to_candidates
from .hydrator import HYDRATION_SKIPPED, DetailHydrator, merge_fields, resolve
from .response import build_payload, build_stats, shape_result
from .sources import build_source_context
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import ISimilarityIndex
from ..vector.store import IRecordStore
from ..vector.types import Match, Provenance
from util.logging import logger

KNOWLEDGE_TABLE = "knowledge_items"
IMAGES_TABLE = "images"

KNOWLEDGE_FIELDS = ["title", "summary", "dain_context", "url", "google_drive_url", "quotables", "industries", "status"]
KNOWLEDGE_COLUMNS = "id," + ",".join(KNOWLEDGE_FIELDS)
SOURCE_FIELDS = ["title", "summary", "dain_context", "url", "google_drive_url", "quotables"]
SOURCE_COLUMNS = "id," + ",".join(SOURCE_FIELDS) + ",content"
IMAGE_FIELDS = [
    "description",
    "key_insight",
    "chart_type",
    "data_points",
    "trends_and_patterns",
    "dain_context",
    "google_drive_url",
    "storage_url",
    "knowledge_item_id",
]


def resolve_count(count: Any, default: int) -> int:
    """Apply the default for a missing count, reject non-positive counts and clamp to the maximum."""
    if count is None:
        return default
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError("Count must be an integer")
    if count < 1:
        raise ValidationError("Count must be greater than zero")
    return config.clamp_count(count)


class RetrievalService:
    """Semantic retrieval over quotes, images and knowledge items."""

    def __init__(self, embedder: IEmbeddingProvider, index: ISimilarityIndex, store: IRecordStore):
        self.embedder = embedder
        self.index = index
        self.hydrator = DetailHydrator(store)

    async def _embed(self, text: str, ctx: RequestContext) -> List[float]:
        try:
            return await ctx.run("embedding", lambda: self.embedder.embed_text(text))
        except (UpstreamUnavailable, UpstreamMalformed) as e:
            logger.log_upstream_failure("embedding", e, max_attempts=ctx.retry_attempts)
            raise

    async def _search(
        self,
        pool: str,
        vector: List[float],
        threshold: float,
        max_count: int,
        ctx: RequestContext,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Match]:
        start = time.perf_counter()
        try:
            matches = await ctx.run(
                f"search.{pool}",
                lambda: self.index.search(pool, vector, threshold, max_count, filters, ctx.authorization),
            )
        except (UpstreamUnavailable, UpstreamMalformed) as e:
            logger.log_upstream_failure(f"search.{pool}", e, max_attempts=ctx.retry_attempts)
            raise

        logger.log_search_leg(pool, threshold, max_count, len(matches), (time.perf_counter() - start) * 1000)
        return matches

    async def search_knowledge(self, query: str, count: Optional[int] = None, ctx: Optional[RequestContext] = None) -> Dict[str, Any]:
        """Generic search over the curated knowledge library."""
        query = require_query(query)
        count = resolve_count(count, config.DEFAULT_KNOWLEDGE_COUNT)
        ctx = ctx or new_context()
        logger.log_request("knowledge", query, {"count": count})

        vector = await self._embed(query, ctx)
        matches = await self._search(
            "knowledge",
            vector,
            config.KNOWLEDGE_MATCH_THRESHOLD,
            count,
            ctx,
            filters={"filter_status": config.KNOWLEDGE_FILTER_STATUS or None},
        )

        fused = fuse_single_pool(to_candidates(matches, "knowledge"), count)
        logger.log_fusion("knowledge", {"knowledge": len(matches)}, len(fused), count)

        records, hydration = await self.hydrator.hydrate(KNOWLEDGE_TABLE, [c.id for c in fused], ctx, KNOWLEDGE_COLUMNS)

        results = [
            shape_result(c, merge_fields(c.fields, records.get(c.id), KNOWLEDGE_FIELDS))
            for c in fused
        ]
        return build_payload(results, build_stats(fused, {"knowledge": len(matches)}, hydration))

    async def find_quotes(
        self,
        query: str,
        context: Optional[str] = "any",
        count: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Quotes from the curated pool fused with quotable fragments of matched knowledge items."""
        query = require_query(query)
        count = resolve_count(count, config.DEFAULT_QUOTE_COUNT)
        ctx = ctx or new_context()
        search_query = augment_quote_query(query, context)
        logger.log_request("quotes", search_query, {"context": context, "count": count})

        vector = await self._embed(search_query, ctx)
        curated, items = await ctx.gather(
            self._search("quotes", vector, config.QUOTE_MATCH_THRESHOLD, count, ctx),
            self._search("quotables", vector, config.QUOTABLE_MATCH_THRESHOLD, config.QUOTABLE_MATCH_COUNT, ctx),
        )

        primary = to_candidates(curated, "quotes", Provenance.PRIMARY)
        secondary = flatten_quotables(items, "quotables")
        fused = fuse(primary, secondary, count=count)

        matched = {"quotes": len(primary), "quotables": len(secondary)}
        logger.log_fusion("quotes", matched, len(fused), count)

        results = [shape_result(c, quote_fields(c)) for c in fused]
        return build_payload(results, build_stats(fused, matched, HYDRATION_SKIPPED))

    async def find_images(
        self,
        query: str,
        chart_type: Optional[str] = "any",
        count: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Chart and infographic images, optionally restricted to one chart type."""
        query = require_query(query)
        count = resolve_count(count, config.DEFAULT_IMAGE_COUNT)
        ctx = ctx or new_context()
        search_query = augment_image_query(query, chart_type)
        logger.log_request("images", search_query, {"chart_type": chart_type, "count": count})

        vector = await self._embed(search_query, ctx)
        matches = await self._search(
            "images",
            vector,
            config.IMAGE_MATCH_THRESHOLD,
            count,
            ctx,
            filters={"filter_chart_type": chart_type_filter(chart_type)},
        )

        fused = fuse_single_pool(to_candidates(matches, "images"), count)
        logger.log_fusion("images", {"images": len(matches)}, len(fused), count)

        records, hydration = await self.hydrator.hydrate(IMAGES_TABLE, [c.id for c in fused], ctx)

        results = []
        for c in fused:
            record = records.get(c.id)
            fields = {"title": resolve(c.fields, record, ["title"]) or "Untitled"}
            fields.update(merge_fields(c.fields, record, IMAGE_FIELDS))
            fields["topics"] = resolve(c.fields, record, ["topic_tags"]) or []
            fields["use_cases"] = resolve(c.fields, record, ["use_cases"]) or []
            fields["source"] = resolve(c.fields, record, ["source_attribution"])
            fields["url"] = resolve(c.fields, record, ["storage_url"], ["google_drive_url", "storage_url"])
            results.append(shape_result(c, fields))

        return build_payload(results, build_stats(fused, {"images": len(matches)}, hydration))

    async def find_sources(
        self,
        question: str,
        mode: Optional[str] = "standard",
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Knowledge sources for answering a question, with a numbered context block."""
        question = require_query(question, field="question")
        mode = mode or "standard"
        source_mode = config.get_source_mode(mode)
        if source_mode is None:
            raise ValidationError(f"Mode must be one of: {sorted(config.SOURCE_MODES)}")
        match_count, threshold = source_mode
        ctx = ctx or new_context()
        logger.log_request("sources", question, {"mode": mode})

        vector = await self._embed(question, ctx)
        matches = await self._search("knowledge", vector, threshold, match_count, ctx)

        fused = fuse_single_pool(to_candidates(matches, "knowledge"), match_count)
        logger.log_fusion("sources", {"knowledge": len(matches)}, len(fused), match_count)

        records, hydration = await self.hydrator.hydrate(KNOWLEDGE_TABLE, [c.id for c in fused], ctx, SOURCE_COLUMNS)

        results = []
        context_sources = []
        for c in fused:
            record = records.get(c.id)
            merged = merge_fields(c.fields, record, SOURCE_FIELDS)
            content = resolve({}, record, [], ["content"])
            context_sources.append(dict(merged, content=content, similarity=c.score))

            results.append(shape_result(c, {
                "title": merged.get("title"),
                "summary": merged.get("summary"),
                "url": merged.get("url") or merged.get("google_drive_url"),
                "has_full_content": bool(content),
            }))

        source_context = build_source_context(context_sources, mode)
        stats = build_stats(fused, {"knowledge": len(matches)}, hydration, extra={
            "total_searched": len(fused),
            "with_full_content": sum(1 for r in results if r["has_full_content"]),
        })
        return build_payload(results, stats, context=source_context.text, source_mapping=source_context.mapping)


def create_search_service(http_client=None) -> RetrievalService:
    """Build the service from configuration. Raises ConfigurationError when misconfigured."""
    config.require_valid_config()
    return RetrievalService(
        embedder=config.get_embedding_provider(http_client),
        index=config.get_similarity_index(http_client),
        store=config.get_record_store(http_client),
    )
