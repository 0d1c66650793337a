"""
Similarity index boundary.
Given a query vector, return scored neighbors from one pool above a threshold.
"""

from abc import ABC, abstractmethod
import json
from typing import Any, Dict, List, Optional

import httpx
import numpy as np

from .types import Match, VectorRecord
from ..core.errors import UpstreamMalformed, UpstreamUnavailable
from util.logging import logger

# Pool name -> backend RPC function
POOL_RPC = {
    "quotes": "match_quotes",
    "quotables": "match_knowledge",
    "knowledge": "match_knowledge",
    "images": "match_images",
}

# Pools served by another pool's records
POOL_ALIASES = {
    "quotables": "knowledge",
}

# RPC filter parameter -> record field it restricts
FILTER_FIELDS = {
    "filter_chart_type": "chart_type",
    "filter_status": "status",
}


def enforce_contract(matches: List[Match], threshold: float, max_count: int) -> List[Match]:
    """Apply the index guarantees: score >= threshold, score descending, at most max_count."""
    kept = [m for m in matches if m.score >= threshold]
    kept.sort(key=lambda m: m.score, reverse=True)
    return kept[:max_count]


class ISimilarityIndex(ABC):
    """Abstract interface for similarity search over named pools."""

    @abstractmethod
    async def search(
        self,
        pool: str,
        vector: List[float],
        threshold: float,
        max_count: int,
        filters: Optional[Dict[str, Any]] = None,
        authorization: Optional[str] = None,
    ) -> List[Match]:
        """Search one pool and return ranked matches honoring the index guarantees."""
        pass


class InMemorySimilarityIndex(ISimilarityIndex):
    """In-memory pools with cosine similarity. Used for development and as a test fake."""

    def __init__(self):
        self._pools = {}  # pool -> {record_id: VectorRecord}
        self._index = {}  # pool -> {record_id: normalized_vector}

    def add(self, pool: str, record: VectorRecord) -> None:
        """Add or replace a single vector record in a pool."""
        self._pools.setdefault(pool, {})[record.id] = record

        vector = np.asarray(record.vector, dtype=float)
        norm = np.linalg.norm(vector)
        self._index.setdefault(pool, {})[record.id] = vector / norm if norm > 0 else vector

    def batch_add(self, pool: str, records: List[VectorRecord]) -> None:
        """Add multiple vector records to a pool."""
        for record in records:
            self.add(pool, record)

    def clear(self) -> None:
        """Clear all pools."""
        self._pools.clear()
        self._index.clear()

    async def search(
        self,
        pool: str,
        vector: List[float],
        threshold: float,
        max_count: int,
        filters: Optional[Dict[str, Any]] = None,
        authorization: Optional[str] = None,
    ) -> List[Match]:
        """Search for similar vectors and return ranked results."""
        pool = POOL_ALIASES.get(pool, pool)
        stored = self._index.get(pool, {})
        if not stored:
            return []

        query = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        query = query / norm

        matches = []
        for record_id, stored_vector in stored.items():
            record = self._pools[pool][record_id]
            if not _passes_filters(record.metadata, filters):
                continue
            score = float(np.dot(query, stored_vector))
            matches.append(Match(id=record_id, score=score, fields=dict(record.metadata)))

        return enforce_contract(matches, threshold, max_count)


def _passes_filters(metadata: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for param, expected in (filters or {}).items():
        if expected is None:
            continue
        value = metadata.get(FILTER_FIELDS.get(param, param))
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class SupabaseSimilarityIndex(ISimilarityIndex):
    """PostgREST RPC adapter for the hosted match_* functions.

    The caller's bearer token is forwarded so row-level security applies.
    """

    def __init__(self, base_url: str, anon_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or "").rstrip("/")
        self._anon_key = anon_key
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, authorization: Optional[str]) -> Dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": authorization or f"Bearer {self._anon_key}",
            "Content-Type": "application/json",
        }

    async def search(
        self,
        pool: str,
        vector: List[float],
        threshold: float,
        max_count: int,
        filters: Optional[Dict[str, Any]] = None,
        authorization: Optional[str] = None,
    ) -> List[Match]:
        rpc = POOL_RPC.get(pool)
        if rpc is None:
            raise ValueError(f"Unknown pool: {pool}")

        payload = {
            "query_embedding": json.dumps(vector),
            "match_threshold": threshold,
            "match_count": max_count,
        }
        for param, value in (filters or {}).items():
            if value is not None:
                payload[param] = value

        try:
            response = await self.http_client.post(
                f"{self.base_url}/rest/v1/rpc/{rpc}",
                json=payload,
                headers=self._headers(authorization),
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Similarity search unreachable for {pool} ({type(e).__name__})") from None

        if not response.is_success:
            logger.error(f"Similarity search error: pool={pool} status={response.status_code} body={response.text[:200]}")
            raise UpstreamUnavailable(f"Similarity search failed for {pool} (status {response.status_code})")

        try:
            rows = response.json()
        except ValueError:
            raise UpstreamMalformed(f"Similarity search for {pool} returned a non-JSON response") from None

        return enforce_contract(_parse_rows(pool, rows), threshold, max_count)


def _parse_rows(pool: str, rows: Any) -> List[Match]:
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise UpstreamMalformed(f"Similarity search for {pool} returned an unexpected shape")

    matches = []
    for row in rows:
        if not isinstance(row, dict) or row.get("id") is None:
            raise UpstreamMalformed(f"Similarity search for {pool} returned a row without an id")
        try:
            score = float(row.get("similarity"))
        except (TypeError, ValueError):
            raise UpstreamMalformed(f"Similarity search for {pool} returned a row without a similarity") from None
        fields = {k: v for k, v in row.items() if k not in ("id", "similarity")}
        matches.append(Match(id=str(row["id"]), score=score, fields=fields))
    return matches
