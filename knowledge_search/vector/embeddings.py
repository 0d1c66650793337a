"""
Embedding providers: the remote Google embedding API and a deterministic local fallback.
"""

from abc import ABC, abstractmethod
import hashlib
import re
from typing import List, Optional

import httpx
import numpy as np

from ..core.errors import ConfigurationError, UpstreamMalformed, UpstreamUnavailable
from util.logging import logger


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for development and tests.

    Each lower-cased token is hashed into one of ``dimension`` buckets and the
    bucket counts are L2-normalized, so texts sharing words land close together
    without requiring an external model.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    async def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector from token hashes."""
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension)
        for token in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(token.encode()).hexdigest()
            vector[int(digest[:8], 16) % self.dimension] += 1.0

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class GoogleEmbeddingClient(IEmbeddingProvider):
    """Google Generative Language ``embedContent`` client.

    Issues exactly one request per call and performs no retries itself; the
    retry policy lives in the request context. The API key travels in the
    ``x-goog-api-key`` header so it never appears in URLs or error text.
    """

    def __init__(
        self,
        api_key: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        model: str = "text-embedding-004",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        task_type: Optional[str] = "RETRIEVAL_QUERY",
        dimension: int = 768,
    ):
        if not api_key:
            raise ConfigurationError("GOOGLE_API_KEY not configured")

        self._api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.task_type = task_type
        self.dimension = dimension
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

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using the remote model."""
        url = f"{self.api_base}/models/{self.model}:embedContent"
        body = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
        }
        if self.task_type:
            body["taskType"] = self.task_type

        try:
            response = await self.http_client.post(
                url,
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Embedding provider unreachable ({type(e).__name__})") from None

        if not response.is_success:
            logger.error(f"Embedding API error: status={response.status_code} body={response.text[:200]}")
            raise UpstreamUnavailable(f"Failed to generate embedding (status {response.status_code})")

        try:
            data = response.json()
        except ValueError:
            raise UpstreamMalformed("Embedding provider returned a non-JSON response") from None

        embedding = data.get("embedding") if isinstance(data, dict) else None
        values = embedding.get("values") if isinstance(embedding, dict) else None
        if not isinstance(values, list) or not values:
            raise UpstreamMalformed("No embedding returned")

        try:
            return [float(v) for v in values]
        except (TypeError, ValueError):
            raise UpstreamMalformed("Embedding contains non-numeric values") from None

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension
