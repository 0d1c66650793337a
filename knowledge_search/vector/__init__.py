"""
Boundary adapters for the remote embedding provider, similarity index and record store.
"""

from .types import VectorRecord, Match, Candidate, Provenance
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, GoogleEmbeddingClient
from .index import ISimilarityIndex, InMemorySimilarityIndex, SupabaseSimilarityIndex
from .store import IRecordStore, InMemoryRecordStore, SupabaseRecordStore

__all__ = [
    'VectorRecord',
    'Match',
    'Candidate',
    'Provenance',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'GoogleEmbeddingClient',
    'ISimilarityIndex',
    'InMemorySimilarityIndex',
    'SupabaseSimilarityIndex',
    'IRecordStore',
    'InMemoryRecordStore',
    'SupabaseRecordStore',
]
