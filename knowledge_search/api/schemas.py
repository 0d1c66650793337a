"""
Request and response models for the retrieval endpoints.

Required fields are declared optional here so that a missing query reaches the
handler and is reported with the same {"error": ...} body as other validation
failures.
"""

from pydantic import BaseModel, ConfigDict, StrictInt, field_validator
from typing import Any, Dict, List, Optional


class KnowledgeSearchRequest(BaseModel):
    query: Optional[str] = None
    count: Optional[StrictInt] = None


class QuoteSearchRequest(BaseModel):
    query: Optional[str] = None
    context: Optional[str] = "any"
    count: Optional[StrictInt] = None

    @field_validator('context')
    @classmethod
    def context_must_be_lowercase(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class ImageSearchRequest(BaseModel):
    query: Optional[str] = None
    chart_type: Optional[str] = "any"
    count: Optional[StrictInt] = None


class SourceSearchRequest(BaseModel):
    question: Optional[str] = None
    mode: Optional[str] = "standard"


class SearchStats(BaseModel):
    model_config = ConfigDict(extra="allow")

    total_found: int
    per_provenance: Dict[str, int]
    matched: Dict[str, int]
    hydration: str


class SearchResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    results: List[Dict[str, Any]]
    stats: SearchStats


class SourceSearchResponse(SearchResponse):
    context: str
    source_mapping: List[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    embed_provider: str
    index_provider: str
    issues: List[str] = []


class ErrorResponse(BaseModel):
    error: str
    debug: Optional[str] = None
