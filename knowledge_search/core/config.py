"""
Retrieval service configuration.
All settings come from the environment (optionally a .env file) and are read once at import.
"""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()

# Debug flag exposes exception detail in 500 responses
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Provider selection
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "google")  # google|hash
INDEX_PROVIDER = os.getenv("INDEX_PROVIDER", "supabase")  # supabase|memory

# Embedding provider (Google Generative Language API)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
EMBED_API_BASE = os.getenv("EMBED_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
EMBED_MODEL = os.getenv("EMBED_MODEL", "text-embedding-004")
EMBED_TASK_TYPE = os.getenv("EMBED_TASK_TYPE", "RETRIEVAL_QUERY")
EMBED_DIM = int(os.getenv("EMBED_DIM", "768"))

# Hosted record/vector store (PostgREST)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")

# Pool thresholds
QUOTE_MATCH_THRESHOLD = float(os.getenv("QUOTE_MATCH_THRESHOLD", "0.4"))
QUOTABLE_MATCH_THRESHOLD = float(os.getenv("QUOTABLE_MATCH_THRESHOLD", "0.3"))
QUOTABLE_MATCH_COUNT = int(os.getenv("QUOTABLE_MATCH_COUNT", "10"))
IMAGE_MATCH_THRESHOLD = float(os.getenv("IMAGE_MATCH_THRESHOLD", "0.35"))
KNOWLEDGE_MATCH_THRESHOLD = float(os.getenv("KNOWLEDGE_MATCH_THRESHOLD", "0.5"))
KNOWLEDGE_FILTER_STATUS = [s.strip() for s in os.getenv("KNOWLEDGE_FILTER_STATUS", "knowledge").split(",") if s.strip()]

# Source retrieval modes: (match count, threshold)
SOURCE_MODES = {
    "standard": (
        int(os.getenv("SOURCES_STANDARD_COUNT", "3")),
        float(os.getenv("SOURCES_STANDARD_THRESHOLD", "0.3")),
    ),
    "deep": (
        int(os.getenv("SOURCES_DEEP_COUNT", "30")),
        float(os.getenv("SOURCES_DEEP_THRESHOLD", "0.2")),
    ),
}

# Default and maximum result counts
DEFAULT_QUOTE_COUNT = int(os.getenv("DEFAULT_QUOTE_COUNT", "5"))
DEFAULT_IMAGE_COUNT = int(os.getenv("DEFAULT_IMAGE_COUNT", "12"))
DEFAULT_KNOWLEDGE_COUNT = int(os.getenv("DEFAULT_KNOWLEDGE_COUNT", "20"))
MAX_RESULT_COUNT = int(os.getenv("MAX_RESULT_COUNT", "50"))

# Outbound call policy
REQUEST_TIMEOUT_SEC = float(os.getenv("REQUEST_TIMEOUT_SEC", "20"))
HTTP_CONNECT_TIMEOUT_SEC = float(os.getenv("HTTP_CONNECT_TIMEOUT_SEC", "5"))
UPSTREAM_RETRY_ATTEMPTS = int(os.getenv("UPSTREAM_RETRY_ATTEMPTS", "1"))  # 1 = no retries
DISCONNECT_POLL_SEC = float(os.getenv("DISCONNECT_POLL_SEC", "0.25"))

# CORS
CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return DEBUG


def get_source_mode(mode: str):
    """Return (match_count, threshold) for a source retrieval mode, None if unknown."""
    return SOURCE_MODES.get(mode)


def clamp_count(count: int) -> int:
    """Cap a requested result count at MAX_RESULT_COUNT."""
    return min(count, MAX_RESULT_COUNT)


def validate_config() -> List[str]:
    """Validate retrieval configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in ["google", "hash"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")
    elif EMBED_PROVIDER == "google" and not GOOGLE_API_KEY:
        issues.append("GOOGLE_API_KEY not configured")

    if INDEX_PROVIDER not in ["supabase", "memory"]:
        issues.append(f"Invalid INDEX_PROVIDER: {INDEX_PROVIDER}")
    elif INDEX_PROVIDER == "supabase":
        if not SUPABASE_URL:
            issues.append("SUPABASE_URL not configured")
        if not SUPABASE_ANON_KEY:
            issues.append("SUPABASE_ANON_KEY not configured")

    for name, value in [
        ("QUOTE_MATCH_THRESHOLD", QUOTE_MATCH_THRESHOLD),
        ("QUOTABLE_MATCH_THRESHOLD", QUOTABLE_MATCH_THRESHOLD),
        ("IMAGE_MATCH_THRESHOLD", IMAGE_MATCH_THRESHOLD),
        ("KNOWLEDGE_MATCH_THRESHOLD", KNOWLEDGE_MATCH_THRESHOLD),
    ]:
        if not 0.0 <= value <= 1.0:
            issues.append(f"{name} must be within [0, 1]")

    if LOG_LEVEL not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        issues.append(f"Invalid LOG_LEVEL: {LOG_LEVEL}")

    if MAX_RESULT_COUNT < 1:
        issues.append("MAX_RESULT_COUNT must be >= 1")

    if UPSTREAM_RETRY_ATTEMPTS < 1:
        issues.append("UPSTREAM_RETRY_ATTEMPTS must be >= 1")

    if REQUEST_TIMEOUT_SEC <= 0:
        issues.append("REQUEST_TIMEOUT_SEC must be > 0")

    return issues


def require_valid_config() -> None:
    """Raise ConfigurationError if the configuration cannot serve requests."""
    from .errors import ConfigurationError

    issues = validate_config()
    if issues:
        raise ConfigurationError("; ".join(issues))


def get_embedding_provider(http_client=None):
    """Get configured embedding provider implementation."""
    if EMBED_PROVIDER == "hash":
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(EMBED_DIM)

    from ..vector.embeddings import GoogleEmbeddingClient
    return GoogleEmbeddingClient(
        api_key=GOOGLE_API_KEY,
        http_client=http_client,
        model=EMBED_MODEL,
        api_base=EMBED_API_BASE,
        task_type=EMBED_TASK_TYPE or None,
    )


def get_similarity_index(http_client=None):
    """Get configured similarity index implementation."""
    if INDEX_PROVIDER == "memory":
        from ..vector.index import InMemorySimilarityIndex
        return InMemorySimilarityIndex()

    from ..vector.index import SupabaseSimilarityIndex
    return SupabaseSimilarityIndex(SUPABASE_URL, SUPABASE_ANON_KEY, http_client=http_client)


def get_record_store(http_client=None):
    """Get configured primary record store implementation."""
    if INDEX_PROVIDER == "memory":
        from ..vector.store import InMemoryRecordStore
        return InMemoryRecordStore()

    from ..vector.store import SupabaseRecordStore
    return SupabaseRecordStore(SUPABASE_URL, SUPABASE_ANON_KEY, http_client=http_client)

