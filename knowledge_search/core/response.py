"""
Response assembly: score normalization, result shaping and diagnostic stats.
Ordering is fixed by fusion and never changed here.
"""

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .fusion import count_by_provenance
from ..vector.types import Candidate


def relevance(score: float) -> int:
    """Similarity in [0, 1] as an integer percentage, rounding halves up."""
    return int(math.floor(score * 100 + 0.5))


def compact(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop fields without a value."""
    return {k: v for k, v in fields.items() if v is not None}


def shape_result(candidate: Candidate, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """One result entry: id, shaped fields, raw similarity, display relevance and provenance."""
    result = {"id": candidate.id}
    result.update(compact(fields))
    result["similarity"] = candidate.score
    result["relevance"] = relevance(candidate.score)
    result["provenance"] = candidate.provenance.value
    return result


def build_stats(
    returned: Iterable[Candidate],
    matched: Mapping[str, int],
    hydration: str,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Per-provenance counts of returned results plus per-pool match counts before truncation."""
    returned = list(returned)
    stats = {
        "total_found": len(returned),
        "per_provenance": count_by_provenance(returned),
        "matched": dict(matched),
        "hydration": hydration,
    }
    if extra:
        stats.update(extra)
    return stats


def build_payload(results: List[Dict[str, Any]], stats: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    payload = {"results": results, "stats": stats}
    payload.update(extra)
    return payload
