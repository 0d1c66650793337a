"""
Result fusion: merge candidate streams from one or more pools into one ranked list.

Ordering is a total order: score descending, then provenance (primary before
secondary), then discovery rank within the pool, then id ascending. Candidates
from different pools are never de-duplicated against each other.
"""

from typing import Any, Dict, Iterable, List, Mapping

from ..vector.types import Candidate, Match, Provenance

PROVENANCE_ORDER = {
    Provenance.PRIMARY: 0,
    Provenance.SECONDARY: 1,
}


def to_candidates(matches: Iterable[Match], pool: str, provenance: Provenance = Provenance.PRIMARY) -> List[Candidate]:
    """Tag raw index matches with their pool and provenance, keeping discovery order."""
    return [
        Candidate(
            id=match.id,
            score=match.score,
            provenance=provenance,
            pool=pool,
            rank=rank,
            fields=dict(match.fields),
        )
        for rank, match in enumerate(matches)
    ]


def flatten_quotables(items: Iterable[Match], pool: str = "quotables") -> List[Candidate]:
    """Explode each matched knowledge item's quotables into one candidate per fragment.

    A fragment's id is ``<item id>-quote-<index within item>`` and it inherits
    the item's similarity score.
    """
    fragments = []
    for item in items:
        quotables = item.fields.get("quotables") or []
        if not isinstance(quotables, list):
            continue

        for index, quote in enumerate(quotables):
            if not isinstance(quote, str) or not quote.strip():
                continue
            fragments.append(Candidate(
                id=f"{item.id}-quote-{index}",
                score=item.score,
                provenance=Provenance.SECONDARY,
                pool=pool,
                rank=len(fragments),
                fields={
                    "quote_text": quote,
                    "title": item.fields.get("title"),
                    "url": item.fields.get("url"),
                    "google_drive_url": item.fields.get("google_drive_url"),
                    "industries": item.fields.get("industries"),
                },
                parent_id=item.id,
            ))
    return fragments


def sort_key(candidate: Candidate):
    return (
        -candidate.score,
        PROVENANCE_ORDER[candidate.provenance],
        candidate.rank,
        candidate.id,
    )


def fuse(*streams: Iterable[Candidate], count: int) -> List[Candidate]:
    """Concatenate candidate streams, order them globally and keep the top ``count``."""
    combined = [candidate for stream in streams for candidate in stream]
    combined.sort(key=sort_key)
    return combined[:count]


def fuse_single_pool(candidates: Iterable[Candidate], count: int) -> List[Candidate]:
    """Single-pool pass-through. Candidates keep their scores and index order."""
    return fuse(candidates, count=count)


def quote_fields(candidate: Candidate) -> Dict[str, Any]:
    """Shape a quote result from a candidate, branching on its provenance."""
    fields: Mapping[str, Any] = candidate.fields

    if candidate.provenance is Provenance.PRIMARY:
        return {
            "quote_text": fields.get("quote_text"),
            "source_title": fields.get("source_title"),
            "source_author": fields.get("source_author"),
            "source_url": fields.get("source_url"),
            "topic_tags": fields.get("topic_tags") or [],
            "use_cases": fields.get("use_cases") or [],
            "tone": fields.get("tone"),
        }

    if candidate.provenance is Provenance.SECONDARY:
        return {
            "quote_text": fields.get("quote_text"),
            "source_title": fields.get("title"),
            "source_author": None,
            "source_url": fields.get("url") or fields.get("google_drive_url"),
            "topic_tags": fields.get("industries") or [],
            "use_cases": [],
            "tone": None,
            "knowledge_item_id": candidate.parent_id,
        }

    raise ValueError(f"Unknown provenance: {candidate.provenance}")


def count_by_provenance(candidates: Iterable[Candidate]) -> Dict[str, int]:
    """Count candidates per provenance, always reporting every provenance."""
    counts = {p.value: 0 for p in Provenance}
    for candidate in candidates:
        counts[candidate.provenance.value] += 1
    return counts
