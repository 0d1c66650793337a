"""
Source context assembly.

Formats hydrated knowledge sources into a numbered context block and a source
mapping that an answer generator can cite as [1], [2], ...
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from .response import relevance

CONTENT_EXCERPT_CHARS = 2000
KEY_QUOTES_PER_SOURCE = 3
DEEP_CONTENT_MIN_SIMILARITY = 0.5


@dataclass
class SourceContext:
    """Numbered context for an answer generator."""
    text: str
    mapping: List[str]


def include_content(source: Dict[str, Any], mode: str) -> bool:
    """Full content goes in for every standard-mode source, and for high-relevance deep-mode sources."""
    if not source.get("content"):
        return False
    return mode == "standard" or source.get("similarity", 0) > DEEP_CONTENT_MIN_SIMILARITY


def format_source(number: int, source: Dict[str, Any], mode: str) -> str:
    title = source.get("title") or "Untitled"
    parts = [f"### [{number}] {title}\n", f"Relevance: {relevance(source.get('similarity', 0))}%\n\n"]

    if source.get("dain_context"):
        parts.append(f"**DAIN Context:** {source['dain_context']}\n\n")

    if source.get("summary"):
        parts.append(f"**Summary:** {source['summary']}\n\n")

    if include_content(source, mode):
        content = source["content"]
        ellipsis = "..." if len(content) > CONTENT_EXCERPT_CHARS else ""
        parts.append(f"**Full Content (excerpt):** {content[:CONTENT_EXCERPT_CHARS]}{ellipsis}\n\n")

    quotables = source.get("quotables") or []
    if quotables:
        parts.append("**Key Quotes:**\n")
        for quote in quotables[:KEY_QUOTES_PER_SOURCE]:
            parts.append(f"- \"{quote}\"\n")
        parts.append("\n")

    return "".join(parts)


def build_source_context(sources: List[Dict[str, Any]], mode: str = "standard") -> SourceContext:
    """Number sources in result order and join their formatted blocks."""
    blocks = []
    mapping = []
    for number, source in enumerate(sources, start=1):
        mapping.append(f"[{number}] = \"{source.get('title') or 'Untitled'}\"")
        blocks.append(format_source(number, source, mode))

    return SourceContext(text="\n---\n\n".join(blocks), mapping=mapping)
