"""
Query augmentation: append domain hints to the raw query before embedding.
Pure functions, no side effects.
"""

from typing import Optional

from .errors import ValidationError

QUOTE_CONTEXTS = ["any", "board", "linkedin", "pitch", "workshop"]

CONTEXT_HINTS = {
    "board": "executive leadership C-suite strategic business impact",
    "linkedin": "thought leadership professional insight industry trend",
    "pitch": "client value proposition solution benefit ROI",
    "workshop": "engaging interactive learning collaborative insight",
}

IMAGE_SUFFIX = "chart visualization"
IMAGE_GENERIC_SUFFIX = "chart graph infographic visualization"


def require_query(text, field: str = "query") -> str:
    """Return the query text, raising ValidationError if it is missing or blank."""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"{field.capitalize()} is required")
    return text


def is_any(tag: Optional[str]) -> bool:
    return tag is None or not tag.strip() or tag.strip().lower() == "any"


def augment_quote_query(query: str, context: Optional[str] = "any") -> str:
    """Append the hint phrase for a usage context. Unknown or "any" contexts leave the query as is."""
    if is_any(context):
        return query

    hint = CONTEXT_HINTS.get(context.strip().lower())
    if not hint:
        return query
    return f"{query} {hint}"


def augment_image_query(query: str, chart_type: Optional[str] = "any") -> str:
    """Bias an image query toward visual content, naming the chart type when one is given."""
    if is_any(chart_type):
        return f"{query} {IMAGE_GENERIC_SUFFIX}"
    return f"{query} {chart_type.strip().replace('_', ' ')} {IMAGE_SUFFIX}"


def chart_type_filter(chart_type: Optional[str]) -> Optional[str]:
    """The chart type to restrict the image pool to, or None for all images."""
    return None if is_any(chart_type) else chart_type.strip()
