"""
Value types shared by the similarity index boundary and result fusion.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import numpy as np


class Provenance(str, Enum):
    """Which kind of pool a candidate came from."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class VectorRecord:
    """Represents a vector record with metadata."""

    id: str
    """Unique identifier for the vector record"""

    vector: Optional[np.ndarray]
    """The vector representation of the content"""

    metadata: Dict[str, Any]
    """Match-time fields returned alongside a hit"""


@dataclass(frozen=True)
class Match:
    """One scored neighbor returned by a similarity index search."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Similarity score of the match (0-1)"""

    fields: Mapping[str, Any] = field(default_factory=dict)
    """Partial fields captured at match time"""


@dataclass(frozen=True)
class Candidate:
    """A provenance-tagged match ready for fusion. Never mutated."""

    id: str
    score: float
    provenance: Provenance
    pool: str
    rank: int
    """Discovery position within its pool stream"""
    fields: Mapping[str, Any] = field(default_factory=dict)
    parent_id: Optional[str] = None

