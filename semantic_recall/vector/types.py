"""
Row and search-hit types shared by every table store implementation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class VectorRecord:
    """Represents a stored row: an embedding plus its named fields."""

    id: str
    """Record identifier (not enforced unique: stores are append-only)"""

    vector: List[float]
    """The vector representation of the content"""

    fields: Dict[str, Any] = field(default_factory=dict)
    """Column values the row was written with; filters match against these"""


@dataclass
class QueryResult:
    """Represents a search result from a table store."""

    id: str
    """Identifier for the matching record"""

    fields: Dict[str, Any]
    """Fields associated with the matched record"""

    distance: float
    """Cosine distance to the query vector (0 = identical direction)"""

    similarity: float
    """max(0, 1 - distance); higher is better, never negative"""

    vector: List[float] = None
    """Stored embedding of the matched record"""
