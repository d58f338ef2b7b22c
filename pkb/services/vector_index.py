"""
Nearest-neighbour lookup over unit embeddings.

``VectorIndex`` is the pluggable capability the search and relationship
layers depend on. ``InMemoryVectorIndex`` is an exact cosine scan suitable for
a personal-scale corpus and for tests; ``OpenSearchClient`` provides the same
``search_by_embedding`` contract against a k-NN index.
"""

import math
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from ..models.core import AtomicUnit, VectorSearchResult
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class VectorIndex(ABC):
    """Ranked nearest-neighbour search over unit embeddings."""

    @abstractmethod
    def add_unit(self, unit: AtomicUnit) -> None:
        """Index a unit by its embedding."""

    @abstractmethod
    def remove_unit(self, unit_id: str) -> bool:
        """Remove a unit. Returns True when it was present."""

    @abstractmethod
    def search_by_embedding(self, vector: List[float], limit: int = 10) -> List[VectorSearchResult]:
        """Return up to limit hits ordered by descending similarity."""


class InMemoryVectorIndex(VectorIndex):
    """Exact cosine-similarity scan over units held in memory."""

    def __init__(self):
        self._units: Dict[str, AtomicUnit] = {}
        self._lock = threading.RLock()

    def add_unit(self, unit: AtomicUnit) -> None:
        if not unit.embedding:
            raise ValueError(f'Unit {unit.id} has no embedding to index')
        with self._lock:
            self._units[unit.id] = unit

    def add_units(self, units: List[AtomicUnit]) -> None:
        for unit in units:
            self.add_unit(unit)

    def remove_unit(self, unit_id: str) -> bool:
        with self._lock:
            return self._units.pop(unit_id, None) is not None

    def search_by_embedding(self, vector: List[float], limit: int = 10) -> List[VectorSearchResult]:
        if limit <= 0:
            return []

        with self._lock:
            units = list(self._units.values())

        scored = [VectorSearchResult(unit=unit, score=cosine_similarity(vector, unit.embedding)) for unit in units]
        # Stable sort keeps insertion order among equal scores.
        scored.sort(key=lambda result: result.score, reverse=True)
        logger.debug(f'In-memory vector search scanned {len(units)} units')
        return scored[:limit]

    def __len__(self) -> int:
        return len(self._units)
