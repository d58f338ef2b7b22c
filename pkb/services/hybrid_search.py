"""
Hybrid search combining full-text and semantic retrieval.

Both ranked lists are merged with Reciprocal Rank Fusion: a unit at 0-indexed
rank ``r`` in a list with weight ``w`` contributes ``w / (k + r + 1)``, and a
unit's score is the sum of its contributions across lists.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from .search_cache import SearchCache
from .vector_index import VectorIndex
from ..models.core import AtomicUnit, HybridSearchResult, SearchWeights
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import parse_timestamp

logger = get_logger(__name__)

DEFAULT_RRF_K = 60


def reciprocal_rank_fusion(fts_units: List[AtomicUnit],
                           semantic_units: List[AtomicUnit],
                           weights: SearchWeights,
                           k: int = DEFAULT_RRF_K) -> List[Tuple[AtomicUnit, float]]:
    """
    Fuse two ranked unit lists.

    Units are identified by id; a unit repeated within one list only counts at
    its first rank. Ties keep first-seen order, full-text list first.

    Returns:
        ``(unit, score)`` pairs ordered by descending fused score
    """
    scores: Dict[str, List[Any]] = {}

    for ranked, weight in ((fts_units, weights.fts), (semantic_units, weights.semantic)):
        seen = set()
        for rank, unit in enumerate(ranked):
            if unit.id in seen:
                continue
            seen.add(unit.id)

            contribution = weight / (k + rank + 1)
            if unit.id in scores:
                scores[unit.id][1] += contribution
            else:
                scores[unit.id] = [unit, contribution]

    fused = [(unit, score) for unit, score in scores.values()]
    fused.sort(key=lambda item: item[1], reverse=True)
    return fused


def _date_bounds(filters: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    """Parse the optional date_from and date_to filters into Unix seconds.

    Raises:
        ValueError: If a bound is given but is not a recognisable timestamp
    """
    bounds = []
    for name in ('date_from', 'date_to'):
        value = filters.get(name)
        if value is None or value == '':
            bounds.append(None)
            continue
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f'Invalid {name} filter: {value!r}')
        bounds.append(parsed)
    return bounds[0], bounds[1]


def _within(unit: AtomicUnit,
            filters: Dict[str, Any],
            date_from: Optional[float] = None,
            date_to: Optional[float] = None) -> bool:
    """Check a unit against optional type, category and date-range filters.

    Naive unit timestamps are read as UTC.
    """
    if filters.get('type') and unit.type != filters['type']:
        return False
    if filters.get('category') and unit.category != filters['category']:
        return False

    if date_from is not None or date_to is not None:
        stamp = parse_timestamp(unit.timestamp)
        if stamp is None:
            return False
        if date_from is not None and stamp < date_from:
            return False
        if date_to is not None and stamp > date_to:
            return False

    return True


class HybridSearch:
    """Full-text plus vector search fused with weighted RRF."""

    def __init__(self,
                 text_search,
                 embedder,
                 vector_index: VectorIndex,
                 cache: Optional[SearchCache] = None,
                 rrf_k: int = DEFAULT_RRF_K,
                 overfetch_factor: int = 2,
                 default_weights: Optional[SearchWeights] = None):
        """
        Args:
            text_search: Provider exposing ``search_text(query, limit)``
            embedder: Provider exposing ``generate_embedding(text)``
            vector_index: Nearest-neighbour index for the semantic stage
            cache: Optional result cache
            rrf_k: Fusion constant
            overfetch_factor: Each stage fetches this multiple of the limit
            default_weights: Weights used when a search passes none
        """
        self.text_search = text_search
        self.embedder = embedder
        self.vector_index = vector_index
        self.cache = cache
        self.rrf_k = rrf_k
        self.overfetch_factor = overfetch_factor
        self.default_weights = default_weights or SearchWeights()

    def search(self,
               query: str,
               limit: int = 10,
               weights: Optional[SearchWeights] = None,
               filters: Optional[Dict[str, Any]] = None) -> List[HybridSearchResult]:
        """
        Search with full-text and semantic retrieval, fused by RRF.

        Args:
            query: Query text
            limit: Maximum results
            weights: Per-source fusion weights
            filters: Optional ``type``, ``category``, ``date_from`` and ``date_to`` constraints

        Returns:
            Up to limit results, best first; empty when nothing matches

        Raises:
            ValueError: If a date filter cannot be parsed
            Whatever the full-text, embedding or vector provider raises
        """
        if not query or not query.strip() or limit <= 0:
            return []

        weights = weights or self.default_weights
        filters = filters or {}
        date_from, date_to = _date_bounds(filters)

        cache_key = None
        if self.cache is not None:
            cache_key = SearchCache.generate_key(query=query,
                                                 filters=[{name: value} for name, value in filters.items()],
                                                 search_type='hybrid',
                                                 limit=limit,
                                                 weights=weights)
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f'Search cache hit for query: {query[:50]}')
                return list(cached.results)

        started = time.time()
        fetch_limit = limit * self.overfetch_factor

        with ThreadPoolExecutor(max_workers=2) as executor:
            fts_future = executor.submit(self.text_search.search_text, query, fetch_limit)
            embedding_future = executor.submit(self.embedder.generate_embedding, query)
            fts_units = fts_future.result()
            query_embedding = embedding_future.result()

        semantic_hits = self.vector_index.search_by_embedding(query_embedding, fetch_limit)

        fused = reciprocal_rank_fusion(fts_units, [hit.unit for hit in semantic_hits], weights, self.rrf_k)
        if filters:
            fused = [(unit, score) for unit, score in fused if _within(unit, filters, date_from, date_to)]

        fts_ids = {unit.id for unit in fts_units}
        semantic_scores: Dict[str, float] = {}
        for hit in semantic_hits:
            semantic_scores.setdefault(hit.unit.id, hit.score)

        results = [
            HybridSearchResult(unit=unit,
                               fts_score=1 if unit.id in fts_ids else 0,
                               semantic_score=semantic_scores.get(unit.id, 0.0),
                               combined_score=score) for unit, score in fused[:limit]
        ]

        elapsed = time.time() - started
        logger.info(f'Hybrid search returned {len(results)} results '
                    f'(fts={len(fts_units)}, semantic={len(semantic_hits)}) in {elapsed:.3f}s')

        if self.cache is not None:
            self.cache.set(cache_key, results, query_time=elapsed, total=len(fused))
        return results

    def search_by_tag(self, tag: str, limit: int = 50) -> List[AtomicUnit]:
        """Units carrying tag, from the full-text provider."""
        return self.text_search.search_by_tag(tag, limit)

    def invalidate_cache(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_all()
