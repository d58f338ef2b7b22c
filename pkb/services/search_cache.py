"""
LRU + TTL cache for hybrid search results.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..models.core import SearchWeights
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 5 * 60


@dataclass
class CachedSearch:
    key: str
    results: List[Any]
    timestamp: float
    ttl: float
    query_time: float = 0.0
    total: Optional[int] = None
    facets: List[Any] = field(default_factory=list)


class SearchCache:
    """Bounded search result cache with least-recently-used eviction."""

    def __init__(self,
                 max_size: int = DEFAULT_MAX_SIZE,
                 default_ttl: float = DEFAULT_TTL_SECONDS,
                 clock: Optional[Callable[[], float]] = None):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock or time.time
        self._entries: 'OrderedDict[str, CachedSearch]' = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = threading.RLock()

    @staticmethod
    def generate_key(query: str = '',
                     filters: Optional[List[Any]] = None,
                     search_type: str = 'hybrid',
                     limit: int = 20,
                     weights: Optional[SearchWeights] = None) -> str:
        """
        Build a cache key from the canonical form of a search request.

        Filter order does not affect the key.
        """
        weights = weights or SearchWeights()
        sorted_filters = sorted(filters or [], key=lambda f: json.dumps(f, sort_keys=True, default=str))
        canonical = json.dumps(
            {
                'query': query or '',
                'filters': sorted_filters,
                'searchType': search_type,
                'limit': limit,
                'weights': {'fts': weights.fts, 'semantic': weights.semantic}
            },
            sort_keys=True,
            default=str)
        digest = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f'search:{search_type}:{digest[:16]}'

    def get(self, key: str) -> Optional[CachedSearch]:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                self._misses += 1
                return None

            if self._clock() - cached.timestamp > cached.ttl:
                del self._entries[key]
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return cached

    def set(self,
            key: str,
            results: List[Any],
            ttl: Optional[float] = None,
            query_time: float = 0.0,
            total: Optional[int] = None,
            facets: Optional[List[Any]] = None) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CachedSearch(key=key,
                                              results=list(results),
                                              timestamp=self._clock(),
                                              ttl=ttl if ttl is not None else self.default_ttl,
                                              query_time=query_time,
                                              total=total,
                                              facets=list(facets or []))
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info('Search cache invalidated (all entries cleared)')

    def invalidate_where(self, predicate: Callable[[str, CachedSearch], bool]) -> int:
        """Drop entries matching predicate(key, entry). Returns the number dropped."""
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if predicate(key, entry)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'evictions': self._evictions,
                'hit_rate': (self._hits / total) * 100 if total else 0.0
            }

    def clear_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def size_in_bytes(self) -> int:
        """Approximate size as the length of each entry's JSON encoding."""
        with self._lock:
            return sum(len(json.dumps(asdict(entry), default=str)) for entry in self._entries.values())

    def configure(self, max_size: Optional[int] = None, default_ttl: Optional[float] = None) -> None:
        with self._lock:
            if max_size:
                self.max_size = max_size
            if default_ttl:
                self.default_ttl = default_ttl
        logger.info(f'Search cache configured: max_size={self.max_size}, default_ttl={self.default_ttl}s')

    def __len__(self) -> int:
        return len(self._entries)
