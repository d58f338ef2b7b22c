"""
Content-addressed embedding cache with JSON Lines persistence.

Entries are keyed by a truncated SHA-256 of the exact text that was embedded,
so identical text shared by different units costs one provider call.
"""

import hashlib
import json
import os
import tempfile
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ..models.core import CachedEmbedding, CacheStats
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import parse_timestamp, to_iso

logger = get_logger(__name__)

CACHE_FILE_NAME = 'embeddings.jsonl'
# Heuristic used to project savings, not metered usage.
AVG_TOKENS_PER_EMBEDDING = 1000
DEFAULT_PRUNE_AGE_SECONDS = 30 * 24 * 3600
DEFAULT_TTL_SECONDS = 7 * 24 * 3600


def hash_text(text: str) -> str:
    """Return the 16-hex-character cache key for text."""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()[:16]


class EmbeddingCache:
    """In-memory embedding cache backed by a JSON Lines file."""

    def __init__(self,
                 cache_path: str = './cache/embeddings',
                 enabled: bool = True,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the cache and load any persisted entries.

        Args:
            cache_path: Directory for ``embeddings.jsonl``, or a path ending in ``.jsonl``
            enabled: When False every lookup misses silently and nothing is stored
            clock: Returns the current Unix time in seconds, ``time.time`` if None
        """
        if cache_path.endswith('.jsonl'):
            self.cache_dir = os.path.dirname(cache_path) or '.'
            self.cache_file = cache_path
        else:
            self.cache_dir = cache_path
            self.cache_file = os.path.join(cache_path, CACHE_FILE_NAME)

        self.enabled = enabled
        self.model = 'unknown'
        self._clock = clock or time.time
        self._entries: Dict[str, CachedEmbedding] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

        if enabled:
            self._init_cache()

    def _init_cache(self) -> None:
        """Create the cache directory and load the existing file."""
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            if os.path.exists(self.cache_file):
                self._load_from_file(self.cache_file)
        except OSError as e:
            logger.warning(f'Failed to initialize embedding cache at {self.cache_file}: {e}')

    def _load_from_file(self, file_path: str) -> None:
        """Load entries from a JSON Lines file, skipping unusable lines."""
        loaded = 0
        skipped = 0
        try:
            with open(file_path, 'r', encoding='utf-8') as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        skipped += 1
                        continue

                    entry = self._entry_from_record(record)
                    if entry is None or not self._accept_loaded(entry):
                        skipped += 1
                        continue

                    self._entries[entry.text_hash] = entry
                    loaded += 1
        except OSError as e:
            logger.warning(f'Failed to load embedding cache file {file_path}: {e}')
            return

        if skipped:
            logger.warning(f'Skipped {skipped} unusable embedding cache records in {file_path}')
        logger.info(f'Loaded {loaded} embeddings from cache')

    def _entry_from_record(self, record: Any) -> Optional[CachedEmbedding]:
        """Validate a decoded record; missing text or embedding discards it."""
        if not isinstance(record, dict):
            return None

        text = record.get('text')
        embedding = record.get('embedding')
        if not text or not isinstance(text, str) or not isinstance(embedding, list):
            return None

        model = record.get('model')
        tokens_used = record.get('tokensUsed')
        return CachedEmbedding(text_hash=hash_text(text),
                               text=text,
                               embedding=embedding,
                               model=model if isinstance(model, str) else 'unknown',
                               timestamp=parse_timestamp(record.get('timestamp'), default=self._clock()),
                               tokens_used=tokens_used if isinstance(tokens_used, int) else 0)

    def _accept_loaded(self, entry: CachedEmbedding) -> bool:
        return True

    def get(self, text: str) -> Optional[List[float]]:
        """
        Look up the embedding for the exact text.

        Args:
            text: Source text, hashed byte-for-byte

        Returns:
            The cached embedding, or None when disabled or missing
        """
        if not self.enabled:
            return None

        key = hash_text(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            self._hits += 1
            logger.debug(f'Cache hit for embedding (text length {len(text)})')
            return list(entry.embedding)

    def set(self, text: str, embedding: List[float], model: str = 'unknown', tokens_used: int = 0) -> None:
        """
        Insert or overwrite the entry for text.

        Args:
            text: Source text
            embedding: Vector produced by the provider
            model: Provider model identifier
            tokens_used: Tokens the provider reported for this text
        """
        if not self.enabled:
            return

        entry = CachedEmbedding(text_hash=hash_text(text),
                                text=text,
                                embedding=list(embedding),
                                model=model,
                                timestamp=self._clock(),
                                tokens_used=tokens_used)
        with self._lock:
            self._entries[entry.text_hash] = entry
            self.model = model

        logger.debug(f'Embedding cached (text length {len(text)}, model {model}, tokens {tokens_used})')

    def batch_get(self, texts: List[str]) -> List[Dict[str, Any]]:
        """Positional lookups: ``{'text', 'embedding', 'cached'}`` per input text."""
        results = []
        for text in texts:
            embedding = self.get(text)
            results.append({'text': text, 'embedding': embedding, 'cached': embedding is not None})
        return results

    def batch_set(self, entries: List[Dict[str, Any]]) -> None:
        """Store several entries given as dicts with ``text``, ``embedding`` and optional ``model``/``tokens_used``."""
        for entry in entries:
            self.set(entry['text'],
                     entry['embedding'],
                     entry.get('model') or 'unknown',
                     entry.get('tokens_used') or 0)

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0

    def get_stats(self) -> CacheStats:
        """Return hit/miss counters, memory estimate and projected token savings."""
        with self._lock:
            hits = self._hits
            misses = self._misses
            entries = len(self._entries)
            memory = self._memory_usage_bytes()

        total = hits + misses
        return CacheStats(entries=entries,
                          hits=hits,
                          misses=misses,
                          hit_rate=hits / total if total else 0.0,
                          miss_rate=misses / total if total else 0.0,
                          memory_usage_bytes=memory,
                          tokens_used_with_cache=misses * AVG_TOKENS_PER_EMBEDDING,
                          tokens_saved_by_cache=hits * AVG_TOKENS_PER_EMBEDDING)

    def _memory_usage_bytes(self) -> int:
        size = 0
        for entry in self._entries.values():
            size += len(entry.text.encode('utf-16-le'))
            size += len(entry.embedding) * 8
        return size

    def size_in_mb(self) -> float:
        with self._lock:
            return self._memory_usage_bytes() / (1024 * 1024)

    def __len__(self) -> int:
        return len(self._entries)

    def save(self) -> None:
        """Persist all entries, atomically replacing the cache file.

        Write failures are logged and never raised.
        """
        if not self.enabled:
            return

        tmp_path = None
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            with self._lock:
                fd, tmp_path = tempfile.mkstemp(prefix='.embeddings-', suffix='.tmp', dir=self.cache_dir)
                with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                    for entry in self._entries.values():
                        handle.write(json.dumps(self._entry_to_record(entry)) + '\n')
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_path, self.cache_file)
                tmp_path = None
                count = len(self._entries)

            logger.info(f'Embedding cache saved ({count} entries) to {self.cache_file}')
        except OSError as e:
            logger.warning(f'Failed to save embedding cache to {self.cache_file}: {e}')
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError as e:
                    logger.warning(f'Failed to remove temporary cache file {tmp_path}: {e}')

    @staticmethod
    def _entry_to_record(entry: CachedEmbedding) -> Dict[str, Any]:
        return {
            'textHash': entry.text_hash,
            'text': entry.text,
            'embedding': entry.embedding,
            'model': entry.model,
            'timestamp': to_iso(entry.timestamp),
            'tokensUsed': entry.tokens_used
        }

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logger.info('Embedding cache cleared')

    def prune_old_entries(self, max_age_seconds: float = DEFAULT_PRUNE_AGE_SECONDS) -> int:
        """
        Remove entries strictly older than max_age_seconds.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if now - entry.timestamp > max_age_seconds]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.info(f'Pruned {len(stale)} old embedding cache entries')
        return len(stale)


class TTLEmbeddingCache(EmbeddingCache):
    """Embedding cache whose entries expire a fixed time after last use."""

    def __init__(self,
                 cache_path: str = './cache/embeddings',
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 enabled: bool = True,
                 clock: Optional[Callable[[], float]] = None):
        # Needed by _accept_loaded during the initial load.
        self.ttl_seconds = ttl_seconds
        super().__init__(cache_path, enabled=enabled, clock=clock)

    def _is_expired(self, entry: CachedEmbedding, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def _accept_loaded(self, entry: CachedEmbedding) -> bool:
        return not self._is_expired(entry, self._clock())

    def get(self, text: str) -> Optional[List[float]]:
        """Look up text; an expired entry is evicted and reported as a miss.

        A hit refreshes the entry's timestamp.
        """
        if not self.enabled:
            return None

        key = hash_text(text)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry, now):
                del self._entries[key]
                self._misses += 1
                logger.debug('Expired embedding evicted on read')
                return None

            entry.timestamp = now
            self._hits += 1
            return list(entry.embedding)

    def set_ttl(self, ttl_seconds: float) -> None:
        self.ttl_seconds = ttl_seconds
        logger.debug(f'Embedding cache TTL set to {ttl_seconds}s')

    def cleanup(self) -> int:
        """Sweep all expired entries. Returns the number removed."""
        return self.prune_old_entries(self.ttl_seconds)
