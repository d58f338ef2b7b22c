"""
Embedding service that consults the embedding cache before the provider.
"""

from typing import List, Optional

from .embedding_cache import EmbeddingCache
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class CachedEmbeddingService:
    """Wrap an embedding provider with a content-addressed cache.

    The provider is anything exposing ``generate_embedding(text)``; provider
    errors propagate to the caller unchanged.
    """

    def __init__(self, provider, cache: Optional[EmbeddingCache] = None):
        self.provider = provider
        self.cache = cache
        self.provider_calls = 0

    @property
    def model_id(self) -> str:
        return getattr(self.provider, 'model_id', None) or 'unknown'

    def _store(self, text: str, embedding: List[float]) -> None:
        if self.cache is not None:
            tokens = getattr(self.provider, 'last_token_count', 0) or 0
            self.cache.set(text, embedding, self.model_id, int(tokens))

    def generate_embedding(self, text: str) -> List[float]:
        """Return the embedding for text, calling the provider only on a cache miss."""
        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached

        self.provider_calls += 1
        embedding = self.provider.generate_embedding(text)
        self._store(text, embedding)
        return embedding

    def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, keeping input order and reusing cached vectors."""
        if self.cache is None:
            lookups = [{'text': text, 'embedding': None, 'cached': False} for text in texts]
        else:
            lookups = self.cache.batch_get(texts)

        embeddings = []
        for lookup in lookups:
            if lookup['cached']:
                embeddings.append(lookup['embedding'])
                continue

            self.provider_calls += 1
            embedding = self.provider.generate_embedding(lookup['text'])
            self._store(lookup['text'], embedding)
            embeddings.append(embedding)

        cached_count = sum(1 for lookup in lookups if lookup['cached'])
        logger.debug(f'Embedded {len(texts)} texts ({cached_count} from cache)')
        return embeddings
