"""
Unit tests for pkb.services.embedding_service
"""

from __future__ import annotations

import pytest

from conftest import FakeEmbedder
from pkb.services.embedding_cache import EmbeddingCache
from pkb.services.embedding_service import CachedEmbeddingService


class TestCachedEmbeddingService:
    def test_miss_calls_provider_and_caches(self, cache_dir, clock):
        provider = FakeEmbedder({'hello': [0.1, 0.2]})
        cache = EmbeddingCache(cache_dir, clock=clock)
        service = CachedEmbeddingService(provider, cache)

        assert service.generate_embedding('hello') == [0.1, 0.2]
        assert service.generate_embedding('hello') == [0.1, 0.2]
        assert provider.calls == ['hello']
        assert service.provider_calls == 1

    def test_cached_entry_records_model_and_tokens(self, cache_dir, clock):
        provider = FakeEmbedder(tokens=42)
        cache = EmbeddingCache(cache_dir, clock=clock)
        CachedEmbeddingService(provider, cache).generate_embedding('hello')

        entry = next(iter(cache._entries.values()))
        assert entry.model == 'fake-embed-v1'
        assert entry.tokens_used == 42

    def test_batch_only_embeds_misses(self, cache_dir, clock):
        provider = FakeEmbedder({'a': [1.0], 'b': [2.0], 'c': [3.0]})
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('b', [9.0])
        service = CachedEmbeddingService(provider, cache)

        assert service.generate_embeddings(['a', 'b', 'c']) == [[1.0], [9.0], [3.0]]
        assert provider.calls == ['a', 'c']

    def test_provider_errors_propagate(self, cache_dir, clock):
        provider = FakeEmbedder()
        provider.error = RuntimeError('throttled')
        service = CachedEmbeddingService(provider, EmbeddingCache(cache_dir, clock=clock))

        with pytest.raises(RuntimeError, match='throttled'):
            service.generate_embedding('hello')

    def test_works_without_cache(self):
        provider = FakeEmbedder()
        service = CachedEmbeddingService(provider)
        service.generate_embedding('x')
        service.generate_embeddings(['x', 'y'])
        assert provider.calls == ['x', 'x', 'y']
        assert service.model_id == 'fake-embed-v1'
