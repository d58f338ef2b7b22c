"""
Unit tests for pkb.services.search_cache
"""

from __future__ import annotations

from conftest import FakeClock
from pkb.models.core import SearchWeights
from pkb.services.search_cache import SearchCache


class TestGenerateKey:
    def test_key_format(self):
        key = SearchCache.generate_key(query='python', search_type='fts')
        assert key.startswith('search:fts:')
        assert len(key.split(':')[-1]) == 16

    def test_filter_order_does_not_matter(self):
        first = SearchCache.generate_key('q', filters=[{'type': 'code'}, {'category': 'py'}])
        second = SearchCache.generate_key('q', filters=[{'category': 'py'}, {'type': 'code'}])
        assert first == second

    def test_every_component_changes_the_key(self):
        base = SearchCache.generate_key('q', limit=10)
        assert SearchCache.generate_key('other', limit=10) != base
        assert SearchCache.generate_key('q', limit=20) != base
        assert SearchCache.generate_key('q', limit=10, weights=SearchWeights(0.5, 0.5)) != base
        assert SearchCache.generate_key('q', limit=10, filters=[{'type': 'code'}]) != base


class TestSearchCache:
    def test_set_and_get(self):
        cache = SearchCache(clock=FakeClock())
        cache.set('k', ['r1', 'r2'], total=2)
        cached = cache.get('k')
        assert cached.results == ['r1', 'r2']
        assert cached.total == 2

    def test_expired_entry_is_a_miss(self):
        clock = FakeClock()
        cache = SearchCache(default_ttl=300, clock=clock)
        cache.set('k', ['r'])
        clock.advance(301)
        assert cache.get('k') is None
        assert len(cache) == 0
        assert cache.get_stats()['misses'] == 1

    def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = SearchCache(default_ttl=300, clock=clock)
        cache.set('short', ['r'], ttl=10)
        clock.advance(11)
        assert cache.get('short') is None

    def test_least_recently_used_is_evicted(self):
        cache = SearchCache(max_size=2, clock=FakeClock())
        cache.set('a', [1])
        cache.set('b', [2])
        cache.get('a')
        cache.set('c', [3])

        assert cache.get('b') is None
        assert cache.get('a') is not None
        assert cache.get('c') is not None
        assert cache.get_stats()['evictions'] == 1

    def test_invalidate_where(self):
        cache = SearchCache(clock=FakeClock())
        cache.set('search:fts:1', [1])
        cache.set('search:hybrid:2', [2])
        removed = cache.invalidate_where(lambda key, entry: key.startswith('search:fts:'))
        assert removed == 1
        assert len(cache) == 1

    def test_invalidate_all(self):
        cache = SearchCache(clock=FakeClock())
        cache.set('a', [1])
        cache.invalidate_all()
        assert len(cache) == 0

    def test_stats_and_clear_stats(self):
        cache = SearchCache(clock=FakeClock())
        cache.set('a', [1])
        cache.get('a')
        cache.get('missing')

        stats = cache.get_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_rate'] == 50.0
        assert stats['size'] == 1

        cache.clear_stats()
        assert cache.get_stats()['hits'] == 0

    def test_size_in_bytes_grows_with_entries(self):
        cache = SearchCache(clock=FakeClock())
        assert cache.size_in_bytes() == 0
        cache.set('a', ['some result'])
        assert cache.size_in_bytes() > 0

    def test_configure(self):
        cache = SearchCache(clock=FakeClock())
        cache.configure(max_size=5, default_ttl=60)
        assert cache.max_size == 5
        assert cache.default_ttl == 60
        cache.configure()
        assert cache.max_size == 5
