"""
Unit tests for pkb.services.embedding_cache

Covers lookup semantics, statistics, JSON Lines persistence, pruning and
the TTL variant, using a temporary directory and an injected clock.
"""

from __future__ import annotations

import json
import os

import pytest

from pkb.services.embedding_cache import (
    AVG_TOKENS_PER_EMBEDDING,
    CACHE_FILE_NAME,
    EmbeddingCache,
    TTLEmbeddingCache,
    hash_text,
)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class TestLookup:
    def test_set_then_get_returns_embedding(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('hello world', [0.1, 0.2, 0.3], 'model-a')
        assert cache.get('hello world') == [0.1, 0.2, 0.3]

    def test_last_write_wins(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('text', [1.0, 0.0])
        cache.set('text', [0.0, 1.0])
        assert cache.get('text') == [0.0, 1.0]
        assert len(cache) == 1

    def test_exact_text_is_the_key(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('Text', [1.0])
        assert cache.get('text') is None
        assert cache.get('Text ') is None

    def test_returned_embedding_is_a_copy(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('text', [1.0, 2.0])
        cache.get('text').append(3.0)
        assert cache.get('text') == [1.0, 2.0]

    def test_disabled_cache_never_stores(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, enabled=False, clock=clock)
        cache.set('text', [1.0])
        assert cache.get('text') is None
        assert len(cache) == 0
        assert cache.get_stats().misses == 0

    def test_hash_is_truncated_sha256(self):
        key = hash_text('hello')
        assert len(key) == 16
        assert key == '2cf24dba5fb0a30e'

    def test_batch_get_is_positional(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('b', [2.0])
        results = cache.batch_get(['a', 'b', 'c'])
        assert [r['text'] for r in results] == ['a', 'b', 'c']
        assert [r['cached'] for r in results] == [False, True, False]
        assert results[1]['embedding'] == [2.0]

    def test_batch_set_stores_all(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.batch_set([
            {'text': 'a', 'embedding': [1.0], 'model': 'm', 'tokens_used': 3},
            {'text': 'b', 'embedding': [2.0]},
        ])
        assert cache.get('a') == [1.0]
        assert cache.get('b') == [2.0]
        assert cache.model == 'unknown'


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

class TestStats:
    def test_hit_and_miss_rates(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('a', [1.0])
        cache.get('a')
        cache.get('a')
        cache.get('missing')

        stats = cache.get_stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.miss_rate == pytest.approx(1 / 3)
        assert stats.tokens_saved_by_cache == 2 * AVG_TOKENS_PER_EMBEDDING
        assert stats.tokens_used_with_cache == AVG_TOKENS_PER_EMBEDDING

    def test_empty_stats(self, cache_dir, clock):
        stats = EmbeddingCache(cache_dir, clock=clock).get_stats()
        assert stats.entries == 0
        assert stats.hit_rate == 0.0
        assert stats.miss_rate == 0.0

    def test_memory_estimate(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('ab', [1.0, 2.0])
        # 2 UTF-16 code units plus two 8-byte floats
        assert cache.get_stats().memory_usage_bytes == 4 + 16

    def test_reset_stats_keeps_entries(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('a', [1.0])
        cache.get('a')
        cache.reset_stats()
        assert cache.get_stats().hits == 0
        assert len(cache) == 1

    def test_clear(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('a', [1.0])
        cache.get('a')
        cache.clear()
        assert len(cache) == 0
        assert cache.get_stats().hits == 0


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class TestPersistence:
    def test_save_and_reload(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('first', [0.5, 0.25], 'model-a', 12)
        cache.set('second', [1.0], 'model-a')
        cache.save()

        reloaded = EmbeddingCache(cache_dir, clock=clock)
        assert len(reloaded) == 2
        assert reloaded.get('first') == [0.5, 0.25]

    def test_record_format(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('first', [0.5], 'model-a', 12)
        cache.save()

        with open(os.path.join(cache_dir, CACHE_FILE_NAME), encoding='utf-8') as handle:
            records = [json.loads(line) for line in handle if line.strip()]

        assert len(records) == 1
        record = records[0]
        assert record['textHash'] == hash_text('first')
        assert record['text'] == 'first'
        assert record['embedding'] == [0.5]
        assert record['model'] == 'model-a'
        assert record['tokensUsed'] == 12
        assert record['timestamp'].endswith('Z')

    def test_save_leaves_no_temporary_files(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('a', [1.0])
        cache.save()
        cache.save()
        assert os.listdir(cache_dir) == [CACHE_FILE_NAME]

    def test_corrupt_lines_are_skipped(self, cache_dir, clock):
        os.makedirs(cache_dir)
        lines = [
            '{not json',
            json.dumps({'text': 'no embedding'}),
            json.dumps({'embedding': [1.0]}),
            json.dumps([1, 2, 3]),
            '',
            json.dumps({'text': 'good', 'embedding': [3.0], 'model': 'm', 'timestamp': '2024-01-01T00:00:00.000Z'}),
        ]
        with open(os.path.join(cache_dir, CACHE_FILE_NAME), 'w', encoding='utf-8') as handle:
            handle.write('\n'.join(lines) + '\n')

        cache = EmbeddingCache(cache_dir, clock=clock)
        assert len(cache) == 1
        assert cache.get('good') == [3.0]

    def test_epoch_millisecond_timestamps_load(self, cache_dir, clock):
        os.makedirs(cache_dir)
        record = {'text': 'old', 'embedding': [1.0], 'timestamp': 1_600_000_000_000}
        with open(os.path.join(cache_dir, CACHE_FILE_NAME), 'w', encoding='utf-8') as handle:
            handle.write(json.dumps(record) + '\n')

        cache = EmbeddingCache(cache_dir, clock=clock)
        assert cache.prune_old_entries(max_age_seconds=1) == 1

    def test_jsonl_path_is_used_directly(self, tmp_path, clock):
        path = str(tmp_path / 'custom.jsonl')
        cache = EmbeddingCache(path, clock=clock)
        cache.set('a', [1.0])
        cache.save()
        assert os.path.exists(path)
        assert EmbeddingCache(path, clock=clock).get('a') == [1.0]

    def test_disabled_cache_does_not_touch_disk(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, enabled=False, clock=clock)
        cache.save()
        assert not os.path.exists(cache_dir)


# ---------------------------------------------------------------------------
# Pruning
# ---------------------------------------------------------------------------

class TestPrune:
    def test_prune_removes_only_older_entries(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('old', [1.0])
        clock.advance(100)
        cache.set('new', [2.0])
        clock.advance(50)

        removed = cache.prune_old_entries(max_age_seconds=120)
        assert removed == 1
        assert cache.get('old') is None
        assert cache.get('new') == [2.0]

    def test_entry_exactly_at_age_is_kept(self, cache_dir, clock):
        cache = EmbeddingCache(cache_dir, clock=clock)
        cache.set('edge', [1.0])
        clock.advance(60)
        assert cache.prune_old_entries(max_age_seconds=60) == 0


# ---------------------------------------------------------------------------
# TTL variant
# ---------------------------------------------------------------------------

class TestTTLCache:
    def test_entry_before_ttl_is_returned(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('t', [1.0, 2.0])
        clock.advance(59.9)
        assert cache.get('t') == [1.0, 2.0]

    def test_entry_after_ttl_is_absent(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('t', [1.0, 2.0])
        clock.advance(60.1)
        assert cache.get('t') is None
        assert len(cache) == 0
        assert cache.get_stats().misses == 1

    def test_hit_refreshes_expiry(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('t', [1.0])
        clock.advance(40)
        assert cache.get('t') == [1.0]
        clock.advance(40)
        assert cache.get('t') == [1.0]

    def test_returned_embedding_is_a_copy(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('t', [1.0])
        cache.get('t')[0] = 9.0
        assert cache.get('t') == [1.0]

    def test_cleanup_sweeps_expired(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('a', [1.0])
        clock.advance(30)
        cache.set('b', [2.0])
        clock.advance(31)
        assert cache.cleanup() == 1
        assert len(cache) == 1

    def test_expired_records_are_dropped_on_load(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('a', [1.0])
        cache.save()

        clock.advance(120)
        reloaded = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        assert len(reloaded) == 0

    def test_set_ttl(self, cache_dir, clock):
        cache = TTLEmbeddingCache(cache_dir, ttl_seconds=60, clock=clock)
        cache.set('a', [1.0])
        cache.set_ttl(10)
        clock.advance(11)
        assert cache.get('a') is None
