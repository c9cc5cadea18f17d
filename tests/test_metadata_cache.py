"""Tests for the sharded TTL metadata cache."""

import threading

import pytest

from tagr.errors import EvaluationError
from tagr.vtags import CachedMetadataSource, MetadataCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestMetadataCache:

    def test_get_put(self):
        cache = MetadataCache()
        assert cache.get("k") == (False, None)
        cache.put("k", 42)
        assert cache.get("k") == (True, 42)
        assert len(cache) == 1

    def test_cached_none_is_found(self):
        cache = MetadataCache()
        cache.put("k", None)
        assert cache.get("k") == (True, None)

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = MetadataCache(ttl_seconds=10, clock=clock)
        cache.put("k", "v")

        clock.now += 9
        assert cache.get("k") == (True, "v")
        clock.now += 1
        assert cache.get("k") == (False, None)
        assert len(cache) == 0

    def test_capacity_evicts_oldest(self):
        cache = MetadataCache(capacity=3, shards=1)
        for k in "abcd":
            cache.put(k, k.upper())

        assert len(cache) == 3
        assert cache.get("a") == (False, None)
        assert cache.get("d") == (True, "D")

    def test_invalid_shards(self):
        with pytest.raises(ValueError):
            MetadataCache(shards=0)

    def test_invalidate_path(self):
        cache = MetadataCache()
        cache.put(("/a", "stat"), 1)
        cache.put(("/a", "lines"), 2)
        cache.put(("/b", "stat"), 3)

        assert cache.invalidate("/a") == 2
        assert cache.get(("/a", "stat"))[0] is False
        assert cache.get(("/b", "stat")) == (True, 3)

    def test_clear(self):
        cache = MetadataCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_stats(self):
        cache = MetadataCache()
        cache.get("x")
        cache.put("x", 1)
        cache.get("x")
        cache.get("x")
        assert cache.stats() == {"entries": 1, "hits": 2, "misses": 1}

    def test_loader_errors_not_cached(self):
        cache = MetadataCache()
        attempts = []

        def failing():
            attempts.append(1)
            raise EvaluationError("/x", "gone")

        for _ in range(2):
            with pytest.raises(EvaluationError):
                cache.get_or_load("/x", failing)
        assert len(attempts) == 2
        assert len(cache) == 0

    def test_concurrent_get_or_load(self):
        cache = MetadataCache()
        barrier = threading.Barrier(8)
        results = []
        errors = []

        def worker(n):
            try:
                barrier.wait()
                for i in range(200):
                    key = ("/f%d" % (i % 50), "stat")
                    results.append(cache.get_or_load(key, lambda k=key: k[0].upper()))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(results) == 8 * 200
        assert all(r.startswith("/F") for r in results)
        assert len(cache) == 50


class TestCachedMetadataSource:

    def test_each_kind_cached_separately(self, fake_source):
        fake_source.add("f", size=3, lines=7)
        source = CachedMetadataSource(fake_source)

        assert source.stat("f").size == 3
        assert source.stat("f").size == 3
        assert source.line_count("f") == 7
        assert source.line_count("f") == 7
        assert fake_source.calls == [("stat", "f"), ("lines", "f")]

    def test_failures_retried(self, fake_source):
        source = CachedMetadataSource(fake_source)
        with pytest.raises(EvaluationError):
            source.stat("later")
        fake_source.add("later", size=1)
        assert source.stat("later").size == 1

    def test_shared_empty_cache_is_used(self, fake_source):
        cache = MetadataCache()
        fake_source.add("f", size=1)
        CachedMetadataSource(fake_source, cache).stat("f")
        assert len(cache) == 1
