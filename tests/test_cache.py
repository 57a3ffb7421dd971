from __future__ import annotations

import threading

import pytest

from stratus.cache import LoadingCache

pytestmark = [pytest.mark.xdist_group("unit")]


class TestLoadingCache:
    def test_loads_once_then_serves_from_cache(self):
        calls = []
        cache = LoadingCache(lambda key: calls.append(key) or key.upper())

        assert cache.get("a") == "A"
        assert cache.get("a") == "A"
        assert calls == ["a"]

    def test_none_is_not_stored(self):
        cache = LoadingCache(lambda key: None)

        assert cache.get("a") is None
        assert "a" not in cache

    def test_per_call_loader_overrides_default(self):
        cache = LoadingCache(lambda key: "default")

        assert cache.get("a", lambda: "override") == "override"
        assert cache.get("a") == "override"

    def test_invalidate_forces_reload(self):
        values = iter(["v1", "v2"])
        cache = LoadingCache(lambda key: next(values))

        assert cache.get("a") == "v1"
        cache.invalidate("a")
        assert cache.get("a") == "v2"

    def test_lru_eviction(self):
        cache = LoadingCache(lambda key: key, maximum_size=2)
        cache.get("a")
        cache.get("b")
        cache.get("a")
        cache.get("c")

        assert set(cache) == {"a", "c"}

    def test_invalidate_where(self):
        cache = LoadingCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)

        removed = cache.invalidate_where(lambda key, value: value % 2 == 1)

        assert sorted(removed) == ["a", "c"]
        assert cache.as_map() == {"b": 2}

    def test_invalidate_all(self):
        cache = LoadingCache()
        cache.put("a", 1)

        cache.invalidate_all()

        assert len(cache) == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LoadingCache(maximum_size=0)

    def test_load_bookkeeping_does_not_outlive_loads(self):
        cache = LoadingCache(lambda k: k, maximum_size=10)

        for i in range(1000):
            cache.get(i)
            cache.invalidate(i)

        assert cache._loading == {}
        assert len(cache) == 0

        for i in range(1000):
            cache.get(i)

        assert cache._loading == {}
        assert len(cache) == 10


class TestConcurrency:
    def test_concurrent_readers_share_one_load(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow(key):
            calls.append(key)
            started.set()
            release.wait(5)
            return "value"

        cache = LoadingCache(slow)
        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.get("k"))) for _ in range(4)]
        for t in threads:
            t.start()
        started.wait(5)
        release.set()
        for t in threads:
            t.join()

        assert results == ["value"] * 4
        assert calls == ["k"]

    def test_invalidation_during_load_wins(self):
        loading = threading.Event()
        release = threading.Event()
        values = iter(["stale", "fresh"])

        def slow(key):
            value = next(values)
            if value == "stale":
                loading.set()
                release.wait(5)
            return value

        cache = LoadingCache(slow)
        result = []
        t = threading.Thread(target=lambda: result.append(cache.get("k")))
        t.start()
        loading.wait(5)
        cache.invalidate("k")
        release.set()
        t.join()

        assert result == ["stale"]
        assert "k" not in cache
        assert cache.get("k") == "fresh"
