"""Unit tests for MemoryCache, fingerprints and invalidation patterns."""

import asyncio
from datetime import timedelta

import pytest

from aem_mcp.services.cache import (
    EvictionPolicy,
    MemoryCache,
    cacheable,
    invalidates,
    invalidation_patterns,
    make_fingerprint,
    resource_stem,
)
from tests.conftest import FakeClock


def _cache(clock: FakeClock, **kwargs) -> MemoryCache:
    kwargs.setdefault("sweep_interval", None)
    return MemoryCache(clock=clock, **kwargs)


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        assert await cache.get("missing") is None
        assert cache.get_stats().misses == 1

    @pytest.mark.asyncio
    async def test_set_and_get(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("k", {"a": 1})
        assert await cache.get("k") == {"a": 1}
        assert cache.get_stats().hits == 1

    @pytest.mark.asyncio
    async def test_entry_served_until_ttl_then_expired(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("k", "v", ttl=1.0)

        clock.advance(0.5)
        assert await cache.get("k") == "v"

        clock.advance(0.6)
        assert await cache.get("k") is None
        stats = cache.get_stats()
        assert stats.expirations == 1
        assert stats.size == 0

    @pytest.mark.asyncio
    async def test_timedelta_ttl(self, clock: FakeClock) -> None:
        cache = _cache(clock, default_ttl=timedelta(seconds=10))
        await cache.set("k", "v")
        clock.advance(9)
        assert await cache.has("k") is True
        clock.advance(2)
        assert await cache.has("k") is False

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_size=2)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("a", 3)
        assert len(cache) == 2
        assert cache.get_stats().evictions == 0
        assert await cache.get("a") == 3

    @pytest.mark.asyncio
    async def test_lru_evicts_least_recently_used(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_size=3, eviction_policy=EvictionPolicy.LRU)
        for key in ("a", "b", "c"):
            await cache.set(key, key)
        await cache.get("a")

        await cache.set("d", "d")

        assert len(cache) == 3
        assert await cache.has("b") is False
        assert await cache.has("a") is True
        assert cache.get_stats().evictions == 1

    @pytest.mark.asyncio
    async def test_lfu_evicts_least_frequently_used(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_size=3, eviction_policy="lfu")
        for key in ("a", "b", "c"):
            await cache.set(key, key)
        for _ in range(3):
            await cache.get("a")
        await cache.get("c")

        await cache.set("d", "d")

        assert await cache.has("b") is False
        assert await cache.has("a") is True
        assert await cache.has("c") is True

    @pytest.mark.asyncio
    async def test_ttl_policy_evicts_soonest_to_expire(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_size=3, eviction_policy=EvictionPolicy.TTL)
        await cache.set("long", 1, ttl=100)
        await cache.set("short", 2, ttl=5)
        await cache.set("medium", 3, ttl=50)

        await cache.set("new", 4, ttl=100)

        assert await cache.has("short") is False
        assert len(cache) == 3

    @pytest.mark.asyncio
    async def test_size_never_exceeds_max(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_size=5)
        for i in range(50):
            await cache.set(f"k{i}", i)
            assert len(cache) <= 5
        assert cache.get_stats().evictions == 45

    @pytest.mark.asyncio
    async def test_invalidate_glob_pattern(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("aem:GET:/content/a.json", 1)
        await cache.set("aem:GET:/content/a/b.json", 2)
        await cache.set("aem:GET:/content/c.json", 3)

        removed = await cache.invalidate_pattern("aem:GET:/content/a*")

        assert removed == 2
        assert await cache.has("aem:GET:/content/c.json") is True

    @pytest.mark.asyncio
    async def test_invalidate_substring_pattern(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("aem:GET:/content/site/en.json", 1)
        await cache.set("aem:GET:/content/other.json", 2)

        assert await cache.invalidate_pattern("/site/") == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_invalidate_is_idempotent(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("aem:GET:/x", 1)
        assert await cache.invalidate_pattern("aem:*:/x") == 1
        assert await cache.invalidate_pattern("aem:*:/x") == 0
        assert await cache.get("aem:GET:/x") is None

    @pytest.mark.asyncio
    async def test_clear_resets_stats(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("a", 1)
        await cache.get("a")
        await cache.clear()
        stats = cache.get_stats()
        assert stats.size == 0
        assert stats.hits == 0

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("short", 1, ttl=1)
        await cache.set("long", 2, ttl=100)
        clock.advance(2)

        assert await cache.cleanup_expired() == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_sweep_job_scheduled_and_stopped(self) -> None:
        cache = MemoryCache(sweep_interval=timedelta(minutes=5))
        await cache.set("a", 1)
        assert cache._scheduler is not None
        assert cache._scheduler.get_job("cache_sweep") is not None

        await cache.close()
        assert cache._scheduler is None

    def test_hit_rate(self) -> None:
        cache = MemoryCache(sweep_interval=None)
        stats = cache.get_stats()
        assert stats.hit_rate == 0.0
        stats.hits, stats.misses = 3, 1
        assert stats.hit_rate == 0.75
        assert stats.to_dict()["hit_rate"] == "75.00%"

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)


class TestFingerprint:
    def test_param_order_does_not_matter(self) -> None:
        a = make_fingerprint("get", "/bin/querybuilder.json", {"path": "/content", "p.limit": 10})
        b = make_fingerprint("GET", "/bin/querybuilder.json", {"p.limit": 10, "path": "/content"})
        assert a == b

    def test_format(self) -> None:
        key = make_fingerprint("GET", "/content/site.json", {"b": True, "a": None, "c": [1, 2]})
        assert key == "aem:GET:/content/site.json?a=&b=true&c=1&c=2"

    def test_no_params(self) -> None:
        assert make_fingerprint("GET", "/content/cq:tags") == "aem:GET:/content/cq%3Atags"

    def test_distinct_inputs_give_distinct_keys(self) -> None:
        assert make_fingerprint("GET", "/a", {"x": "1"}) != make_fingerprint("GET", "/a", {"x": "2"})
        assert make_fingerprint("GET", "/a") != make_fingerprint("HEAD", "/a")
        assert make_fingerprint("GET", "/a?x=1") != make_fingerprint("GET", "/a", {"x": "1"})
        assert make_fingerprint("GET", "/a", {"x": None}) != make_fingerprint("GET", "/a")

    def test_glob_characters_are_quoted(self) -> None:
        key = make_fingerprint("GET", "/content/a*b[1]")
        assert "*" not in key and "[" not in key


class TestInvalidationPatterns:
    @pytest.mark.parametrize(
        "path, stem",
        [
            ("/content/a/b.infinity.json", "/content/a/b"),
            ("/content/a/b", "/content/a/b"),
            ("/content/a/b/", "/content/a/b"),
            ("/content/a/b.html?x=1", "/content/a/b"),
        ],
    )
    def test_resource_stem(self, path: str, stem: str) -> None:
        assert resource_stem(path) == stem

    @pytest.mark.asyncio
    async def test_write_invalidates_related_reads_only(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        stale = [
            make_fingerprint("GET", "/content/site/en/page.json"),
            make_fingerprint("GET", "/content/site/en/page.infinity.json"),
            make_fingerprint("GET", "/content/site/en/page/child.json"),
            make_fingerprint("GET", "/content/site/en.2.json"),
            make_fingerprint("GET", "/content/site.json", {"depth": 1}),
            make_fingerprint("GET", "/bin/querybuilder.json", {"path": "/content/site/en", "fulltext": "x"}),
        ]
        fresh = [
            make_fingerprint("GET", "/content/site/en/pages.json"),
            make_fingerprint("GET", "/content/other/en.json"),
            make_fingerprint("GET", "/bin/querybuilder.json", {"path": "/content/other"}),
        ]
        for key in stale + fresh:
            await cache.set(key, "v")

        for pattern in invalidation_patterns("/content/site/en/page"):
            await cache.invalidate_pattern(pattern)

        for key in stale:
            assert await cache.has(key) is False, key
        for key in fresh:
            assert await cache.has(key) is True, key


class TestWrappers:
    @pytest.mark.asyncio
    async def test_cacheable_calls_once(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        calls = []

        async def load(name: str) -> str:
            calls.append(name)
            return name.upper()

        cached_load = cacheable(cache, lambda name: f"load:{name}", ttl=10)(load)

        assert await cached_load("a") == "A"
        assert await cached_load("a") == "A"
        assert calls == ["a"]

        clock.advance(11)
        await cached_load("a")
        assert calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_cacheable_skips_store_after_invalidation(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def load(name: str) -> str:
            calls.append(name)
            started.set()
            await release.wait()
            return f"{name}-v{len(calls)}"

        cached_load = cacheable(cache, lambda name: f"load:{name}", ttl=60)(load)

        reader = asyncio.create_task(cached_load("a"))
        await started.wait()
        assert await cache.invalidate_pattern("load:*") == 0
        release.set()

        assert await reader == "a-v1"
        assert await cache.has("load:a") is False
        assert await cached_load("a") == "a-v2"
        assert await cached_load("a") == "a-v2"
        assert calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_invalidates_after_success(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("tags:std", 1)

        async def write() -> str:
            return "ok"

        assert await invalidates(cache, "tags:*")(write)() == "ok"
        assert await cache.has("tags:std") is False

    @pytest.mark.asyncio
    async def test_invalidates_skipped_on_failure(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        await cache.set("tags:std", 1)

        async def write() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await invalidates(cache, "tags:*")(write)()
        assert await cache.has("tags:std") is True

    @pytest.mark.asyncio
    async def test_concurrent_access_is_consistent(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_size=10)

        async def writer(i: int) -> None:
            await cache.set(f"k{i}", i)
            await cache.get(f"k{i}")

        await asyncio.gather(*(writer(i) for i in range(100)))
        assert len(cache) == 10
