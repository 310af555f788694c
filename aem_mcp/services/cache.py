"""
MemoryCache - Async-compatible response cache with TTL and bounded size.

Features:
- Per-entry TTL, expired entries are never served
- LRU, LFU or soonest-to-expire eviction when the cache is full
- Glob / substring pattern invalidation
- Periodic sweep of expired entries (APScheduler interval job)
- Async lock around every operation
"""

import asyncio
import fnmatch
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, TypeVar
from urllib.parse import quote, urlencode

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

T = TypeVar("T")

KEY_PREFIX = "aem"
_GLOB_CHARS = ("*", "?", "[")


class EvictionPolicy(str, Enum):
    """Which entry to drop when the cache is full."""

    LRU = "lru"  # Oldest last access
    LFU = "lfu"  # Lowest access count
    TTL = "ttl"  # Soonest to expire


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    value: T
    timestamp: float
    ttl: float
    access_count: int = 0
    last_accessed: float = 0.0

    @property
    def expires_at(self) -> float:
        return self.timestamp + self.ttl

    def is_expired(self, now: float) -> bool:
        """Check if entry is past its TTL."""
        return now > self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


@dataclass
class CacheConfig:
    """Configuration for the response cache."""

    enabled: bool = True
    default_ttl: timedelta = timedelta(minutes=5)
    max_size: int = 1000
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    sweep_interval: timedelta | None = timedelta(minutes=5)


def _seconds(ttl: timedelta | float) -> float:
    return ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)


def quote_path(path: str) -> str:
    """Percent-quote a resource path the way it appears inside cache keys."""
    return quote(path, safe="/")


def _param_str(value: Any) -> str:
    # Same rendering httpx uses on the wire, None included
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def make_fingerprint(
    method: str,
    path: str,
    params: dict[str, Any] | None = None,
) -> str:
    """
    Generate a cache key from method, path and query parameters.

    Parameters are sorted so argument order never matters. The path is
    percent-quoted, so keys never contain glob metacharacters and the
    '?' separator cannot appear inside the path part.
    """
    key = f"{KEY_PREFIX}:{method.upper()}:{quote_path(path)}"
    if not params:
        return key

    items = []
    for name in sorted(params):
        value = params[name]
        if isinstance(value, (list, tuple)):
            items.extend((name, _param_str(v)) for v in value)
        else:
            items.append((name, _param_str(value)))
    query = urlencode(items)
    if not query:
        return key

    return f"{key}?{query}"


def resource_stem(path: str) -> str:
    """Strip selectors and extension: '/content/a/b.infinity.json' -> '/content/a/b'."""
    path = path.split("?", 1)[0].rstrip("/") or "/"
    head, _, last = path.rpartition("/")
    if "." in last and not last.startswith("."):
        last = last.split(".", 1)[0]
    return f"{head}/{last}" if head or last else "/"


def invalidation_patterns(path: str) -> list[str]:
    """
    Glob patterns for every cached read a write to ``path`` can make stale.

    Covers the resource itself with any selector, extension or query,
    everything beneath it, its ancestors' renderings and listings, and
    servlet reads that name the resource (or an ancestor) in a parameter.
    """
    stem = resource_stem(path)
    quoted = quote_path(stem)
    in_query = quote(stem, safe="")
    patterns = [
        f"{KEY_PREFIX}:*:{quoted}",
        f"{KEY_PREFIX}:*:{quoted}.*",
        f"{KEY_PREFIX}:*:{quoted}/*",
        f"{KEY_PREFIX}:*:{quoted}[?]*",
        f"{KEY_PREFIX}:*:*[?]*={in_query}*",
    ]

    parts = [p for p in stem.split("/") if p]
    for depth in range(len(parts) - 1, 0, -1):
        ancestor = "/" + "/".join(parts[:depth])
        quoted = quote_path(ancestor)
        in_query = quote(ancestor, safe="")
        patterns.extend(
            [
                f"{KEY_PREFIX}:*:{quoted}",
                f"{KEY_PREFIX}:*:{quoted}.*",
                f"{KEY_PREFIX}:*:{quoted}[?]*",
                f"{KEY_PREFIX}:*:*[?]*={in_query}",
                f"{KEY_PREFIX}:*:*[?]*={in_query}&*",
            ]
        )
    return patterns


class CacheBackend(ABC):
    """Contract for response cache stores."""

    _generation: int = 0

    @property
    def generation(self) -> int:
        """Bumped by every removal, so a reader can tell its fetch may be stale."""
        return self._generation

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: timedelta | float | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def has(self, key: str) -> bool: ...

    @abstractmethod
    async def invalidate_pattern(self, pattern: str) -> int: ...

    @abstractmethod
    def get_stats(self) -> CacheStats: ...

    async def close(self) -> None:
        """Release background resources."""


class MemoryCache(CacheBackend):
    """
    In-process cache with TTL, bounded size and pluggable eviction.

    Usage:
        cache = MemoryCache(max_size=100, eviction_policy=EvictionPolicy.LFU)

        value = await cache.get(key)
        if value is None:
            value = await fetch()
            await cache.set(key, value, ttl=timedelta(minutes=1))
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: timedelta | float = timedelta(minutes=5),
        eviction_policy: EvictionPolicy | str = EvictionPolicy.LRU,
        sweep_interval: timedelta | float | None = timedelta(minutes=5),
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self._entries: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = _seconds(default_ttl)
        self._eviction_policy = EvictionPolicy(eviction_policy)
        self._sweep_interval = (
            _seconds(sweep_interval) if sweep_interval is not None else None
        )
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats(max_size=max_size)
        self._scheduler: AsyncIOScheduler | None = None

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> "MemoryCache":
        return cls(
            max_size=config.max_size,
            default_ttl=config.default_ttl,
            eviction_policy=config.eviction_policy,
            sweep_interval=config.sweep_interval,
            clock=clock,
        )

    @property
    def eviction_policy(self) -> EvictionPolicy:
        return self._eviction_policy

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        self._ensure_sweeper()
        async with self._lock:
            entry = self._entries.get(key)
            now = self._clock()

            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:80]}")
                return None

            if entry.is_expired(now):
                del self._entries[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._log(f"EXPIRED: {key[:80]}")
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._entries.move_to_end(key)
            self._stats.hits += 1
            self._log(f"HIT: {key[:80]}")
            return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: timedelta | float | None = None,
    ) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Data to cache
            ttl: Time to live (uses default if not specified)
        """
        self._ensure_sweeper()
        ttl_seconds = _seconds(ttl) if ttl is not None else self._default_ttl

        async with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_size:
                self._evict_one()

            self._entries[key] = CacheEntry(
                value=value,
                timestamp=now,
                ttl=ttl_seconds,
                access_count=0,
                last_accessed=now,
            )
            self._stats.sets += 1
            self._log(f"SET: {key[:80]} (TTL: {ttl_seconds}s)")

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            self._generation += 1
            if key in self._entries:
                del self._entries[key]
                self._stats.deletes += 1
                self._log(f"DELETE: {key[:80]}")
                return True
            return False

    async def has(self, key: str) -> bool:
        """Check presence without touching access statistics."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.expirations += 1
                return False
            return True

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys matching a pattern.

        Patterns containing '*', '?' or '[' are shell-style globs matched
        against the whole key; anything else matches as a substring.

        Returns:
            Number of entries invalidated
        """
        if any(ch in pattern for ch in _GLOB_CHARS):

            def matches(key: str) -> bool:
                return fnmatch.fnmatchcase(key, pattern)

        else:

            def matches(key: str) -> bool:
                return pattern in key

        async with self._lock:
            self._generation += 1
            keys_to_delete = [k for k in self._entries if matches(k)]
            for key in keys_to_delete:
                del self._entries[key]
            self._stats.deletes += len(keys_to_delete)

            if keys_to_delete:
                self._log(
                    f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'"
                )

            return len(keys_to_delete)

    async def clear(self) -> None:
        """Clear all cache entries and reset statistics."""
        async with self._lock:
            self._generation += 1
            count = len(self._entries)
            self._entries.clear()
            self._stats = CacheStats(max_size=self._max_size)
            logger.info(f"Cache cleared: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
            self._stats.expirations += len(expired_keys)

            if expired_keys:
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        self._stats.max_size = self._max_size
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_one(self) -> None:
        """Drop one entry according to the eviction policy. Caller holds the lock."""
        if not self._entries:
            return

        # OrderedDict order is recency order, so min() breaks ties by LRU
        if self._eviction_policy == EvictionPolicy.LFU:
            victim = min(self._entries, key=lambda k: self._entries[k].access_count)
        elif self._eviction_policy == EvictionPolicy.TTL:
            victim = min(self._entries, key=lambda k: self._entries[k].expires_at)
        else:
            victim = next(iter(self._entries))

        del self._entries[victim]
        self._stats.evictions += 1
        self._log(f"EVICT ({self._eviction_policy.value}): {victim[:80]}")

    def _ensure_sweeper(self) -> None:
        """Start the periodic sweep on first use inside a running loop."""
        if self._scheduler is not None or self._sweep_interval is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        self._scheduler = AsyncIOScheduler(event_loop=loop)
        self._scheduler.add_job(
            self.cleanup_expired,
            trigger="interval",
            seconds=self._sweep_interval,
            id="cache_sweep",
            name="Cache expiry sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.debug(f"Cache sweep scheduled every {self._sweep_interval}s")

    async def close(self) -> None:
        """Stop the periodic sweep."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.debug("Cache sweep stopped")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[MemoryCache] {message}")


def cacheable(
    cache: CacheBackend,
    key_generator: Callable[..., str],
    ttl: timedelta | float | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Wrap a coroutine function so its result is cached.

    Usage:
        fetch_tree = cacheable(cache, lambda ns: f"tags:{ns}", ttl=60)(fetch_tree)
    """

    def wrap(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = key_generator(*args, **kwargs)
            cached = await cache.get(key)
            if cached is not None:
                return cached

            generation = cache.generation
            result = await func(*args, **kwargs)
            # An invalidation while fetching means the result may predate a write
            if result is not None and cache.generation == generation:
                await cache.set(key, result, ttl)
            return result

        return wrapper

    return wrap


def invalidates(
    cache: CacheBackend,
    *patterns: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Wrap a coroutine function so the patterns are invalidated after it succeeds."""

    def wrap(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            result = await func(*args, **kwargs)
            for pattern in patterns:
                await cache.invalidate_pattern(pattern)
            return result

        return wrapper

    return wrap
