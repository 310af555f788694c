"""
AEMClient - Async HTTP client for AEM with resilience patterns.

Combines:
- MemoryCache for repeat reads
- CircuitBreaker to fail fast while AEM is down
- RetryPolicy for transient failures

Request flow:
    cache check → circuit breaker → retried transport call →
    cache update / write invalidation → AEMResponse envelope
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

import httpx
from loguru import logger

from aem_mcp.services.auth import Credentials, TokenProvider
from aem_mcp.services.cache import (
    CacheBackend,
    CacheConfig,
    MemoryCache,
    invalidation_patterns,
    make_fingerprint,
)
from aem_mcp.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from aem_mcp.services.errors import (
    AEMError,
    CircuitOpenError,
    classify_exception,
    classify_status,
    parse_retry_after,
)
from aem_mcp.services.response import (
    AEMResponse,
    RequestContext,
    RequestOptions,
    ResponseMetadata,
    sanitize,
)
from aem_mcp.services.retry import RetryConfig, RetryPolicy
from aem_mcp.services.shapes import extract_body_error

READ_METHODS = frozenset({"GET", "HEAD"})
_MAX_ERROR_BODY = 500


@dataclass(frozen=True)
class ClientConfig:
    """Everything the client core needs to talk to one AEM instance."""

    base_url: str
    timeout: float = 30.0
    credentials: Credentials = field(default_factory=Credentials)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ClientStats:
    """Request counters for one client."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cached: int = 0
    short_circuited: int = 0
    total_duration: float = 0.0  # Milliseconds, network calls only

    @property
    def average_duration(self) -> float:
        calls = self.succeeded + self.failed
        if calls == 0:
            return 0.0
        return self.total_duration / calls

    def to_dict(self, retried: int = 0) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cached": self.cached,
            "short_circuited": self.short_circuited,
            "retried": retried,
            "average_duration_ms": round(self.average_duration, 2),
        }


class AEMClient:
    """
    HTTP client for one AEM instance with caching, retries and a circuit breaker.

    Every call returns an AEMResponse; failures become error envelopes
    instead of exceptions. One client owns its cache and breaker, so the
    read and write servers each build their own.

    Usage:
        async with AEMClient(ClientConfig(base_url="https://author.example.com")) as client:
            response = await client.get(
                "/content/site/en.json",
                options=RequestOptions(cache=True, cache_ttl=60),
            )
            if response.success:
                print(response.data)
    """

    def __init__(
        self,
        config: ClientConfig,
        cache: CacheBackend | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config

        if cache is not None:
            self._cache: CacheBackend | None = cache
        elif config.cache.enabled:
            self._cache = MemoryCache.from_config(config.cache, clock=clock)
        else:
            self._cache = None

        self._breaker = CircuitBreaker(self.target, config.circuit_breaker, clock=clock)
        self._retry = RetryPolicy(config.retry, sleep=sleep)
        self._auth = TokenProvider(config.credentials, clock=clock)
        self._transport = transport
        self._stats = ClientStats()

        # Bumped by every write invalidation; reads started before a bump never fill the cache
        self._generation = 0

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def target(self) -> str:
        """Name of the upstream instance, used for the circuit breaker and logs."""
        parsed = urlparse(self.config.base_url)
        return parsed.netloc or self.config.base_url

    @property
    def cache(self) -> CacheBackend | None:
        return self._cache

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    # Verbs

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> AEMResponse[Any]:
        """Perform a GET request."""
        return await self.request("GET", path, params=params, options=options)

    async def post(
        self,
        path: str,
        data: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
        json_data: Any = None,
    ) -> AEMResponse[Any]:
        """Perform a POST request with a form-encoded (or JSON) body."""
        return await self.request(
            "POST", path, data=data, json_data=json_data, options=options
        )

    async def put(
        self,
        path: str,
        data: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
        json_data: Any = None,
    ) -> AEMResponse[Any]:
        """Perform a PUT request."""
        return await self.request(
            "PUT", path, data=data, json_data=json_data, options=options
        )

    async def delete(
        self,
        path: str,
        options: RequestOptions | None = None,
    ) -> AEMResponse[Any]:
        """Perform a DELETE request."""
        return await self.request("DELETE", path, options=options)

    async def upload(
        self,
        path: str,
        content: bytes,
        filename: str = "upload",
        mime_type: str = "application/octet-stream",
        metadata: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> AEMResponse[Any]:
        """Upload a file as multipart/form-data, with metadata as extra form fields."""
        files = {"file": (filename, content, mime_type)}
        data = {k: str(v) for k, v in (metadata or {}).items()}
        return await self.request("POST", path, data=data, files=files, options=options)

    # Pipeline

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json_data: Any = None,
        files: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> AEMResponse[Any]:
        """
        Make an HTTP request through cache, circuit breaker and retry policy.

        Args:
            method: HTTP method (GET, POST, ...)
            path: Path below the configured base URL
            params: Query parameters
            data: Form fields
            json_data: JSON body (instead of form fields)
            files: Multipart file parts
            options: Caching, retry and invalidation options

        Returns:
            AEMResponse envelope; never raises except on cancellation
        """
        options = options or RequestOptions()
        method = method.upper()
        metadata = ResponseMetadata()
        label = options.context.operation or f"{method} {path}"
        is_read = method in READ_METHODS
        use_cache = is_read and options.cache and self._cache is not None
        cache_key = make_fingerprint(method, path, params) if use_cache else None
        started = time.perf_counter()
        self._stats.total += 1

        # Check cache first (reads only)
        if use_cache:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                self._stats.cached += 1
                metadata.cached = True
                metadata.duration = (time.perf_counter() - started) * 1000
                logger.debug(f"Cache hit for {label} [{metadata.request_id}]")
                return AEMResponse.ok(cached, metadata)

        # Check circuit breaker
        if not self._breaker.should_allow():
            self._stats.short_circuited += 1
            error = CircuitOpenError(self.target, self._breaker.get_time_until_reset())
            error.context = self._error_context(method, path, options, metadata)
            logger.warning(f"{label} rejected: {error.message}")
            metadata.duration = (time.perf_counter() - started) * 1000
            return AEMResponse.fail(error.to_info(), metadata)

        generation = self._generation
        retry_attempts = self._retry_attempts(method, options)

        async def attempt() -> Any:
            return await self._send(
                method, path, params, data, json_data, files, options, metadata
            )

        try:
            body = await self._retry.execute(
                attempt,
                context=self._error_context(method, path, options, metadata),
                retry_attempts=retry_attempts,
            )
        except asyncio.CancelledError:
            self._breaker.release_trial()
            raise
        except AEMError as e:
            # Non-recoverable errors mean AEM answered, so they do not trip the breaker
            if e.recoverable:
                self._breaker.record_failure()
            else:
                self._breaker.record_success()
            return self._fail(e, method, path, label, metadata, started)

        self._breaker.record_success()

        if use_cache and body is not None and generation == self._generation:
            await self._cache.set(
                cache_key,
                body,
                options.cache_ttl
                if options.cache_ttl is not None
                else self.config.cache.default_ttl,
            )

        if not is_read:
            # The write already landed; invalidation completes even if the caller is cancelled
            await asyncio.shield(self._invalidate_after_write(path, options))

        metadata.duration = (time.perf_counter() - started) * 1000
        self._stats.succeeded += 1
        self._stats.total_duration += metadata.duration
        logger.debug(
            f"{label} completed in {metadata.duration:.1f}ms [{metadata.request_id}]"
        )
        return AEMResponse.ok(body, metadata)

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        data: dict[str, Any] | None,
        json_data: Any,
        files: dict[str, Any] | None,
        options: RequestOptions,
        metadata: ResponseMetadata,
    ) -> Any:
        """Execute one HTTP attempt and decode the body."""
        client = await self._get_http_client()
        timeout = options.timeout or self.config.timeout

        headers = {
            "Accept": "application/json",
            "X-Request-ID": metadata.request_id,
            **self.config.headers,
            **await self._auth.get_headers(client),
            **options.headers,
        }

        logger.debug(
            f"AEM request {method} {path} params={sanitize(params)} [{metadata.request_id}]"
        )

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                data=data,
                json=json_data,
                files=files,
                headers=headers,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            raise classify_exception(e, self.target, timeout) from e

        metadata.status_code = response.status_code
        body = self._decode(response)

        if response.status_code >= 400:
            if response.status_code == 401:
                self._auth.invalidate()
            raise classify_status(
                response.status_code,
                message=f"{method} {path} returned HTTP {response.status_code}",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                details={"body": self._truncate(body)},
            )

        body_error = extract_body_error(body)
        if body_error is not None:
            body_error.status_code = body_error.status_code or response.status_code
            body_error.message = f"{method} {path}: {body_error.message}"
            body_error.args = (body_error.message,)
            raise body_error

        return body

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        """Decode JSON bodies, fall back to text."""
        if not response.content:
            return None

        content_type = response.headers.get("Content-Type", "")
        text = response.text
        if "json" in content_type or text.lstrip()[:1] in ("{", "["):
            try:
                return json.loads(text)
            except ValueError:
                if "json" in content_type:
                    logger.warning("AEM sent a JSON content type with an invalid body")
        return text

    @staticmethod
    def _truncate(body: Any) -> Any:
        if isinstance(body, str):
            return body[:_MAX_ERROR_BODY]
        return sanitize(body)

    def _retry_attempts(self, method: str, options: RequestOptions) -> int:
        """Reads retry by default; writes only when the caller marked them retry-safe."""
        retry_safe = options.retry_safe
        if retry_safe is None:
            retry_safe = method in READ_METHODS
        return self.config.retry.retry_attempts if retry_safe else 0

    async def _invalidate_after_write(self, path: str, options: RequestOptions) -> None:
        """Drop cached reads a successful write may have made stale."""
        if self._cache is None:
            return

        self._generation += 1
        paths = {path, *options.invalidate}
        if options.context.resource:
            paths.add(options.context.resource)

        removed = 0
        for written in sorted(paths):
            for pattern in invalidation_patterns(written):
                removed += await self._cache.invalidate_pattern(pattern)

        if removed:
            logger.debug(f"Write to {path} invalidated {removed} cached entries")

    def _fail(
        self,
        error: AEMError,
        method: str,
        path: str,
        label: str,
        metadata: ResponseMetadata,
        started: float,
    ) -> AEMResponse[Any]:
        metadata.duration = (time.perf_counter() - started) * 1000
        self._stats.failed += 1
        self._stats.total_duration += metadata.duration
        logger.error(
            f"AEM request failed: {label} ({method} {path}) [{metadata.request_id}] "
            f"{error.kind.value}: {error.message} ({metadata.duration:.1f}ms)"
        )
        return AEMResponse.fail(error.to_info(), metadata)

    @staticmethod
    def _error_context(
        method: str,
        path: str,
        options: RequestOptions,
        metadata: ResponseMetadata,
    ) -> dict[str, Any]:
        context: RequestContext = options.context
        return {
            "request_id": metadata.request_id,
            "method": method,
            "path": path,
            "operation": context.operation or f"{method} {path}",
            "resource": context.resource or path,
        }

    # Operational controls

    def get_stats(self) -> dict[str, Any]:
        """Cache, circuit breaker and request statistics."""
        return {
            "cache": self._cache.get_stats().to_dict() if self._cache else None,
            "circuit_breaker": self._breaker.get_status(),
            "requests": self._stats.to_dict(retried=self._retry.retries),
        }

    async def clear_cache(self, pattern: str | None = None) -> int:
        """Clear cache entries, optionally matching a pattern. Returns the number removed."""
        if self._cache is None:
            return 0
        if pattern:
            return await self._cache.invalidate_pattern(pattern)
        removed = self._cache.get_stats().size
        await self._cache.clear()
        return removed

    def reset_circuit_breaker(self) -> None:
        """Force the breaker closed after the upstream is known to be healthy."""
        self._breaker.reset()

    async def close(self) -> None:
        """Close the HTTP client and stop background jobs."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

        if self._cache is not None:
            await self._cache.close()
        logger.debug("AEMClient closed")

    async def __aenter__(self) -> "AEMClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
