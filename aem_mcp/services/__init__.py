"""
Client core - resilience patterns for calls to AEM.

Provides:
- MemoryCache: Response cache with TTL and LRU/LFU/TTL eviction
- RetryPolicy: Bounded exponential backoff for recoverable failures
- CircuitBreaker: Fails fast while AEM is unavailable
- AEMClient: Unified client combining all patterns
"""

from aem_mcp.services.errors import (
    AEMError,
    AuthenticationError,
    AuthorizationError,
    CircuitOpenError,
    ErrorInfo,
    ErrorKind,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
    UnrecognizedResponseError,
    ValidationError,
)
from aem_mcp.services.cache import (
    CacheBackend,
    CacheConfig,
    CacheEntry,
    CacheStats,
    EvictionPolicy,
    MemoryCache,
    cacheable,
    invalidates,
    make_fingerprint,
)
from aem_mcp.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from aem_mcp.services.retry import RetryConfig, RetryPolicy
from aem_mcp.services.auth import AuthType, Credentials
from aem_mcp.services.response import (
    AEMResponse,
    RequestContext,
    RequestOptions,
    ResponseMetadata,
    sanitize,
)
from aem_mcp.services.shapes import ResponseShape, detect_shape, parse_response
from aem_mcp.services.client import AEMClient, ClientConfig

__all__ = [
    # Errors
    "AEMError",
    "AuthenticationError",
    "AuthorizationError",
    "CircuitOpenError",
    "ErrorInfo",
    "ErrorKind",
    "NotFoundError",
    "RequestTimeoutError",
    "ServerError",
    "UnrecognizedResponseError",
    "ValidationError",
    # Cache
    "CacheBackend",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "EvictionPolicy",
    "MemoryCache",
    "cacheable",
    "invalidates",
    "make_fingerprint",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    # Auth
    "AuthType",
    "Credentials",
    # Envelope
    "AEMResponse",
    "RequestContext",
    "RequestOptions",
    "ResponseMetadata",
    "sanitize",
    # Shapes
    "ResponseShape",
    "detect_shape",
    "parse_response",
    # Client
    "AEMClient",
    "ClientConfig",
]
