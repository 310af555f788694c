"""
Response envelope and per-request options.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, TypeVar

from aem_mcp.services.errors import ErrorInfo, error_from_info

T = TypeVar("T")

_SENSITIVE_KEY = re.compile(
    r"passw(or)?d|pwd|token|secret|authorization|cookie|session|api_?key|private_?key",
    re.IGNORECASE,
)
MASK = "***"


@dataclass
class RequestContext:
    """What a request is for. Used for logging and invalidation, not business logic."""

    operation: str | None = None
    resource: str | None = None


@dataclass
class RequestOptions:
    """Per-call options for AEMClient requests."""

    cache: bool = False
    cache_ttl: timedelta | float | None = None
    context: RequestContext = field(default_factory=RequestContext)
    retry_safe: bool | None = None  # None: only GET/HEAD are retried
    invalidate: list[str] = field(default_factory=list)  # Extra paths a write affects
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


@dataclass
class ResponseMetadata:
    """Envelope metadata."""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration: float = 0.0  # Milliseconds
    cached: bool = False
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "duration": round(self.duration, 2),
            "cached": self.cached,
            "status_code": self.status_code,
        }


@dataclass
class AEMResponse(Generic[T]):
    """Uniform result of every AEMClient call."""

    success: bool
    data: T | None = None
    error: ErrorInfo | None = None
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)

    @classmethod
    def ok(cls, data: T, metadata: ResponseMetadata) -> "AEMResponse[T]":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: ErrorInfo, metadata: ResponseMetadata) -> "AEMResponse[T]":
        return cls(success=False, error=error, metadata=metadata)

    def raise_for_error(self) -> "AEMResponse[T]":
        """Raise the typed AEMError if this is an error envelope."""
        if not self.success and self.error is not None:
            raise error_from_info(self.error)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": sanitize(self.data),
            "error": sanitize(self.error.to_dict()) if self.error else None,
            "metadata": self.metadata.to_dict(),
        }


def is_sensitive_key(key: str) -> bool:
    return bool(_SENSITIVE_KEY.search(key))


def sanitize(data: Any) -> Any:
    """Mask values stored under secret-looking keys, recursively."""
    if isinstance(data, dict):
        return {
            k: MASK if isinstance(k, str) and is_sensitive_key(k) else sanitize(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize(item) for item in data]
    return data
