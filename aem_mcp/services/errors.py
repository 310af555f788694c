"""
Service layer exceptions and the central error classification.

Every failure that leaves the request pipeline is an AEMError carrying
its kind and whether it is worth retrying.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    """Error taxonomy shared by the client core and the domain services."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class ErrorInfo:
    """Serializable error placed in a response envelope."""

    kind: ErrorKind
    message: str
    recoverable: bool
    retry_after: float | None = None
    status_code: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "status_code": self.status_code,
            "details": self.details,
        }


class AEMError(Exception):
    """Base exception for every failure raised by the request pipeline."""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        recoverable: bool | None = None,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
        retry_after: float | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if recoverable is not None:
            self.recoverable = recoverable
        self.cause = cause
        self.context = context or {}
        self.retry_after = retry_after
        self.status_code = status_code
        self.details = details or {}
        if cause is not None:
            self.__cause__ = cause

    def to_info(self) -> ErrorInfo:
        details = dict(self.details)
        if self.context:
            details.setdefault("context", self.context)
        return ErrorInfo(
            kind=self.kind,
            message=self.message,
            recoverable=self.recoverable,
            retry_after=self.retry_after,
            status_code=self.status_code,
            details=details,
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, kind={self.kind.value}, "
            f"recoverable={self.recoverable})"
        )


class ValidationError(AEMError):
    """Caller input is malformed."""

    kind = ErrorKind.VALIDATION_ERROR


class NotFoundError(AEMError):
    """Resource does not exist."""

    kind = ErrorKind.NOT_FOUND_ERROR


class AuthenticationError(AEMError):
    """Credentials were rejected."""

    kind = ErrorKind.AUTHENTICATION_ERROR


class AuthorizationError(AEMError):
    """Credentials are valid but lack the privilege."""

    kind = ErrorKind.AUTHORIZATION_ERROR


class ServerError(AEMError):
    """Upstream failed in a way that may clear up on its own."""

    kind = ErrorKind.SERVER_ERROR
    recoverable = True


class RequestTimeoutError(ServerError):
    """Request timed out."""

    def __init__(self, target: str, timeout: float, cause: BaseException | None = None):
        self.timeout = timeout
        super().__init__(
            f"Request to '{target}' timed out after {timeout}s",
            cause=cause,
        )


class CircuitOpenError(ServerError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, target: str, reset_after_seconds: float | None):
        # None while a half-open trial request is still in flight
        self.reset_after_seconds = reset_after_seconds
        if reset_after_seconds is None:
            state = "trial request in progress"
        else:
            state = f"next trial in {reset_after_seconds:.1f}s"
        super().__init__(
            f"Circuit breaker open for '{target}', {state}",
            retry_after=reset_after_seconds,
            details={"circuit_open": True},
        )


class UnrecognizedResponseError(AEMError):
    """AEM answered with a payload of an unexpected shape."""

    kind = ErrorKind.UNKNOWN_ERROR


_STATUS_ERRORS: dict[int, type[AEMError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    410: NotFoundError,
    422: ValidationError,
}

# JCR exception classes reported in AEM error bodies
_JCR_ERRORS: dict[str, type[AEMError]] = {
    "javax.jcr.AccessDeniedException": AuthorizationError,
    "javax.jcr.security.AccessControlException": AuthorizationError,
    "javax.jcr.PathNotFoundException": NotFoundError,
    "javax.jcr.ItemNotFoundException": NotFoundError,
    "javax.jcr.InvalidItemStateException": ValidationError,
    "javax.jcr.ItemExistsException": ValidationError,
    "javax.jcr.RepositoryException": ServerError,
    "java.net.SocketTimeoutException": ServerError,
    "java.net.ConnectException": ServerError,
    "java.io.IOException": ServerError,
}


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_status(
    status_code: int,
    message: str | None = None,
    retry_after: float | None = None,
    details: dict[str, Any] | None = None,
) -> AEMError:
    """Build the error for a non-2xx HTTP status."""
    message = message or f"HTTP {status_code}"

    error_cls = _STATUS_ERRORS.get(status_code)
    if error_cls is not None:
        return error_cls(message, status_code=status_code, details=details)

    if status_code in (408, 429) or 500 <= status_code < 600:
        return ServerError(
            message,
            retry_after=retry_after if status_code == 429 else None,
            status_code=status_code,
            details=details,
        )

    if 400 <= status_code < 500:
        return ValidationError(message, status_code=status_code, details=details)

    return AEMError(message, status_code=status_code, details=details)


def classify_jcr_exception(class_name: str | None, message: str) -> AEMError:
    """Build the error for an exception class named in an AEM body."""
    details = {"exception": class_name} if class_name else None
    error_cls = _JCR_ERRORS.get(class_name or "")
    if error_cls is None:
        # AEM answered and refused; repeating the call will not change that
        return ServerError(message, recoverable=False, details=details)
    return error_cls(message, details=details)


def classify_exception(exc: BaseException, target: str = "aem", timeout: float = 0.0) -> AEMError:
    """Wrap an arbitrary exception raised while talking to AEM."""
    if isinstance(exc, AEMError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(target, timeout, cause=exc)

    if isinstance(exc, httpx.TransportError):
        return ServerError(f"Connection to '{target}' failed: {exc}", cause=exc)

    return AEMError(
        f"Unexpected error: {type(exc).__name__}: {exc}",
        kind=ErrorKind.UNKNOWN_ERROR,
        recoverable=False,
        cause=exc,
    )


_KIND_ERRORS: dict[ErrorKind, type[AEMError]] = {
    ErrorKind.VALIDATION_ERROR: ValidationError,
    ErrorKind.NOT_FOUND_ERROR: NotFoundError,
    ErrorKind.AUTHENTICATION_ERROR: AuthenticationError,
    ErrorKind.AUTHORIZATION_ERROR: AuthorizationError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.UNKNOWN_ERROR: AEMError,
}


def error_from_info(info: ErrorInfo) -> AEMError:
    """Rebuild the typed exception described by an envelope error."""
    error_cls = _KIND_ERRORS.get(info.kind, AEMError)
    return error_cls(
        info.message,
        kind=info.kind,
        recoverable=info.recoverable,
        retry_after=info.retry_after,
        status_code=info.status_code,
        details=info.details,
    )
