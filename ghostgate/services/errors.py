"""
Service layer exceptions.

Every error raised by the access layer is a ``ServiceError`` carrying an
``ErrorKind`` tag, so callers can dispatch on ``error.kind`` instead of
walking an ``isinstance`` chain.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Tag identifying the variant of a service error."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UPSTREAM = "upstream"
    CIRCUIT_OPEN = "circuit_open"
    CONFIGURATION = "configuration"


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, service_id: str | None = None):
        self.message = message
        self.service_id = service_id
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(ServiceError):
    """Malformed input: bad URI, unsupported resource/action, bad query."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "details": self.details}


class NotFoundError(ServiceError):
    """The addressed resource does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found"
        if identifier is not None:
            message += f": {identifier}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "resource": self.resource,
            "identifier": self.identifier,
        }


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, service_id: str | None = None, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = "Rate limit exceeded"
        if service_id:
            msg += f" for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retry_after": self.retry_after}


class UpstreamError(ServiceError):
    """The upstream API failed; ``transient`` marks failures worth retrying."""

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        transient: bool = False,
        original: BaseException | None = None,
        service_id: str | None = None,
    ):
        self.status_code = status_code
        self.transient = transient
        self.original = original
        super().__init__(message, service_id=service_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "status_code": self.status_code,
            "transient": self.transient,
        }


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, service_id: str, next_attempt: float | None, reset_after_seconds: float):
        self.next_attempt = next_attempt
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker is OPEN for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "next_attempt": self.next_attempt}


class ConfigurationError(ServiceError):
    """Required configuration is missing or malformed. Fatal at startup."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, missing_keys: list[str] | None = None):
        self.missing_keys = missing_keys or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "missing_keys": self.missing_keys}


def is_retryable(error: BaseException) -> bool:
    """Rate limits and transient upstream failures are worth another attempt."""
    if isinstance(error, RateLimitError):
        return True
    return isinstance(error, UpstreamError) and error.transient
