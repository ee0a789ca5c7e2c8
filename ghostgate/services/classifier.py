"""
ErrorClassifier - turns raw upstream failures into typed service errors.

Inspects the HTTP status code and/or the network error code carried by an
exception and labels it as validation, not-found, rate-limited, transient
upstream, permanent upstream or configuration. No state, no side effects.
"""

import errno
from typing import Any

import httpx

from ghostgate.services.errors import (
    NotFoundError,
    RateLimitError,
    ServiceError,
    UpstreamError,
    ValidationError,
)

# Default wait when the upstream rate limits without a usable Retry-After header.
DEFAULT_RATE_LIMIT_RETRY_AFTER = 5.0


class ErrorClassifier:
    """
    Classifies exceptions raised while talking to the upstream API.

    Usage:
        try:
            await api.posts.read({}, {"id": post_id})
        except Exception as e:
            raise ErrorClassifier.classify(e, operation="posts.read") from e
    """

    NETWORK_ERROR_CODES = frozenset(
        {
            "ECONNREFUSED",
            "ECONNRESET",
            "ECONNABORTED",
            "ETIMEDOUT",
            "EHOSTUNREACH",
            "ENETUNREACH",
            "EAI_AGAIN",
            "ENOTFOUND",
            "EPIPE",
        }
    )

    @classmethod
    def classify(
        cls,
        error: BaseException,
        operation: str | None = None,
        identifier: Any = None,
        service_id: str | None = None,
    ) -> ServiceError:
        """
        Map ``error`` onto the typed error taxonomy.

        Already-typed errors are returned unchanged, so classifying twice is safe.
        """
        if isinstance(error, ServiceError):
            return error

        label = operation or "upstream request"

        if isinstance(error, (httpx.TimeoutException, TimeoutError)):
            return UpstreamError(
                f"{label} timed out",
                transient=True,
                original=error,
                service_id=service_id,
            )

        status = cls.status_code(error)
        if status is not None:
            return cls._from_status(error, status, label, identifier, service_id)

        code = cls.network_code(error)
        if code is not None or isinstance(error, (httpx.TransportError, ConnectionError)):
            detail = code or type(error).__name__
            return UpstreamError(
                f"{label} failed: network error ({detail})",
                transient=True,
                original=error,
                service_id=service_id,
            )

        return UpstreamError(
            f"{label} failed: {cls.message(error)}",
            transient=False,
            original=error,
            service_id=service_id,
        )

    @classmethod
    def _from_status(
        cls,
        error: BaseException,
        status: int,
        label: str,
        identifier: Any,
        service_id: str | None,
    ) -> ServiceError:
        message = cls.message(error)

        if status in (400, 422):
            return ValidationError(
                f"{label} rejected by upstream: {message}",
                details=cls.validation_details(error),
            )
        if status == 404:
            return NotFoundError(label, identifier)
        if status == 429:
            return RateLimitError(service_id, retry_after=cls.retry_after(error))
        if status >= 500:
            return UpstreamError(
                f"{label} failed with HTTP {status}: {message}",
                status_code=status,
                transient=True,
                original=error,
                service_id=service_id,
            )
        # 401/403 and any other client error: retrying will not help.
        return UpstreamError(
            f"{label} failed with HTTP {status}: {message}",
            status_code=status,
            transient=False,
            original=error,
            service_id=service_id,
        )

    @staticmethod
    def status_code(error: BaseException) -> int | None:
        """Extract an HTTP-like status code from the error or its response."""
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code

        for attr in ("status_code", "status"):
            value = getattr(error, attr, None)
            if isinstance(value, int):
                return value

        response = getattr(error, "response", None)
        if response is not None:
            for attr in ("status_code", "status"):
                value = getattr(response, attr, None)
                if isinstance(value, int):
                    return value
        return None

    @classmethod
    def network_code(cls, error: BaseException) -> str | None:
        """Return the network error code (``ECONNREFUSED`` etc.) if there is one."""
        code = getattr(error, "code", None)
        if isinstance(code, str) and code.upper() in cls.NETWORK_ERROR_CODES:
            return code.upper()

        err_no = getattr(error, "errno", None)
        if isinstance(err_no, int):
            name = errno.errorcode.get(err_no)
            if name in cls.NETWORK_ERROR_CODES:
                return name
        return None

    @staticmethod
    def _body(error: BaseException) -> Any:
        response = getattr(error, "response", None)
        if response is None:
            return None
        if isinstance(response, httpx.Response):
            try:
                return response.json()
            except ValueError:
                return None
        return getattr(response, "data", None)

    @classmethod
    def message(cls, error: BaseException) -> str:
        """Best human-readable message: upstream ``errors[0].message`` first."""
        body = cls._body(error)
        if isinstance(body, dict):
            errors = body.get("errors")
            if errors and isinstance(errors[0], dict) and errors[0].get("message"):
                return str(errors[0]["message"])

        response = getattr(error, "response", None)
        if isinstance(response, httpx.Response) and not str(error):
            return response.text[:200]

        return str(error) or type(error).__name__

    @classmethod
    def validation_details(cls, error: BaseException) -> list[dict[str, Any]]:
        body = cls._body(error)
        if not isinstance(body, dict):
            return []
        details = []
        for item in body.get("errors") or []:
            if not isinstance(item, dict):
                continue
            details.append(
                {
                    "field": item.get("property"),
                    "message": item.get("context") or item.get("message"),
                    "type": item.get("type"),
                }
            )
        return details

    @staticmethod
    def retry_after(error: BaseException) -> float:
        """Seconds to wait before retrying a rate-limited call."""
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            value = headers.get("Retry-After")
            if value is not None:
                try:
                    return max(float(value), 0.0)
                except (TypeError, ValueError):
                    pass
        return DEFAULT_RATE_LIMIT_RETRY_AFTER


def classify_error(
    error: BaseException,
    operation: str | None = None,
    identifier: Any = None,
    service_id: str | None = None,
) -> ServiceError:
    """Module-level shortcut for ``ErrorClassifier.classify``."""
    return ErrorClassifier.classify(
        error, operation=operation, identifier=identifier, service_id=service_id
    )
