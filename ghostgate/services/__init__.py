"""
Service layer - resilient calls to the Ghost Admin API.

Provides:
- ErrorClassifier: Maps raw failures onto typed errors
- CircuitBreaker: Stops calling a failing upstream for a cool-down window
- retry_with_backoff: Bounded retries for transient failures
- RemoteInvoker: Breaker + retry around one resource.action call
- GhostAdminAPI: HTTP client for the Admin API
- GhostService: Health probe and content writes
"""

from ghostgate.services.errors import (
    ErrorKind,
    ServiceError,
    ValidationError,
    NotFoundError,
    RateLimitError,
    UpstreamError,
    CircuitOpenError,
    ConfigurationError,
    is_retryable,
)
from ghostgate.services.classifier import ErrorClassifier, classify_error
from ghostgate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from ghostgate.services.retry import BackoffConfig, calculate_retry_delay, retry_with_backoff
from ghostgate.services.deduplicator import RequestDeduplicator
from ghostgate.services.client import CAPABILITIES, BrowseResult, GhostAdminAPI
from ghostgate.services.invoker import InvokeConfig, RemoteInvoker
from ghostgate.services.ghost import GhostService

__all__ = [
    # Errors
    "ErrorKind",
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "RateLimitError",
    "UpstreamError",
    "CircuitOpenError",
    "ConfigurationError",
    "is_retryable",
    # Classifier
    "ErrorClassifier",
    "classify_error",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Retry
    "BackoffConfig",
    "calculate_retry_delay",
    "retry_with_backoff",
    # Deduplicator
    "RequestDeduplicator",
    # Client
    "CAPABILITIES",
    "BrowseResult",
    "GhostAdminAPI",
    # Invoker
    "InvokeConfig",
    "RemoteInvoker",
    # Content
    "GhostService",
]
