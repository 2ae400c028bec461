"""Resilient execution of remote calls: circuit breaking, retry and pooling."""

from ledgerseed.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerRegistry,
    CircuitState,
)
from ledgerseed.execution.retry_policy import (
    ErrorType,
    RetryConfig,
    RetryPolicy,
    calculate_delay,
    classify_error,
    is_retryable,
    with_retry,
)
from ledgerseed.execution.worker_pool import WorkerPool, split_results

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ErrorType",
    "RetryConfig",
    "RetryPolicy",
    "calculate_delay",
    "classify_error",
    "is_retryable",
    "with_retry",
    "WorkerPool",
    "split_results",
]
