"""Retry with exponential backoff and jitter.

Provides retry for remote ledger API calls with:
- Exponential backoff capped at ``max_delay``
- Optional jitter to distribute retry attempts
- Classification of transient vs permanent errors
- A callback so callers can count retries into their metrics

Usage:
    policy = RetryPolicy(RetryConfig(max_retries=3))

    async def create():
        return await breaker.execute(lambda: client.create_entity(...))

    ref = await policy.execute(
        create,
        on_retry=lambda attempt, error, delay: state.increment_retry_count(),
    )
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

import structlog

from ledgerseed.config import RetrySettings
from ledgerseed.execution.circuit_breaker import CircuitBreakerError
from ledgerseed.utils.exceptions import (
    ApiError,
    ClientApiError,
    ConfigurationError,
    ConflictError,
    DependencyError,
    TransientApiError,
    ValidationError,
)

logger = structlog.get_logger()

T = TypeVar("T")

# Request defects: retrying cannot change the answer
PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 422})
TRANSIENT_STATUS_CODES = frozenset({408, 429})


class ErrorType(str, Enum):
    """Classification of error types for retry decisions."""

    TRANSIENT = "transient"  # Temporary failure, retry likely to succeed
    CONFLICT = "conflict"  # Entity already exists, resolved by lookup
    CIRCUIT_OPEN = "circuit_open"  # Rejected locally, retrying would only spin
    PERMANENT = "permanent"  # Won't succeed on retry


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3  # Total attempts, including the first
    base_delay: float = 0.1  # Base delay in seconds
    max_delay: float = 2.0  # Maximum delay cap
    jitter_factor: float = 0.0  # Random jitter (0-1)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryConfig":
        return cls(
            max_retries=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter_factor=settings.jitter_factor,
        )


@dataclass
class RetryMetrics:
    """Metrics for retry operations."""

    total_attempts: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_delay_seconds: float = 0.0
    retries_by_type: dict[ErrorType, int] = field(default_factory=dict)


def classify_error(error: BaseException) -> ErrorType:
    """Classify an error as transient, conflict, circuit-open or permanent.

    Args:
        error: Exception to classify.

    Returns:
        ErrorType classification.
    """
    if isinstance(error, CircuitBreakerError):
        return ErrorType.CIRCUIT_OPEN

    if isinstance(error, ConflictError):
        return ErrorType.CONFLICT

    if isinstance(error, TransientApiError):
        return ErrorType.TRANSIENT

    if isinstance(error, ClientApiError):
        return ErrorType.PERMANENT

    if isinstance(error, ApiError) and error.status_code is not None:
        if error.status_code == 409:
            return ErrorType.CONFLICT
        if error.status_code in PERMANENT_STATUS_CODES:
            return ErrorType.PERMANENT
        if error.status_code in TRANSIENT_STATUS_CODES or error.status_code >= 500:
            return ErrorType.TRANSIENT
        if 400 <= error.status_code < 500:
            return ErrorType.PERMANENT

    if isinstance(error, (ValidationError, ConfigurationError, DependencyError)):
        return ErrorType.PERMANENT

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorType.TRANSIENT

    if isinstance(error, (ValueError, TypeError, KeyError)):
        return ErrorType.PERMANENT

    # Default to transient for unknown errors
    return ErrorType.TRANSIENT


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth another attempt."""
    return classify_error(error) == ErrorType.TRANSIENT


def calculate_delay(
    attempt: int,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    jitter_factor: float = 0.0,
) -> float:
    """Calculate delay before the next attempt.

    Args:
        attempt: Number of the attempt that just failed (1-indexed).
        base_delay: Base delay in seconds.
        max_delay: Upper bound for the delay.
        jitter_factor: Fraction of the delay to randomize by.

    Returns:
        Delay in seconds.
    """
    delay = min(base_delay * (2 ** attempt), max_delay)

    if jitter_factor > 0:
        jitter_range = delay * jitter_factor
        delay += random.uniform(-jitter_range, jitter_range)
        delay = min(delay, max_delay)

    return max(delay, 0.0)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    *,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    jitter_factor: float = 0.0,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    context: dict[str, Any] | None = None,
) -> T:
    """Execute an async operation, retrying transient failures.

    Args:
        func: Zero-argument coroutine function to call.
        max_retries: Maximum number of attempts in total.
        base_delay: Base backoff delay in seconds.
        max_delay: Backoff ceiling in seconds.
        jitter_factor: Random jitter applied to each delay (0-1).
        on_retry: Called with (attempt, error, delay) before each sleep.
        context: Extra fields for log events.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error, once it is not retryable or attempts ran out.
    """
    context = context or {}
    attempts = max(max_retries, 1)
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func()
        except Exception as e:
            error_type = classify_error(e)

            if error_type != ErrorType.TRANSIENT:
                logger.debug(
                    "Not retrying operation",
                    error=str(e),
                    error_type=error_type.value,
                    attempt=attempt,
                    **context,
                )
                raise

            if attempt >= attempts:
                logger.warning(
                    "Operation failed after max retries",
                    error=str(e),
                    attempts=attempt,
                    **context,
                )
                raise

            delay = calculate_delay(attempt, base_delay, max_delay, jitter_factor)

            logger.info(
                "Retrying operation",
                error=str(e),
                attempt=attempt,
                next_delay=delay,
                **context,
            )

            if on_retry is not None:
                on_retry(attempt, e, delay)

            await asyncio.sleep(delay)


class RetryPolicy:
    """Retry policy shared by every entity kind of a run.

    Wraps ``with_retry`` with a fixed configuration and keeps aggregate
    metrics across calls.

    Example:
        policy = RetryPolicy(RetryConfig(max_retries=5, base_delay=0.5))
        ref = await policy.execute(create_asset)
    """

    def __init__(self, config: RetryConfig | None = None):
        """Initialize retry policy.

        Args:
            config: Retry configuration.
        """
        self.config = config or RetryConfig()
        self.metrics = RetryMetrics()
        self.logger = logger.bind(service="retry_policy")

    async def execute(
        self,
        func: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, BaseException, float], None] | None = None,
        context: dict[str, Any] | None = None,
    ) -> T:
        """Execute a function with retry logic.

        Args:
            func: Async function to execute.
            on_retry: Optional callback invoked before each retry.
            context: Optional context for logging.

        Returns:
            The function's result.
        """

        async def _attempt() -> T:
            self.metrics.total_attempts += 1
            return await func()

        def _on_retry(attempt: int, error: BaseException, delay: float) -> None:
            error_type = classify_error(error)
            self.metrics.retries_by_type[error_type] = (
                self.metrics.retries_by_type.get(error_type, 0) + 1
            )
            self.metrics.total_delay_seconds += delay
            if on_retry is not None:
                on_retry(attempt, error, delay)

        try:
            result = await with_retry(
                _attempt,
                self.config.max_retries,
                base_delay=self.config.base_delay,
                max_delay=self.config.max_delay,
                jitter_factor=self.config.jitter_factor,
                on_retry=_on_retry,
                context=context,
            )
        except Exception:
            self.metrics.failed_calls += 1
            raise

        self.metrics.successful_calls += 1
        return result

    def get_metrics(self) -> dict[str, Any]:
        """Get retry metrics.

        Returns:
            Dict of metrics.
        """
        calls = self.metrics.successful_calls + self.metrics.failed_calls
        return {
            "total_attempts": self.metrics.total_attempts,
            "successful_calls": self.metrics.successful_calls,
            "failed_calls": self.metrics.failed_calls,
            "total_delay_seconds": self.metrics.total_delay_seconds,
            "success_rate": self.metrics.successful_calls / calls if calls else 0.0,
            "retries_by_type": {
                k.value: v for k, v in self.metrics.retries_by_type.items()
            },
        }
