"""Circuit breaker protecting the ledger API from being hammered during outages.

Implements the Circuit Breaker pattern per operation and parent (for example
``asset.create:<ledger_id>``). The circuit breaker counts failures and
temporarily stops requests to a degraded dependency.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Dependency is failing, requests are rejected immediately
- HALF_OPEN: A single probe request tests whether it has recovered

Transitions:
- CLOSED → OPEN: failures >= failure_threshold once requests >= minimum_requests
- OPEN → HALF_OPEN: After recovery_timeout seconds
- HALF_OPEN → CLOSED: successes / requests >= success_threshold
- HALF_OPEN → OPEN: On any failure
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from ledgerseed.config import CircuitBreakerSettings
from ledgerseed.utils.exceptions import (
    ClientApiError,
    ConflictError,
    LedgerSeedError,
    ValidationError,
)

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 3  # Failures before opening
    recovery_timeout: float = 30.0  # Seconds before trying half-open
    monitoring_period: float = 120.0  # Idle seconds after which counters reset
    minimum_requests: int = 2  # Requests required before the circuit may open
    success_threshold: float = 0.6  # Success ratio needed to close from half-open

    @classmethod
    def from_settings(cls, settings: CircuitBreakerSettings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.failure_threshold,
            recovery_timeout=settings.recovery_timeout,
            monitoring_period=settings.monitoring_period,
            minimum_requests=settings.minimum_requests,
            success_threshold=settings.success_threshold,
        )


@dataclass
class CircuitMetrics:
    """Counters for a circuit breaker.

    ``requests``, ``successes`` and ``failures`` drive state decisions and are
    zeroed on every transition; the ``total_*`` counters are lifetime totals.
    """

    requests: int = 0
    successes: int = 0
    failures: int = 0
    total_calls: int = 0
    total_failures: int = 0
    rejected_calls: int = 0
    times_opened: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None
    state_changed_at: float = 0.0
    next_attempt_time: float | None = None

    def record_success(self, now: float) -> None:
        """Record a successful call."""
        self.requests += 1
        self.successes += 1
        self.total_calls += 1
        self.last_success_time = now

    def record_failure(self, now: float) -> None:
        """Record a failed call."""
        self.requests += 1
        self.failures += 1
        self.total_calls += 1
        self.total_failures += 1
        self.last_failure_time = now

    def record_late(self, now: float, failed: bool) -> None:
        """Record a call that finished after the circuit left CLOSED.

        Only lifetime totals move; the decision counters belong to the probe.
        """
        self.total_calls += 1
        if failed:
            self.total_failures += 1
            self.last_failure_time = now
        else:
            self.last_success_time = now

    def record_rejection(self) -> None:
        """Record a rejected call (circuit open)."""
        self.rejected_calls += 1

    def reset_counters(self) -> None:
        self.requests = 0
        self.successes = 0
        self.failures = 0

    @property
    def last_activity(self) -> float | None:
        times = [t for t in (self.last_failure_time, self.last_success_time) if t is not None]
        return max(times) if times else None


class CircuitBreakerError(LedgerSeedError):
    """Raised when the circuit is open and the request is rejected."""

    def __init__(self, circuit_id: str, state: CircuitState, next_attempt_time: float | None):
        self.circuit_id = circuit_id
        self.state = state
        self.next_attempt_time = next_attempt_time
        super().__init__(
            f"Circuit breaker '{circuit_id}' is {state.value}",
            {"circuit_id": circuit_id, "next_attempt_time": next_attempt_time},
        )


def counts_as_failure(error: BaseException) -> bool:
    """Check whether an error says the dependency is unhealthy.

    Client errors, conflicts and local validation errors mean the API
    answered; they never count towards opening the circuit.
    """
    return not isinstance(error, (ClientApiError, ConflictError, ValidationError))


class CircuitBreaker:
    """Failure gate for one operation and parent.

    Example:
        breaker = CircuitBreaker("asset.create")
        ref = await breaker.execute(lambda: client.create_entity(...))
    """

    def __init__(
        self,
        circuit_id: str,
        config: CircuitBreakerConfig | None = None,
    ):
        self.circuit_id = circuit_id
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.metrics = CircuitMetrics(state_changed_at=time.time())
        self._probe_in_flight = False
        self.logger = logger.bind(service="circuit_breaker", circuit_id=circuit_id)

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """Execute an async operation with circuit breaker protection.

        Args:
            func: Zero-argument coroutine function performing the remote call.

        Returns:
            The operation's result.

        Raises:
            CircuitBreakerError: If the circuit is open; ``func`` is not called.
        """
        is_probe = self._acquire()

        try:
            result = await func()
        except Exception as e:
            if counts_as_failure(e):
                self.record_failure(probe=is_probe)
            else:
                self.record_success(probe=is_probe)
            raise
        finally:
            if is_probe:
                self._probe_in_flight = False

        self.record_success(probe=is_probe)
        return result

    def _acquire(self) -> bool:
        """Decide whether a call may proceed.

        Returns:
            True if the call is the half-open probe.

        Raises:
            CircuitBreakerError: If the call is rejected.
        """
        now = time.time()

        if self.state == CircuitState.CLOSED:
            self._expire_stale_counters(now)
            return False

        if self.state == CircuitState.OPEN:
            if self.metrics.next_attempt_time is not None and now < self.metrics.next_attempt_time:
                self._reject()
            self._transition_to(CircuitState.HALF_OPEN)

        # HALF_OPEN: exactly one probe at a time
        if self._probe_in_flight:
            self._reject()
        self._probe_in_flight = True
        return True

    def _reject(self) -> None:
        self.metrics.record_rejection()
        raise CircuitBreakerError(self.circuit_id, self.state, self.metrics.next_attempt_time)

    def _expire_stale_counters(self, now: float) -> None:
        last_activity = self.metrics.last_activity
        if last_activity is not None and now - last_activity > self.config.monitoring_period:
            if self.metrics.requests:
                self.logger.debug(
                    "Resetting stale circuit counters",
                    requests=self.metrics.requests,
                    failures=self.metrics.failures,
                )
            self.metrics.reset_counters()

    def record_success(self, probe: bool = False) -> None:
        """Record a successful request.

        In half-open only the probe decides the next state. A call admitted
        while the circuit was still closed is counted but changes nothing.
        """
        if self.state == CircuitState.HALF_OPEN and not probe:
            self.metrics.record_late(time.time(), failed=False)
            return

        self.metrics.record_success(time.time())

        if self.state == CircuitState.HALF_OPEN:
            ratio = self.metrics.successes / self.metrics.requests
            if ratio >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)

    def record_failure(self, probe: bool = False) -> None:
        """Record a failed request; in half-open only the probe reopens."""
        if self.state == CircuitState.HALF_OPEN and not probe:
            self.metrics.record_late(time.time(), failed=True)
            return

        self.metrics.record_failure(time.time())

        if self.state == CircuitState.HALF_OPEN:
            # Any failure in half-open returns to open
            self._transition_to(CircuitState.OPEN)

        elif self.state == CircuitState.CLOSED:
            if (
                self.metrics.requests >= self.config.minimum_requests
                and self.metrics.failures >= self.config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state.

        Args:
            new_state: New circuit state.
        """
        old_state = self.state
        now = time.time()
        failures = self.metrics.failures
        requests = self.metrics.requests

        self.state = new_state
        self.metrics.state_changed_at = now
        self.metrics.reset_counters()

        if new_state == CircuitState.OPEN:
            self.metrics.times_opened += 1
            self.metrics.next_attempt_time = now + self.config.recovery_timeout
        elif new_state == CircuitState.CLOSED:
            self.metrics.next_attempt_time = None

        log = self.logger.warning if new_state == CircuitState.OPEN else self.logger.info
        log(
            "Circuit breaker state transition",
            old_state=old_state.value,
            new_state=new_state.value,
            failures=failures,
            requests=requests,
            next_attempt_time=self.metrics.next_attempt_time,
        )

    def is_available(self) -> bool:
        """Check whether a call would currently be allowed through."""
        if self.state == CircuitState.HALF_OPEN:
            return not self._probe_in_flight
        if self.state == CircuitState.OPEN:
            next_attempt = self.metrics.next_attempt_time
            return next_attempt is None or time.time() >= next_attempt
        return True

    def manual_reset(self) -> None:
        """Force the circuit closed and clear its counters."""
        self.state = CircuitState.CLOSED
        self.metrics = CircuitMetrics(state_changed_at=time.time())
        self._probe_in_flight = False
        self.logger.info("Circuit breaker manually reset")

    def get_stats(self) -> dict[str, Any]:
        """Get the circuit's state, counters and configuration."""
        return {
            "circuit_id": self.circuit_id,
            "state": self.state.value,
            "metrics": {
                "requests": self.metrics.requests,
                "successes": self.metrics.successes,
                "failures": self.metrics.failures,
                "total_calls": self.metrics.total_calls,
                "total_failures": self.metrics.total_failures,
                "rejected_calls": self.metrics.rejected_calls,
                "times_opened": self.metrics.times_opened,
                "next_attempt_time": self.metrics.next_attempt_time,
            },
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout": self.config.recovery_timeout,
                "monitoring_period": self.config.monitoring_period,
                "minimum_requests": self.config.minimum_requests,
                "success_threshold": self.config.success_threshold,
            },
        }


class CircuitBreakerRegistry:
    """Registry of circuit breakers, one per operation and parent.

    Isolates failures between entity kinds and between ledgers: an outage of
    the transaction service does not block asset creation, and a ledger whose
    assets keep failing does not block its siblings.

    Example:
        registry = CircuitBreakerRegistry()
        breaker = registry.get_circuit("account.create:ledger-1")
    """

    def __init__(self, default_config: CircuitBreakerConfig | None = None):
        """Initialize the circuit breaker registry.

        Args:
            default_config: Default configuration for new circuit breakers.
        """
        self.default_config = default_config or CircuitBreakerConfig()
        self._circuits: dict[str, CircuitBreaker] = {}

    def get_circuit(
        self,
        circuit_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker.

        Args:
            circuit_id: Unique identifier (e.g., "asset.create:ledger-1").
            config: Optional custom configuration for a new breaker.

        Returns:
            CircuitBreaker instance.
        """
        if circuit_id not in self._circuits:
            self._circuits[circuit_id] = CircuitBreaker(
                circuit_id,
                config or self.default_config,
            )
        return self._circuits[circuit_id]

    def reset_all(self) -> None:
        for circuit in self._circuits.values():
            circuit.manual_reset()

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            circuit_id: circuit.get_stats()
            for circuit_id, circuit in self._circuits.items()
        }

    @property
    def total_trips(self) -> int:
        """How many times any circuit has opened."""
        return sum(c.metrics.times_opened for c in self._circuits.values())
