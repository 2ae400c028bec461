"""Generator configuration.

Options are plain pydantic models so they validate on construction and can
be embedded in checkpoints. ``GeneratorOptions.from_env`` reads
``LEDGERSEED_*`` environment variables; CLI flags override them.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ledgerseed.models.entities import EntityKind
from ledgerseed.models.volume import VOLUME_PRESETS, VolumeMetrics, VolumeSize
from ledgerseed.utils.exceptions import ConfigurationError


class ConcurrencyLimits(BaseModel):
    """Maximum in-flight remote calls per phase."""

    organizations: int = Field(default=1, ge=1, le=50)
    assets: int = Field(default=3, ge=1, le=50)
    portfolios: int = Field(default=2, ge=1, le=50)
    segments: int = Field(default=2, ge=1, le=50)
    accounts: int = Field(default=5, ge=1, le=50)
    transactions: int = Field(default=10, ge=1, le=100)
    batch_delay: float = Field(default=0.0, ge=0.0, le=60.0)  # Seconds between batches

    @classmethod
    def uniform(cls, concurrency: int, batch_delay: float = 0.0) -> "ConcurrencyLimits":
        """Use the same limit for every phase."""
        return cls(
            organizations=concurrency,
            assets=concurrency,
            portfolios=concurrency,
            segments=concurrency,
            accounts=concurrency,
            transactions=concurrency,
            batch_delay=batch_delay,
        )

    def for_kind(self, kind: EntityKind) -> int:
        """Get the limit for an entity kind (ledgers are created one at a time)."""
        if kind == EntityKind.LEDGER:
            return 1
        return getattr(self, kind.plural)


class RetrySettings(BaseModel):
    """Backoff parameters for remote calls."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=0.1, ge=0.0, le=10.0)  # Seconds
    max_delay: float = Field(default=2.0, ge=0.0, le=60.0)  # Seconds
    jitter_factor: float = Field(default=0.0, ge=0.0, le=1.0)


class CircuitBreakerSettings(BaseModel):
    """Circuit breaker parameters shared by every operation class."""

    failure_threshold: int = Field(default=3, ge=1, le=100)
    recovery_timeout: float = Field(default=30.0, ge=0.0, le=600.0)  # Seconds
    monitoring_period: float = Field(default=120.0, gt=0.0, le=3600.0)  # Seconds
    minimum_requests: int = Field(default=2, ge=1, le=100)
    success_threshold: float = Field(default=0.6, gt=0.0, le=1.0)


class GeneratorOptions(BaseModel):
    """Opaque configuration handed to the orchestration service."""

    volume: VolumeSize = VolumeSize.SMALL
    volume_overrides: VolumeMetrics | None = None
    base_url: str = "http://localhost"
    onboarding_port: int = Field(default=3000, ge=1, le=65535)
    transaction_port: int = Field(default=3001, ge=1, le=65535)
    auth_token: str | None = None
    request_timeout: float = Field(default=30.0, gt=0.0, le=300.0)  # Seconds
    concurrency: ConcurrencyLimits = Field(default_factory=ConcurrencyLimits)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    max_entities_in_memory: int = Field(default=10000, ge=1, le=1_000_000)
    checkpoint_dir: Path = Path("./checkpoints")
    checkpoint_keep: int = Field(default=5, ge=1, le=100)
    resume: bool = True  # Continue from the latest checkpoint if one exists
    debug: bool = False
    seed: int | None = None

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value

    @property
    def volume_metrics(self) -> VolumeMetrics:
        """Entity counts for this run."""
        return self.volume_overrides or VOLUME_PRESETS[self.volume]

    @property
    def onboarding_url(self) -> str:
        return f"{self.base_url}:{self.onboarding_port}"

    @property
    def transaction_url(self) -> str:
        return f"{self.base_url}:{self.transaction_port}"

    @classmethod
    def build(cls, **values: Any) -> "GeneratorOptions":
        """Construct options, converting validation failures to ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid generator options",
                {"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]},
            ) from e

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "GeneratorOptions":
        """Load options from ``LEDGERSEED_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.
            **overrides: Values that take precedence (typically CLI flags).

        Returns:
            Validated GeneratorOptions.

        Raises:
            ConfigurationError: If a value is missing its expected type or range.
        """
        env = os.environ if environ is None else environ

        def _get_env(name: str) -> str | None:
            value = env.get(f"LEDGERSEED_{name}")
            return value if value not in (None, "") else None

        values: dict[str, Any] = {}
        mapping = {
            "VOLUME": "volume",
            "BASE_URL": "base_url",
            "ONBOARDING_PORT": "onboarding_port",
            "TRANSACTION_PORT": "transaction_port",
            "AUTH_TOKEN": "auth_token",
            "TIMEOUT": "request_timeout",
            "MAX_ENTITIES_IN_MEMORY": "max_entities_in_memory",
            "CHECKPOINT_DIR": "checkpoint_dir",
            "SEED": "seed",
        }
        for env_name, field_name in mapping.items():
            value = _get_env(env_name)
            if value is not None:
                values[field_name] = value

        debug = _get_env("DEBUG")
        if debug is not None:
            values["debug"] = debug not in {"0", "false", "False"}

        max_retries = _get_env("MAX_RETRIES")
        if max_retries is not None:
            values["retry"] = {"max_attempts": max_retries}

        concurrency = _get_env("CONCURRENCY")
        if concurrency is not None:
            if not concurrency.isdigit():
                raise ConfigurationError(
                    "LEDGERSEED_CONCURRENCY must be a positive integer",
                    {"value": concurrency},
                )
            try:
                values["concurrency"] = ConcurrencyLimits.uniform(int(concurrency))
            except ValidationError as e:
                raise ConfigurationError(
                    "LEDGERSEED_CONCURRENCY is out of range",
                    {"value": concurrency},
                ) from e

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.build(**values)
