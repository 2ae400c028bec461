"""Exception hierarchy for ledger seeding.

Errors are grouped by how the engine reacts to them:
- Transient: retried with backoff (timeouts, 408, 429, 5xx, network)
- Conflict: entity already exists, resolved by lookup
- Client: request defect (4xx), never retried
- Circuit open: rejected locally without a remote call
- Dependency: a required upstream entity set is empty
"""

from typing import Any


class LedgerSeedError(Exception):
    """Base exception for all ledgerseed errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(LedgerSeedError):
    """Raised when generator options or environment values are invalid."""


class ApiError(LedgerSeedError):
    """Base class for failures reported by the remote ledger API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, details)


class TransientApiError(ApiError):
    """Temporary failure that is expected to succeed on retry."""


class ClientApiError(ApiError):
    """Request rejected by the API (4xx other than 409)."""


class ConflictError(ApiError):
    """Entity already exists remotely (409 or 'already exists')."""

    def __init__(
        self,
        message: str = "Entity already exists",
        status_code: int | None = 409,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, details)


class ValidationError(LedgerSeedError):
    """Payload rejected locally before it was sent."""


class GenerationError(LedgerSeedError):
    """Creating an entity failed after every recovery attempt."""

    def __init__(
        self,
        message: str,
        entity_type: str,
        parent_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.entity_type = entity_type
        self.parent_id = parent_id
        self.context = context or {}
        super().__init__(
            message,
            {"entity_type": entity_type, "parent_id": parent_id, **self.context},
        )


class DependencyError(LedgerSeedError):
    """A required upstream entity set is empty."""

    def __init__(self, entity_type: str, required: str, parent_id: str | None = None):
        self.entity_type = entity_type
        self.required = required
        self.parent_id = parent_id
        super().__init__(
            f"Cannot generate {entity_type}: no {required} available"
            + (f" for {parent_id}" if parent_id else ""),
            {"entity_type": entity_type, "required": required, "parent_id": parent_id},
        )


class GenerationCancelled(LedgerSeedError):
    """Cancellation was requested; the run stops at the next ledger boundary."""

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


def is_conflict_message(message: str) -> bool:
    """Check whether an error message describes an already-existing entity."""
    lowered = message.lower()
    return "already exists" in lowered or "conflict" in lowered or "409" in lowered
