"""Utility functions and helpers."""

from ledgerseed.utils.exceptions import (
    ApiError,
    ClientApiError,
    ConfigurationError,
    ConflictError,
    DependencyError,
    GenerationCancelled,
    GenerationError,
    LedgerSeedError,
    TransientApiError,
    ValidationError,
    is_conflict_message,
)

__all__ = [
    "ApiError",
    "ClientApiError",
    "ConfigurationError",
    "ConflictError",
    "DependencyError",
    "GenerationCancelled",
    "GenerationError",
    "LedgerSeedError",
    "TransientApiError",
    "ValidationError",
    "is_conflict_message",
]
