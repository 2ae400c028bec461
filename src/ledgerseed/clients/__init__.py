"""Clients for the remote ledger platform."""

from ledgerseed.clients.ledger_api import (
    NATURAL_KEYS,
    HttpLedgerClient,
    LedgerApiClient,
    entity_path,
    raise_for_status,
)

__all__ = [
    "NATURAL_KEYS",
    "HttpLedgerClient",
    "LedgerApiClient",
    "entity_path",
    "raise_for_status",
]
