"""Payload generators for ledger entities."""

from ledgerseed.generators.payloads import (
    asset_for_index,
    deposit_amount,
    external_account_alias,
    format_amount,
    generate_payload,
    transfer_amount,
)

__all__ = [
    "asset_for_index",
    "deposit_amount",
    "external_account_alias",
    "format_amount",
    "generate_payload",
    "transfer_amount",
]
