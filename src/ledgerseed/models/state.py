"""Generator state and its storage-neutral serialized form.

``GeneratorState`` is the in-memory shape handed out by the state manager.
``SerializedState`` holds the same data as plain records (lists of parent
entries) so a checkpoint never depends on live mapping types.
"""

from dataclasses import dataclass, field

from pydantic import Field

from ledgerseed.models.base import BaseModel
from ledgerseed.models.entities import EntityKind

CHILD_KINDS: tuple[EntityKind, ...] = tuple(
    kind for kind in EntityKind if kind != EntityKind.ORGANIZATION
)


def _empty_entity_ids() -> dict[EntityKind, dict[str, list[str]]]:
    return {kind: {} for kind in CHILD_KINDS}


@dataclass
class GeneratorState:
    """IDs of every entity created so far, grouped by kind and parent.

    Attributes:
        organization_ids: Global, ordered list of organization IDs.
        entity_ids: kind -> parent ID -> ordered child IDs.
        asset_codes: ledger ID -> asset ID -> asset code.
        account_aliases: ledger ID -> account ID -> alias.
        account_assets: ledger ID -> account ID -> asset code.
    """

    organization_ids: list[str] = field(default_factory=list)
    entity_ids: dict[EntityKind, dict[str, list[str]]] = field(default_factory=_empty_entity_ids)
    asset_codes: dict[str, dict[str, str]] = field(default_factory=dict)
    account_aliases: dict[str, dict[str, str]] = field(default_factory=dict)
    account_assets: dict[str, dict[str, str]] = field(default_factory=dict)

    def ids_for(self, kind: EntityKind, parent_id: str | None = None) -> list[str]:
        """Get the child IDs of ``kind`` under ``parent_id``."""
        if kind == EntityKind.ORGANIZATION:
            return list(self.organization_ids)
        return list(self.entity_ids.get(kind, {}).get(parent_id or "", []))


class ParentIds(BaseModel):
    """Ordered child IDs of one kind under one parent."""

    kind: EntityKind
    parent_id: str
    ids: list[str] = Field(default_factory=list)


class ParentMapping(BaseModel):
    """Key/value pairs scoped to one parent (usually a ledger)."""

    parent_id: str
    entries: list[tuple[str, str]] = Field(default_factory=list)


class SerializedState(BaseModel):
    """Storage-neutral record form of ``GeneratorState``."""

    organization_ids: list[str] = Field(default_factory=list)
    entity_ids: list[ParentIds] = Field(default_factory=list)
    asset_codes: list[ParentMapping] = Field(default_factory=list)
    account_aliases: list[ParentMapping] = Field(default_factory=list)
    account_assets: list[ParentMapping] = Field(default_factory=list)


def _mapping_to_records(mapping: dict[str, dict[str, str]]) -> list[ParentMapping]:
    return [
        ParentMapping(parent_id=parent_id, entries=list(entries.items()))
        for parent_id, entries in mapping.items()
    ]


def _records_to_mapping(records: list[ParentMapping]) -> dict[str, dict[str, str]]:
    return {record.parent_id: dict(record.entries) for record in records}


def serialize_state(state: GeneratorState) -> SerializedState:
    """Convert a ``GeneratorState`` into its record form."""
    return SerializedState(
        organization_ids=list(state.organization_ids),
        entity_ids=[
            ParentIds(kind=kind, parent_id=parent_id, ids=list(ids))
            for kind, by_parent in state.entity_ids.items()
            for parent_id, ids in by_parent.items()
        ],
        asset_codes=_mapping_to_records(state.asset_codes),
        account_aliases=_mapping_to_records(state.account_aliases),
        account_assets=_mapping_to_records(state.account_assets),
    )


def restore_state(serialized: SerializedState) -> GeneratorState:
    """Rebuild a ``GeneratorState`` from its record form."""
    entity_ids = _empty_entity_ids()
    for record in serialized.entity_ids:
        entity_ids.setdefault(record.kind, {})[record.parent_id] = list(record.ids)

    return GeneratorState(
        organization_ids=list(serialized.organization_ids),
        entity_ids=entity_ids,
        asset_codes=_records_to_mapping(serialized.asset_codes),
        account_aliases=_records_to_mapping(serialized.account_aliases),
        account_assets=_records_to_mapping(serialized.account_assets),
    )
