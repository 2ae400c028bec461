"""Entity kinds, references and creation outcomes."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import Field

from ledgerseed.models.base import BaseModel
from ledgerseed.utils.exceptions import ConflictError


class EntityKind(str, Enum):
    """Kinds of entities created on the ledger platform."""

    ORGANIZATION = "organization"
    LEDGER = "ledger"
    ASSET = "asset"
    PORTFOLIO = "portfolio"
    SEGMENT = "segment"
    ACCOUNT = "account"
    TRANSACTION = "transaction"

    @property
    def parent_kind(self) -> "EntityKind | None":
        """Kind of the entity this kind is created under."""
        return PARENT_KINDS[self]

    @property
    def plural(self) -> str:
        return f"{self.value}s"


PARENT_KINDS: dict[EntityKind, EntityKind | None] = {
    EntityKind.ORGANIZATION: None,
    EntityKind.LEDGER: EntityKind.ORGANIZATION,
    EntityKind.ASSET: EntityKind.LEDGER,
    EntityKind.PORTFOLIO: EntityKind.LEDGER,
    EntityKind.SEGMENT: EntityKind.LEDGER,
    EntityKind.ACCOUNT: EntityKind.LEDGER,
    EntityKind.TRANSACTION: EntityKind.LEDGER,
}

# Organizations, ledgers, assets and accounts block downstream generation.
CRITICAL_KINDS: frozenset[EntityKind] = frozenset({
    EntityKind.ORGANIZATION,
    EntityKind.LEDGER,
    EntityKind.ASSET,
    EntityKind.ACCOUNT,
})


class EntityRef(BaseModel):
    """Reference to an entity that exists on the remote platform."""

    id: str = Field(..., min_length=1)
    kind: EntityKind
    organization_id: str | None = None
    ledger_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def parent_id(self) -> str | None:
        """ID of the parent entity, if any."""
        if self.kind == EntityKind.ORGANIZATION:
            return None
        if self.kind == EntityKind.LEDGER:
            return self.organization_id
        return self.ledger_id


@dataclass(frozen=True)
class Created:
    """The API created a new entity."""

    ref: EntityRef


@dataclass(frozen=True)
class AlreadyExists:
    """The API reported a conflict; the entity must be looked up."""

    kind: EntityKind
    payload: dict[str, Any]
    error: ConflictError


CreateOutcome = Created | AlreadyExists
