"""Volume presets: how many entities of each kind a run creates."""

from enum import Enum

from pydantic import Field

from ledgerseed.models.base import BaseModel
from ledgerseed.models.entities import EntityKind


class VolumeSize(str, Enum):
    """Named volume presets."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class VolumeMetrics(BaseModel):
    """How many entities of each kind a run creates."""

    organizations: int = Field(default=1, ge=1, le=100)
    ledgers_per_org: int = Field(default=2, ge=1, le=50)
    assets_per_ledger: int = Field(default=3, ge=1, le=20)
    portfolios_per_ledger: int = Field(default=2, ge=0, le=10)
    segments_per_ledger: int = Field(default=1, ge=0, le=10)
    accounts_per_ledger: int = Field(default=5, ge=2, le=100)
    transactions_per_account: int = Field(default=2, ge=0, le=100)

    def count_for(self, kind: EntityKind) -> int:
        """Get the per-parent count for an entity kind."""
        return {
            EntityKind.ORGANIZATION: self.organizations,
            EntityKind.LEDGER: self.ledgers_per_org,
            EntityKind.ASSET: self.assets_per_ledger,
            EntityKind.PORTFOLIO: self.portfolios_per_ledger,
            EntityKind.SEGMENT: self.segments_per_ledger,
            EntityKind.ACCOUNT: self.accounts_per_ledger,
            EntityKind.TRANSACTION: self.transactions_per_account,
        }[kind]

    @property
    def estimated_entities(self) -> int:
        per_ledger = (
            self.assets_per_ledger
            + self.portfolios_per_ledger
            + self.segments_per_ledger
            + self.accounts_per_ledger
            # one deposit per account plus the transfers
            + self.accounts_per_ledger * (1 + self.transactions_per_account)
        )
        return self.organizations * (1 + self.ledgers_per_org * (1 + per_ledger))


VOLUME_PRESETS: dict[VolumeSize, VolumeMetrics] = {
    VolumeSize.SMALL: VolumeMetrics(
        organizations=1,
        ledgers_per_org=2,
        assets_per_ledger=3,
        portfolios_per_ledger=2,
        segments_per_ledger=1,
        accounts_per_ledger=5,
        transactions_per_account=2,
    ),
    VolumeSize.MEDIUM: VolumeMetrics(
        organizations=3,
        ledgers_per_org=5,
        assets_per_ledger=8,
        portfolios_per_ledger=4,
        segments_per_ledger=3,
        accounts_per_ledger=15,
        transactions_per_account=4,
    ),
    VolumeSize.LARGE: VolumeMetrics(
        organizations=10,
        ledgers_per_org=10,
        assets_per_ledger=15,
        portfolios_per_ledger=8,
        segments_per_ledger=5,
        accounts_per_ledger=30,
        transactions_per_account=7,
    ),
    VolumeSize.XLARGE: VolumeMetrics(
        organizations=25,
        ledgers_per_org=20,
        assets_per_ledger=20,
        portfolios_per_ledger=10,
        segments_per_ledger=8,
        accounts_per_ledger=50,
        transactions_per_account=10,
    ),
}


