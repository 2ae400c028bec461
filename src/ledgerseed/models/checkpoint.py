"""Checkpoint documents and resume points."""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import Field

from ledgerseed.models.base import BaseModel, utc_now
from ledgerseed.models.metrics import GenerationMetrics
from ledgerseed.models.state import SerializedState
from ledgerseed.models.volume import VolumeMetrics

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def datetime_from_ms(timestamp_ms: int) -> datetime:
    """Build an exact UTC datetime from epoch milliseconds."""
    return EPOCH + timedelta(milliseconds=timestamp_ms)


class GenerationPhase(str, Enum):
    """Phase a checkpoint was taken in."""

    ORGANIZATIONS = "organizations"
    LEDGERS = "ledgers"
    ASSETS = "assets"
    PORTFOLIOS = "portfolios"
    SEGMENTS = "segments"
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    ERROR = "error"


class GenerationProgress(BaseModel):
    """Progress pointer stored with a checkpoint.

    ``current_organization_index`` is the organization being processed when
    the checkpoint was taken; ``current_ledger_index`` is the last completed
    ledger within it.
    """

    phase: GenerationPhase
    current_organization_index: int = Field(default=0, ge=0)
    current_ledger_index: int = Field(default=0, ge=0)
    completed_steps: list[str] = Field(default_factory=list)
    failed_steps: list[str] = Field(default_factory=list)


class CheckpointConfig(BaseModel):
    """Volume a checkpointed run was started with."""

    volume: str
    metrics: VolumeMetrics


class Checkpoint(BaseModel):
    """Durable snapshot of generation state and progress."""

    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    state: SerializedState
    progress: GenerationProgress
    config: CheckpointConfig
    metrics: GenerationMetrics

    @property
    def timestamp_ms(self) -> int:
        """Epoch milliseconds, computed without float rounding."""
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return (timestamp - EPOCH) // timedelta(milliseconds=1)


class ResumePoint(BaseModel):
    """Where a resumed run picks up."""

    skip_organizations: int = 0
    skip_ledgers_per_org: dict[str, int] = Field(default_factory=dict)
    current_phase: GenerationPhase = GenerationPhase.ORGANIZATIONS
