"""Running metrics and detailed error records for a generation run."""

from datetime import datetime

from pydantic import Field

from ledgerseed.models.base import BaseModel, utc_now
from ledgerseed.models.entities import EntityKind


def _zero_counts() -> dict[EntityKind, int]:
    return {kind: 0 for kind in EntityKind}


class GenerationMetrics(BaseModel):
    """Counters accumulated while entities are created."""

    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    created: dict[EntityKind, int] = Field(default_factory=_zero_counts)
    errors: dict[EntityKind, int] = Field(default_factory=_zero_counts)
    retries: int = 0
    tracked_errors: int = 0

    def duration(self) -> float:
        """Elapsed seconds, up to now if the run has not completed."""
        end = self.end_time or utc_now()
        return max((end - self.start_time).total_seconds(), 0.0)

    def created_count(self, kind: EntityKind) -> int:
        return self.created.get(kind, 0)

    def error_count(self, kind: EntityKind) -> int:
        return self.errors.get(kind, 0)

    @property
    def total_created(self) -> int:
        return sum(self.created.values())

    @property
    def total_errors(self) -> int:
        return sum(self.errors.values())


class GenerationErrorRecord(BaseModel):
    """Diagnostic record of one failed entity creation."""

    timestamp: datetime = Field(default_factory=utc_now)
    entity_type: EntityKind
    parent_id: str | None = None
    error_type: str
    message: str
    context: dict[str, str] = Field(default_factory=dict)
