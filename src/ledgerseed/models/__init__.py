"""Pydantic models for ledgerseed."""

from ledgerseed.models.base import BaseModel, generate_ulid, utc_now
from ledgerseed.models.checkpoint import (
    Checkpoint,
    CheckpointConfig,
    GenerationPhase,
    GenerationProgress,
    ResumePoint,
    datetime_from_ms,
)
from ledgerseed.models.entities import (
    CRITICAL_KINDS,
    AlreadyExists,
    Created,
    CreateOutcome,
    EntityKind,
    EntityRef,
)
from ledgerseed.models.metrics import GenerationErrorRecord, GenerationMetrics
from ledgerseed.models.state import (
    GeneratorState,
    SerializedState,
    restore_state,
    serialize_state,
)
from ledgerseed.models.volume import VOLUME_PRESETS, VolumeMetrics, VolumeSize

__all__ = [
    # Base
    "BaseModel",
    "generate_ulid",
    "utc_now",
    # Entities
    "CRITICAL_KINDS",
    "AlreadyExists",
    "Created",
    "CreateOutcome",
    "EntityKind",
    "EntityRef",
    # State
    "GeneratorState",
    "SerializedState",
    "restore_state",
    "serialize_state",
    # Metrics
    "GenerationErrorRecord",
    "GenerationMetrics",
    # Checkpoints
    "Checkpoint",
    "CheckpointConfig",
    "datetime_from_ms",
    "GenerationPhase",
    "GenerationProgress",
    "ResumePoint",
    # Volume
    "VOLUME_PRESETS",
    "VolumeMetrics",
    "VolumeSize",
]
