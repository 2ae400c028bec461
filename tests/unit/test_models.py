"""Tests for Pydantic models."""

from datetime import datetime, timezone

from ledgerseed.models.base import generate_ulid
from ledgerseed.models.checkpoint import (
    Checkpoint,
    CheckpointConfig,
    GenerationPhase,
    GenerationProgress,
    datetime_from_ms,
)
from ledgerseed.models.entities import EntityKind, EntityRef
from ledgerseed.models.metrics import GenerationMetrics
from ledgerseed.models.state import SerializedState
from ledgerseed.models.volume import VOLUME_PRESETS, VolumeMetrics, VolumeSize


class TestEntityKind:
    """Tests for EntityKind."""

    def test_parents(self):
        """Every kind below an organization has a parent kind."""
        assert EntityKind.ORGANIZATION.parent_kind is None
        assert EntityKind.LEDGER.parent_kind == EntityKind.ORGANIZATION
        assert EntityKind.TRANSACTION.parent_kind == EntityKind.LEDGER
        assert EntityKind.ACCOUNT.plural == "accounts"

    def test_entity_ref_parent(self):
        """The parent ID depends on the kind."""
        ledger = EntityRef(id="l1", kind=EntityKind.LEDGER, organization_id="o1")
        asset = EntityRef(id="a1", kind=EntityKind.ASSET, organization_id="o1", ledger_id="l1")

        assert ledger.parent_id == "o1"
        assert asset.parent_id == "l1"


class TestVolume:
    """Tests for volume presets."""

    def test_presets_grow(self):
        """Larger presets create more entities."""
        sizes = [VOLUME_PRESETS[size].estimated_entities for size in VolumeSize]

        assert sizes == sorted(sizes)
        assert len(set(sizes)) == len(sizes)

    def test_count_for(self):
        """Per-kind counts come from the matching field."""
        volume = VolumeMetrics(assets_per_ledger=4)

        assert volume.count_for(EntityKind.ASSET) == 4


class TestCheckpointModel:
    """Tests for the checkpoint document."""

    def test_timestamp_ms_is_exact(self):
        """Millisecond timestamps survive a datetime round trip."""
        timestamp_ms = 1_760_000_000_123
        checkpoint = Checkpoint(
            id=generate_ulid(),
            timestamp=datetime_from_ms(timestamp_ms),
            state=SerializedState(),
            progress=GenerationProgress(phase=GenerationPhase.ORGANIZATIONS),
            config=CheckpointConfig(volume="small", metrics=VolumeMetrics()),
            metrics=GenerationMetrics(),
        )

        assert checkpoint.timestamp_ms == timestamp_ms
        assert Checkpoint.from_record(checkpoint.to_record()).timestamp_ms == timestamp_ms

    def test_naive_timestamp_treated_as_utc(self):
        """A naive timestamp is read as UTC."""
        checkpoint = Checkpoint(
            id="c1",
            timestamp=datetime(1970, 1, 1, 0, 0, 1),
            state=SerializedState(),
            progress=GenerationProgress(phase=GenerationPhase.LEDGERS),
            config=CheckpointConfig(volume="small", metrics=VolumeMetrics()),
            metrics=GenerationMetrics(),
        )

        assert checkpoint.timestamp_ms == 1000
        assert datetime_from_ms(1000) == datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)

    def test_metrics_record_round_trip(self):
        """Metrics keyed by entity kind survive serialization."""
        metrics = GenerationMetrics()
        metrics.created[EntityKind.ACCOUNT] = 5

        restored = GenerationMetrics.from_record(metrics.to_record())

        assert restored.created_count(EntityKind.ACCOUNT) == 5
        assert restored.start_time == metrics.start_time
