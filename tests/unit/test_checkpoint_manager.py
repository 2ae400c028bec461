"""Tests for checkpoint persistence."""

import json
from pathlib import Path

import pytest

from ledgerseed.models.checkpoint import (
    CheckpointConfig,
    GenerationPhase,
    GenerationProgress,
)
from ledgerseed.models.entities import EntityKind
from ledgerseed.models.metrics import GenerationMetrics
from ledgerseed.models.state import GeneratorState
from ledgerseed.models.volume import VolumeMetrics
from ledgerseed.services.checkpoint_manager import (
    CheckpointManager,
    parse_checkpoint_filename,
)
from ledgerseed.services.state_manager import StateManager


@pytest.fixture
def populated_state():
    """State with two organizations and a funded ledger."""
    state = GeneratorState(organization_ids=["org-1", "org-2"])
    state.entity_ids[EntityKind.LEDGER] = {"org-1": ["ledger-1", "ledger-2"], "org-2": ["ledger-3"]}
    state.entity_ids[EntityKind.ASSET] = {"ledger-1": ["asset-1", "asset-2"]}
    state.entity_ids[EntityKind.ACCOUNT] = {"ledger-1": ["account-1", "account-2"]}
    state.asset_codes = {"ledger-1": {"asset-1": "BRL", "asset-2": "USD"}}
    state.account_aliases = {"ledger-1": {"account-1": "@deposit-brl-1", "account-2": "@savings-usd-2"}}
    state.account_assets = {"ledger-1": {"account-1": "BRL", "account-2": "USD"}}
    return state


def make_checkpoint(manager, state, phase=GenerationPhase.LEDGERS, org_index=0, ledger_index=0):
    metrics = GenerationMetrics()
    metrics.created[EntityKind.LEDGER] = 3
    return manager.create_checkpoint(
        state,
        GenerationProgress(
            phase=phase,
            current_organization_index=org_index,
            current_ledger_index=ledger_index,
        ),
        CheckpointConfig(volume="small", metrics=VolumeMetrics()),
        metrics,
    )


class TestSerialization:
    """Tests for state serialization."""

    def test_round_trip(self, checkpoint_manager, populated_state):
        """Restoring a serialized state reproduces every map."""
        serialized = checkpoint_manager.serialize_state(populated_state)

        assert checkpoint_manager.restore_state(serialized) == populated_state

    def test_round_trip_through_json(self, checkpoint_manager, populated_state):
        """The record form survives a JSON encode/decode."""
        checkpoint = make_checkpoint(checkpoint_manager, populated_state)
        path = checkpoint_manager.save_checkpoint(checkpoint)

        loaded = checkpoint_manager.load_checkpoint(checkpoint.id)

        assert path.exists()
        assert loaded == checkpoint
        assert checkpoint_manager.restore_state(loaded.state) == populated_state
        assert loaded.metrics.created_count(EntityKind.LEDGER) == 3


class TestSaveAndLoad:
    """Tests for saving, listing and loading checkpoints."""

    def test_file_name_contains_id_and_timestamp(self, checkpoint_manager, populated_state):
        """Files are named checkpoint-<id>-<ms>.json."""
        checkpoint = make_checkpoint(checkpoint_manager, populated_state)
        path = checkpoint_manager.save_checkpoint(checkpoint)

        assert path.name == f"checkpoint-{checkpoint.id}-{checkpoint.timestamp_ms}.json"
        parsed = parse_checkpoint_filename(path)
        assert parsed.id == checkpoint.id
        assert parsed.timestamp_ms == checkpoint.timestamp_ms

    def test_no_temporary_files_left(self, checkpoint_manager, populated_state):
        """A completed save leaves only the checkpoint file."""
        checkpoint_manager.save_checkpoint(make_checkpoint(checkpoint_manager, populated_state))

        files = list(checkpoint_manager.checkpoint_dir.iterdir())
        assert len(files) == 1
        assert files[0].name.startswith("checkpoint-")

    def test_timestamps_strictly_increase(self, checkpoint_manager, populated_state):
        """Checkpoints created in the same millisecond still sort in order."""
        checkpoints = [make_checkpoint(checkpoint_manager, populated_state) for _ in range(5)]
        timestamps = [c.timestamp_ms for c in checkpoints]

        assert timestamps == sorted(set(timestamps))

    def test_load_latest(self, checkpoint_manager, populated_state):
        """The newest checkpoint wins."""
        first = make_checkpoint(checkpoint_manager, populated_state, org_index=0)
        second = make_checkpoint(checkpoint_manager, populated_state, org_index=1)
        checkpoint_manager.save_checkpoint(first)
        checkpoint_manager.save_checkpoint(second)

        latest = checkpoint_manager.load_latest_checkpoint()

        assert latest.id == second.id
        assert [c.id for c in checkpoint_manager.list_checkpoints()] == [second.id, first.id]

    def test_load_latest_without_checkpoints(self, tmp_path):
        """A missing directory means there is nothing to resume."""
        manager = CheckpointManager(tmp_path / "missing")

        assert manager.load_latest_checkpoint() is None
        assert manager.list_checkpoints() == []

    def test_corrupt_checkpoint_is_skipped(self, checkpoint_manager, populated_state):
        """An unreadable newest file falls back to the previous checkpoint."""
        good = make_checkpoint(checkpoint_manager, populated_state)
        checkpoint_manager.save_checkpoint(good)
        corrupt = Path(checkpoint_manager.checkpoint_dir) / f"checkpoint-BROKEN-{good.timestamp_ms + 1000}.json"
        corrupt.write_text("{not json")

        assert checkpoint_manager.load_latest_checkpoint().id == good.id

    def test_unrelated_files_ignored(self, checkpoint_manager, populated_state):
        """Files that do not follow the naming scheme are ignored."""
        checkpoint_manager.save_checkpoint(make_checkpoint(checkpoint_manager, populated_state))
        (checkpoint_manager.checkpoint_dir / "notes.txt").write_text("hello")
        (checkpoint_manager.checkpoint_dir / "checkpoint-abc-notanumber.json").write_text(json.dumps({}))

        assert len(checkpoint_manager.list_checkpoints()) == 1

    def test_load_unknown_id(self, checkpoint_manager):
        """Loading an unknown ID returns None."""
        assert checkpoint_manager.load_checkpoint("missing") is None


class TestCleanup:
    """Tests for pruning checkpoints."""

    def test_cleanup_keeps_newest(self, checkpoint_manager, populated_state):
        """Only the newest ``keep`` checkpoints survive."""
        saved = []
        for _ in range(7):
            checkpoint = make_checkpoint(checkpoint_manager, populated_state)
            checkpoint_manager.save_checkpoint(checkpoint)
            saved.append(checkpoint.id)

        removed = checkpoint_manager.cleanup_old_checkpoints(keep=3)

        assert removed == 4
        assert [c.id for c in checkpoint_manager.list_checkpoints()] == saved[-3:][::-1]

    def test_clear(self, checkpoint_manager, populated_state):
        """Clearing removes every checkpoint."""
        for _ in range(3):
            checkpoint_manager.save_checkpoint(make_checkpoint(checkpoint_manager, populated_state))

        assert checkpoint_manager.clear_checkpoints() == 3
        assert checkpoint_manager.load_latest_checkpoint() is None


class TestResumePoint:
    """Tests for determine_resume_point."""

    def test_resume_point(self, checkpoint_manager, populated_state):
        """Organizations before the index are skipped; ledgers are counted per organization."""
        checkpoint = make_checkpoint(checkpoint_manager, populated_state, org_index=1, ledger_index=0)

        resume = checkpoint_manager.determine_resume_point(checkpoint)

        assert resume.skip_organizations == 1
        assert resume.skip_ledgers_per_org == {"org-1": 2, "org-2": 1}
        assert resume.current_phase == GenerationPhase.LEDGERS

    def test_resume_point_with_small_capacity(self, checkpoint_manager):
        """Completed ledgers are all counted even when the state holds few IDs per parent."""
        state = StateManager(max_entities_in_memory=1)
        state.add_entity_id(EntityKind.ORGANIZATION, None, "org-1")
        for ledger_id in ("ledger-1", "ledger-2", "ledger-3"):
            state.add_entity_id(EntityKind.LEDGER, "org-1", ledger_id)
        checkpoint = make_checkpoint(checkpoint_manager, state.get_state(), ledger_index=2)

        resume = checkpoint_manager.determine_resume_point(checkpoint)

        assert resume.skip_ledgers_per_org == {"org-1": 3}
