"""Durable checkpoints for resuming an interrupted run.

Each checkpoint is one JSON document named
``checkpoint-<id>-<timestamp_ms>.json`` in the checkpoint directory. Writes
go to a temporary file that is then renamed over the target, so a crash
never leaves a half-written checkpoint behind.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import structlog
from pydantic import ValidationError as PydanticValidationError

from ledgerseed.models.base import generate_ulid, utc_now
from ledgerseed.models.checkpoint import (
    EPOCH,
    Checkpoint,
    CheckpointConfig,
    GenerationProgress,
    ResumePoint,
    datetime_from_ms,
)
from ledgerseed.models.entities import EntityKind
from ledgerseed.models.metrics import GenerationMetrics
from ledgerseed.models.state import GeneratorState, SerializedState
from ledgerseed.models.state import restore_state as _restore_state
from ledgerseed.models.state import serialize_state as _serialize_state

logger = structlog.get_logger()

FILE_PREFIX = "checkpoint-"
FILE_SUFFIX = ".json"


@dataclass(frozen=True)
class CheckpointFile:
    """A checkpoint file found on disk."""

    id: str
    timestamp_ms: int
    path: Path


def parse_checkpoint_filename(path: Path) -> CheckpointFile | None:
    """Parse ``checkpoint-<id>-<ms>.json``; returns None for other files."""
    name = path.name
    if not (name.startswith(FILE_PREFIX) and name.endswith(FILE_SUFFIX)):
        return None
    stem = name[len(FILE_PREFIX):-len(FILE_SUFFIX)]
    checkpoint_id, _, timestamp = stem.rpartition("-")
    if not checkpoint_id or not timestamp.isdigit():
        return None
    return CheckpointFile(id=checkpoint_id, timestamp_ms=int(timestamp), path=path)


class CheckpointManager:
    """Saves, loads and prunes checkpoints in a local directory.

    Single-writer: only one run may use a checkpoint directory at a time.
    """

    def __init__(self, checkpoint_dir: str | Path = "./checkpoints"):
        self.checkpoint_dir = Path(checkpoint_dir)
        self._last_timestamp_ms = 0
        self.logger = logger.bind(service="checkpoint_manager")

    def create_checkpoint(
        self,
        state: GeneratorState,
        progress: GenerationProgress,
        config: CheckpointConfig,
        metrics: GenerationMetrics,
    ) -> Checkpoint:
        """Build a checkpoint with a fresh ID and a strictly increasing timestamp."""
        now_ms = (utc_now() - EPOCH) // timedelta(milliseconds=1)
        timestamp_ms = max(now_ms, self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms

        return Checkpoint(
            id=generate_ulid(),
            timestamp=datetime_from_ms(timestamp_ms),
            state=self.serialize_state(state),
            progress=progress,
            config=config,
            metrics=metrics,
        )

    def save_checkpoint(self, checkpoint: Checkpoint) -> Path:
        """Write a checkpoint atomically.

        Args:
            checkpoint: Checkpoint to persist.

        Returns:
            Path of the written file.
        """
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self._last_timestamp_ms = max(self._last_timestamp_ms, checkpoint.timestamp_ms)

        target = self.checkpoint_dir / f"{FILE_PREFIX}{checkpoint.id}-{checkpoint.timestamp_ms}{FILE_SUFFIX}"
        fd, tmp_name = tempfile.mkstemp(dir=self.checkpoint_dir, prefix=".tmp-", suffix=".part")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(checkpoint.to_record(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self.logger.info(
            "Checkpoint saved",
            checkpoint_id=checkpoint.id,
            phase=checkpoint.progress.phase.value,
            organization_index=checkpoint.progress.current_organization_index,
            ledger_index=checkpoint.progress.current_ledger_index,
            path=str(target),
        )
        return target

    def _checkpoint_files(self) -> list[CheckpointFile]:
        """Checkpoint files on disk, oldest first."""
        if not self.checkpoint_dir.is_dir():
            return []
        files = [
            parsed
            for path in self.checkpoint_dir.iterdir()
            if (parsed := parse_checkpoint_filename(path)) is not None
        ]
        return sorted(files, key=lambda f: (f.timestamp_ms, f.id))

    def _read(self, checkpoint_file: CheckpointFile) -> Checkpoint | None:
        try:
            with checkpoint_file.path.open(encoding="utf-8") as f:
                return Checkpoint.from_record(json.load(f))
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            self.logger.warning(
                "Skipping unreadable checkpoint",
                path=str(checkpoint_file.path),
                error=str(e),
            )
            return None

    def load_latest_checkpoint(self) -> Checkpoint | None:
        """Load the newest readable checkpoint, if any."""
        for checkpoint_file in reversed(self._checkpoint_files()):
            checkpoint = self._read(checkpoint_file)
            if checkpoint is not None:
                self.logger.info(
                    "Loaded checkpoint",
                    checkpoint_id=checkpoint.id,
                    phase=checkpoint.progress.phase.value,
                )
                return checkpoint
        return None

    def load_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        """Load a checkpoint by ID."""
        for checkpoint_file in self._checkpoint_files():
            if checkpoint_file.id == checkpoint_id:
                return self._read(checkpoint_file)
        return None

    def list_checkpoints(self) -> list[CheckpointFile]:
        """List checkpoint files, newest first."""
        return list(reversed(self._checkpoint_files()))

    def clear_checkpoints(self) -> int:
        """Delete every checkpoint; returns how many were removed."""
        removed = 0
        for checkpoint_file in self._checkpoint_files():
            checkpoint_file.path.unlink(missing_ok=True)
            removed += 1
        if removed:
            self.logger.info("Cleared checkpoints", removed=removed)
        return removed

    def cleanup_old_checkpoints(self, keep: int = 5) -> int:
        """Delete all but the newest ``keep`` checkpoints.

        Returns:
            Number of files deleted.
        """
        files = self.list_checkpoints()
        stale = files[keep:] if keep > 0 else files
        for checkpoint_file in stale:
            checkpoint_file.path.unlink(missing_ok=True)
        if stale:
            self.logger.info("Removed old checkpoints", removed=len(stale), kept=min(len(files), keep))
        return len(stale)

    def serialize_state(self, state: GeneratorState) -> SerializedState:
        return _serialize_state(state)

    def restore_state(self, serialized: SerializedState) -> GeneratorState:
        return _restore_state(serialized)

    def determine_resume_point(self, checkpoint: Checkpoint) -> ResumePoint:
        """Work out where a resumed run continues.

        Organizations before the checkpoint's organization index are done.
        Every ledger present in the state is complete, so each organization
        skips as many ledgers as it already has.
        """
        state = self.restore_state(checkpoint.state)
        skip_ledgers = {
            org_id: len(state.ids_for(EntityKind.LEDGER, org_id))
            for org_id in state.organization_ids
        }
        return ResumePoint(
            skip_organizations=checkpoint.progress.current_organization_index,
            skip_ledgers_per_org=skip_ledgers,
            current_phase=checkpoint.progress.phase,
        )
