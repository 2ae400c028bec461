"""Thread-safe record of every entity created during a run.

One ``StateManager`` exists per run and is handed to each collaborator. It
tracks entity IDs grouped by kind and parent, the auxiliary lookups that
transactions need (asset codes, account aliases, account assets) and the
run's metrics. Each parent's ID list is bounded; the oldest entries are
evicted first once it is full. Organizations and ledgers are never evicted:
resume counts them to decide what is already done.
"""

import threading
from collections import deque
from typing import Any

import structlog

from ledgerseed.models.base import utc_now
from ledgerseed.models.entities import EntityKind
from ledgerseed.models.metrics import GenerationErrorRecord, GenerationMetrics
from ledgerseed.models.state import CHILD_KINDS, GeneratorState

logger = structlog.get_logger()

MAX_ERROR_RECORDS = 100

# Rough per-entity footprint (ID string plus container overhead)
BYTES_PER_ENTITY = 100


class StateManager:
    """Holds generation state and metrics behind a single lock.

    Example:
        state = StateManager(max_entities_in_memory=10000)
        state.add_entity_id(EntityKind.ORGANIZATION, None, org_id)
        state.add_asset(ledger_id, asset_id, "BRL")
        codes = state.get_asset_codes(ledger_id)
    """

    def __init__(self, max_entities_in_memory: int = 10000):
        if max_entities_in_memory < 1:
            raise ValueError("max_entities_in_memory must be at least 1")
        self.max_entities_in_memory = max_entities_in_memory
        self._lock = threading.Lock()
        self.logger = logger.bind(service="state_manager")
        self._init_state()

    def _init_state(self) -> None:
        # dict[str, None] keeps insertion order and gives O(1) membership
        self._organization_ids: dict[str, None] = {}
        self._entity_ids: dict[EntityKind, dict[str, dict[str, None]]] = {
            kind: {} for kind in CHILD_KINDS
        }
        self._asset_codes: dict[str, dict[str, str]] = {}
        self._account_aliases: dict[str, dict[str, str]] = {}
        self._account_assets: dict[str, dict[str, str]] = {}
        self._error_records: dict[EntityKind, deque[GenerationErrorRecord]] = {
            kind: deque(maxlen=MAX_ERROR_RECORDS) for kind in EntityKind
        }
        self._evictions = 0
        self._metrics = GenerationMetrics()

    # ------------------------------------------------------------------
    # Entity IDs
    # ------------------------------------------------------------------

    def add_entity_id(self, kind: EntityKind, parent_id: str | None, entity_id: str) -> bool:
        """Record a created entity.

        Adding an ID that is already present is a no-op. When the parent's
        list is full the oldest ID is evicted first, together with its
        auxiliary entries. Organizations and ledgers are never evicted.

        Args:
            kind: Entity kind.
            parent_id: Parent entity ID (ignored for organizations).
            entity_id: ID returned by the API.

        Returns:
            True if the ID was new.
        """
        with self._lock:
            return self._add_locked(kind, parent_id, entity_id)

    def _add_locked(self, kind: EntityKind, parent_id: str | None, entity_id: str) -> bool:
        if kind == EntityKind.ORGANIZATION:
            if entity_id in self._organization_ids:
                return False
            self._organization_ids[entity_id] = None
            self._metrics.created[kind] = self._metrics.created.get(kind, 0) + 1
            return True

        if not parent_id:
            raise ValueError(f"{kind.value} requires a parent ID")

        children = self._entity_ids[kind].setdefault(parent_id, {})
        if entity_id in children:
            return False

        if kind != EntityKind.LEDGER and len(children) >= self.max_entities_in_memory:
            evicted = next(iter(children))
            del children[evicted]
            self._drop_auxiliary(kind, parent_id, evicted)
            self._evictions += 1
            self.logger.debug(
                "Evicted oldest entity",
                kind=kind.value,
                parent_id=parent_id,
                entity_id=evicted,
            )

        children[entity_id] = None
        self._metrics.created[kind] = self._metrics.created.get(kind, 0) + 1
        return True

    def _drop_auxiliary(self, kind: EntityKind, ledger_id: str, entity_id: str) -> None:
        if kind == EntityKind.ASSET:
            self._asset_codes.get(ledger_id, {}).pop(entity_id, None)
        elif kind == EntityKind.ACCOUNT:
            self._account_aliases.get(ledger_id, {}).pop(entity_id, None)
            self._account_assets.get(ledger_id, {}).pop(entity_id, None)

    def add_asset(self, ledger_id: str, asset_id: str, code: str) -> bool:
        """Record an asset and its code."""
        with self._lock:
            added = self._add_locked(EntityKind.ASSET, ledger_id, asset_id)
            self._asset_codes.setdefault(ledger_id, {})[asset_id] = code
            return added

    def add_account(
        self,
        ledger_id: str,
        account_id: str,
        alias: str | None = None,
        asset_code: str | None = None,
    ) -> bool:
        """Record an account with its alias and the asset code it holds."""
        with self._lock:
            added = self._add_locked(EntityKind.ACCOUNT, ledger_id, account_id)
            if alias:
                self._account_aliases.setdefault(ledger_id, {})[account_id] = alias
            if asset_code:
                self._account_assets.setdefault(ledger_id, {})[account_id] = asset_code
            return added

    def get_ids(self, kind: EntityKind, parent_id: str | None = None) -> list[str]:
        """Get IDs of ``kind`` under ``parent_id`` in creation order."""
        with self._lock:
            if kind == EntityKind.ORGANIZATION:
                return list(self._organization_ids)
            return list(self._entity_ids[kind].get(parent_id or "", {}))

    def get_organization_ids(self) -> list[str]:
        return self.get_ids(EntityKind.ORGANIZATION)

    def get_asset_codes(self, ledger_id: str) -> list[str]:
        """Asset codes of a ledger, in asset creation order."""
        with self._lock:
            codes = self._asset_codes.get(ledger_id, {})
            return [
                codes[asset_id]
                for asset_id in self._entity_ids[EntityKind.ASSET].get(ledger_id, {})
                if asset_id in codes
            ]

    def get_account_aliases(self, ledger_id: str) -> dict[str, str]:
        """Map of account ID to alias for a ledger."""
        with self._lock:
            return dict(self._account_aliases.get(ledger_id, {}))

    def get_account_asset(self, ledger_id: str, account_id: str) -> str | None:
        with self._lock:
            return self._account_assets.get(ledger_id, {}).get(account_id)

    # ------------------------------------------------------------------
    # Metrics and errors
    # ------------------------------------------------------------------

    def increment_error_count(self, kind: EntityKind) -> None:
        with self._lock:
            self._metrics.errors[kind] = self._metrics.errors.get(kind, 0) + 1

    def increment_retry_count(self) -> None:
        with self._lock:
            self._metrics.retries += 1

    def track_generation_error(
        self,
        kind: EntityKind,
        parent_id: str | None,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> GenerationErrorRecord:
        """Keep a detailed record of a failed creation.

        Only the most recent records per kind are retained.

        Args:
            kind: Kind of entity that failed.
            parent_id: Parent entity ID, if any.
            error: The error that ended the attempt.
            context: Extra diagnostic fields.

        Returns:
            The stored record.
        """
        record = GenerationErrorRecord(
            entity_type=kind,
            parent_id=parent_id,
            error_type=type(error).__name__,
            message=str(error),
            context={k: str(v) for k, v in (context or {}).items()},
        )
        with self._lock:
            self._error_records[kind].append(record)
            self._metrics.tracked_errors += 1

        self.logger.warning(
            "Entity generation failed",
            kind=kind.value,
            parent_id=parent_id,
            error_type=record.error_type,
            error=record.message,
        )
        return record

    def get_error_records(self, kind: EntityKind | None = None) -> list[GenerationErrorRecord]:
        """Get retained error records, for one kind or all kinds."""
        with self._lock:
            if kind is not None:
                return [r.model_copy() for r in self._error_records[kind]]
            records = [r.model_copy() for q in self._error_records.values() for r in q]
        return sorted(records, key=lambda r: r.timestamp)

    def get_metrics(self) -> GenerationMetrics:
        """Get a snapshot of the run's metrics."""
        with self._lock:
            return self._metrics.model_copy(deep=True)

    def complete_generation(self) -> GenerationMetrics:
        """Stamp the end time and return the final metrics."""
        with self._lock:
            self._metrics.end_time = self._metrics.end_time or utc_now()
            metrics = self._metrics.model_copy(deep=True)

        self.logger.info(
            "Generation completed",
            total_created=metrics.total_created,
            total_errors=metrics.total_errors,
            retries=metrics.retries,
            duration=round(metrics.duration(), 2),
        )
        return metrics

    # ------------------------------------------------------------------
    # Whole-state operations
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget all entities, errors and metrics."""
        with self._lock:
            self._init_state()

    def get_state(self) -> GeneratorState:
        """Get a copy of the current state."""
        with self._lock:
            return GeneratorState(
                organization_ids=list(self._organization_ids),
                entity_ids={
                    kind: {parent: list(ids) for parent, ids in by_parent.items()}
                    for kind, by_parent in self._entity_ids.items()
                },
                asset_codes=_copy_mapping(self._asset_codes),
                account_aliases=_copy_mapping(self._account_aliases),
                account_assets=_copy_mapping(self._account_assets),
            )

    def restore_state(
        self,
        state: GeneratorState,
        metrics: GenerationMetrics | None = None,
    ) -> None:
        """Replace the current state, typically from a checkpoint.

        Args:
            state: State to restore.
            metrics: Metrics to continue from; fresh metrics if omitted.
        """
        with self._lock:
            self._init_state()
            self._organization_ids = dict.fromkeys(state.organization_ids)
            for kind, by_parent in state.entity_ids.items():
                self._entity_ids[kind] = {
                    parent: dict.fromkeys(ids) for parent, ids in by_parent.items()
                }
            self._asset_codes = _copy_mapping(state.asset_codes)
            self._account_aliases = _copy_mapping(state.account_aliases)
            self._account_assets = _copy_mapping(state.account_assets)
            if metrics is not None:
                self._metrics = metrics.model_copy(deep=True)
                self._metrics.end_time = None

        self.logger.info(
            "State restored",
            organizations=len(state.organization_ids),
            ledgers=sum(len(ids) for ids in state.entity_ids.get(EntityKind.LEDGER, {}).values()),
        )

    def get_memory_stats(self) -> dict[str, Any]:
        """Summarize how many entities are held in memory."""
        with self._lock:
            by_kind = {EntityKind.ORGANIZATION.plural: len(self._organization_ids)}
            at_capacity = False
            for kind, by_parent in self._entity_ids.items():
                by_kind[kind.plural] = sum(len(ids) for ids in by_parent.values())
                if any(len(ids) >= self.max_entities_in_memory for ids in by_parent.values()):
                    at_capacity = True
            evictions = self._evictions

        total = sum(by_kind.values())
        return {
            "total_entities": total,
            "estimated_memory_mb": round(total * BYTES_PER_ENTITY / (1024 * 1024), 3),
            "entities_by_type": by_kind,
            "max_entities_per_parent": self.max_entities_in_memory,
            "at_capacity": at_capacity,
            "evictions": evictions,
        }


def _copy_mapping(mapping: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
    return {parent: dict(entries) for parent, entries in mapping.items()}
