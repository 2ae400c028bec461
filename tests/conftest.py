"""Pytest configuration and fixtures."""

import io
import itertools
from typing import Any

import pytest
from rich.console import Console

from ledgerseed.clients.ledger_api import NATURAL_KEYS
from ledgerseed.config import (
    CircuitBreakerSettings,
    ConcurrencyLimits,
    GeneratorOptions,
    RetrySettings,
)
from ledgerseed.models.entities import EntityKind, EntityRef
from ledgerseed.models.volume import VolumeMetrics
from ledgerseed.services.checkpoint_manager import CheckpointManager
from ledgerseed.services.state_manager import StateManager
from ledgerseed.utils.exceptions import ConflictError, TransientApiError


class FakeLedgerClient:
    """In-memory ledger API.

    Entities are stored per (kind, parent). Creating an entity whose natural
    key already exists under the same parent raises ConflictError, like the
    real API. Failures can be injected per kind and parent.
    """

    def __init__(self):
        self.entities: dict[tuple[EntityKind, str | None], list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, EntityKind, str | None]] = []
        self._failures: dict[tuple[EntityKind, str | None], list[Any]] = {}
        self._ids = {kind: itertools.count(1) for kind in EntityKind}

    def fail(
        self,
        kind: EntityKind,
        parent_id: str | None = None,
        error: Exception | None = None,
        times: int | None = None,
    ) -> None:
        """Make creates of ``kind`` under ``parent_id`` fail.

        ``times=None`` fails forever; the default error is a 500.
        """
        self._failures[(kind, parent_id)] = [
            error or TransientApiError(f"{kind.value} request failed with 500", 500),
            times,
        ]

    def seed(self, kind: EntityKind, parent_id: str | None, entity: dict[str, Any]) -> None:
        """Store an entity as if a previous run had created it."""
        self.entities.setdefault((kind, parent_id), []).append(entity)

    def create_calls(self, kind: EntityKind | None = None, parent_id: str | None = None) -> int:
        return sum(
            1
            for op, k, p in self.calls
            if op == "create"
            and (kind is None or k == kind)
            and (parent_id is None or p == parent_id)
        )

    @staticmethod
    def _parent(kind: EntityKind, organization_id: str | None, ledger_id: str | None) -> str | None:
        if kind == EntityKind.ORGANIZATION:
            return None
        if kind == EntityKind.LEDGER:
            return organization_id
        return ledger_id

    def _ref(self, kind, entity, organization_id, ledger_id) -> EntityRef:
        return EntityRef(
            id=entity["id"],
            kind=kind,
            organization_id=organization_id if kind != EntityKind.ORGANIZATION else None,
            ledger_id=ledger_id if kind not in (EntityKind.ORGANIZATION, EntityKind.LEDGER) else None,
            attributes={
                k: entity[k]
                for k in ("name", "code", "alias", "assetCode", "legalDocument")
                if k in entity
            },
        )

    async def create_entity(self, kind, payload, *, organization_id=None, ledger_id=None):
        parent_id = self._parent(kind, organization_id, ledger_id)
        self.calls.append(("create", kind, parent_id))

        failure = self._failures.get((kind, parent_id))
        if failure is not None:
            error, times = failure
            if times is None or times > 0:
                if times is not None:
                    failure[1] = times - 1
                raise error

        key = NATURAL_KEYS[kind]
        existing = self.entities.setdefault((kind, parent_id), [])
        if key is not None and any(e.get(key) == payload.get(key) for e in existing):
            raise ConflictError(f"{kind.value} already exists")

        entity = {**payload, "id": f"{kind.value}-{next(self._ids[kind])}"}
        existing.append(entity)
        return self._ref(kind, entity, organization_id, ledger_id)

    async def find_entity(self, kind, payload, *, organization_id=None, ledger_id=None):
        parent_id = self._parent(kind, organization_id, ledger_id)
        self.calls.append(("find", kind, parent_id))

        key = NATURAL_KEYS[kind]
        if key is None:
            return None
        for entity in self.entities.get((kind, parent_id), []):
            if entity.get(key) == payload.get(key):
                return self._ref(kind, entity, organization_id, ledger_id)
        return None


@pytest.fixture
def fake_client():
    """Empty in-memory ledger API."""
    return FakeLedgerClient()


@pytest.fixture
def make_client():
    """Factory for additional in-memory ledger APIs."""
    return FakeLedgerClient


@pytest.fixture
def quiet_console():
    """Console that writes to a buffer instead of the terminal."""
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def small_volume():
    """Two organizations with two small ledgers each."""
    return VolumeMetrics(
        organizations=2,
        ledgers_per_org=2,
        assets_per_ledger=3,
        portfolios_per_ledger=1,
        segments_per_ledger=1,
        accounts_per_ledger=4,
        transactions_per_account=1,
    )


@pytest.fixture
def options(tmp_path, small_volume):
    """Generator options with instant retries and a permissive breaker."""
    return GeneratorOptions(
        volume_overrides=small_volume,
        checkpoint_dir=tmp_path / "checkpoints",
        concurrency=ConcurrencyLimits.uniform(3),
        retry=RetrySettings(max_attempts=3, base_delay=0.0, max_delay=0.0),
        circuit_breaker=CircuitBreakerSettings(failure_threshold=100),
        seed=42,
    )


@pytest.fixture
def state():
    """Fresh state manager."""
    return StateManager(max_entities_in_memory=1000)


@pytest.fixture
def checkpoint_manager(tmp_path):
    """Checkpoint manager writing to a temporary directory."""
    return CheckpointManager(tmp_path / "checkpoints")
