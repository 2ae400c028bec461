"""Tests for entity creation through retry and circuit breaking."""

from random import Random

import pytest

from ledgerseed.config import ConcurrencyLimits
from ledgerseed.execution.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerRegistry,
)
from ledgerseed.execution.retry_policy import RetryConfig, RetryPolicy
from ledgerseed.models.entities import EntityKind
from ledgerseed.services.entity_generator import EntityGenerator, circuit_id
from ledgerseed.utils.exceptions import (
    ClientApiError,
    DependencyError,
    GenerationError,
    TransientApiError,
)


def make_generator(client, state, breaker_config=None, concurrency=3):
    return EntityGenerator(
        client,
        state,
        breakers=CircuitBreakerRegistry(breaker_config or CircuitBreakerConfig(failure_threshold=100)),
        retry=RetryPolicy(RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0)),
        concurrency=ConcurrencyLimits.uniform(concurrency),
        rng=Random(1),
    )


def add_accounts(state, ledger_id, codes):
    for n, code in enumerate(codes, start=1):
        state.add_account(ledger_id, f"account-{n}", alias=f"@acct-{code.lower()}-{n}", asset_code=code)


class TestCreateEntity:
    """Tests for creating a single entity."""

    @pytest.mark.asyncio
    async def test_conflict_reuses_existing(self, fake_client, state):
        """A conflict is resolved by looking up the existing entity."""
        fake_client.seed(EntityKind.ASSET, "l1", {"id": "existing-asset", "code": "BRL"})
        generator = make_generator(fake_client, state)

        ref = await generator.create_entity(
            EntityKind.ASSET,
            {"code": "BRL"},
            organization_id="o1",
            ledger_id="l1",
        )

        assert ref.id == "existing-asset"
        assert [op for op, _, _ in fake_client.calls] == ["create", "find"]

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fake_client, state):
        """Transient failures are retried and counted."""
        fake_client.fail(EntityKind.ASSET, "l1", times=2)
        generator = make_generator(fake_client, state)

        ref = await generator.create_entity(EntityKind.ASSET, {"code": "BRL"}, organization_id="o1", ledger_id="l1")

        assert ref.id.startswith("asset-")
        assert fake_client.create_calls(EntityKind.ASSET) == 3
        assert state.get_metrics().retries == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_generation_error(self, fake_client, state):
        """Transient failures past the last attempt become a GenerationError."""
        fake_client.fail(EntityKind.ASSET, "l1")
        generator = make_generator(fake_client, state)

        with pytest.raises(GenerationError) as exc_info:
            await generator.create_entity(EntityKind.ASSET, {"code": "BRL"}, organization_id="o1", ledger_id="l1")

        assert isinstance(exc_info.value.__cause__, TransientApiError)
        assert exc_info.value.parent_id == "l1"
        assert fake_client.create_calls(EntityKind.ASSET) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, fake_client, state):
        """A rejected request fails on the first attempt."""
        fake_client.fail(EntityKind.ASSET, "l1", error=ClientApiError("invalid code", 422))
        generator = make_generator(fake_client, state)

        with pytest.raises(ClientApiError):
            await generator.create_entity(EntityKind.ASSET, {"code": "BRL"}, organization_id="o1", ledger_id="l1")

        assert fake_client.create_calls(EntityKind.ASSET) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_stops_calls(self, fake_client, state):
        """Once the kind's circuit opens, remaining entities fail fast."""
        fake_client.fail(EntityKind.ASSET, "l1")
        generator = make_generator(
            fake_client,
            state,
            CircuitBreakerConfig(failure_threshold=2, minimum_requests=2),
            concurrency=1,
        )

        refs = await generator.generate_assets("o1", "l1", 4)

        assert refs == []
        assert fake_client.create_calls(EntityKind.ASSET) == 2
        assert generator.breakers.total_trips == 1
        error_types = {r.error_type for r in state.get_error_records(EntityKind.ASSET)}
        assert CircuitBreakerError.__name__ in error_types
        assert state.get_metrics().error_count(EntityKind.ASSET) == 4

    @pytest.mark.asyncio
    async def test_open_circuit_is_scoped_to_its_ledger(self, fake_client, state):
        """A ledger whose circuit opened does not block another ledger of the same kind."""
        fake_client.fail(EntityKind.ASSET, "l1")
        generator = make_generator(
            fake_client,
            state,
            CircuitBreakerConfig(failure_threshold=2, minimum_requests=2),
            concurrency=1,
        )

        assert await generator.generate_assets("o1", "l1", 3) == []
        refs = await generator.generate_assets("o1", "l2", 3)

        assert len(refs) == 3
        assert generator.breakers.get_circuit(circuit_id(EntityKind.ASSET, "l1")).is_available() is False
        assert generator.breakers.get_circuit(circuit_id(EntityKind.ASSET, "l2")).is_available() is True
        assert circuit_id(EntityKind.ASSET, "l2") == "asset.create:l2"
        assert circuit_id(EntityKind.ORGANIZATION, None) == "organization.create"


class TestBatches:
    """Tests for batch generation."""

    @pytest.mark.asyncio
    async def test_generate_organizations(self, fake_client, state):
        """Created organizations are recorded in state."""
        generator = make_generator(fake_client, state)

        refs = await generator.generate_organizations(3)

        assert len(refs) == 3
        assert state.get_organization_ids() == [r.id for r in refs]
        assert state.get_metrics().created_count(EntityKind.ORGANIZATION) == 3

    @pytest.mark.asyncio
    async def test_generate_assets_reuses_existing(self, fake_client, state):
        """Re-running asset generation reuses what already exists."""
        fake_client.seed(EntityKind.ASSET, "l1", {"id": "existing-brl", "code": "BRL"})
        generator = make_generator(fake_client, state)

        refs = await generator.generate_assets("o1", "l1", 2)

        assert [r.id for r in refs][0] == "existing-brl"
        assert state.get_asset_codes("l1") == ["BRL", "USD"]

    @pytest.mark.asyncio
    async def test_batch_failures_are_recorded(self, fake_client, state):
        """Failed entities are tracked and counted without aborting the batch."""
        fake_client.fail(EntityKind.ASSET, "l1")
        generator = make_generator(fake_client, state)

        refs = await generator.generate_assets("o1", "l1", 3)

        assert refs == []
        assert state.get_metrics().error_count(EntityKind.ASSET) == 3
        records = state.get_error_records(EntityKind.ASSET)
        assert {r.error_type for r in records} == {"GenerationError"}
        assert all(r.parent_id == "l1" for r in records)

    @pytest.mark.asyncio
    async def test_generate_ledger_failure_returns_none(self, fake_client, state):
        """A ledger that cannot be created yields None."""
        fake_client.fail(EntityKind.LEDGER, "o1")
        generator = make_generator(fake_client, state)

        assert await generator.generate_ledger("o1", 0) is None
        assert state.get_metrics().error_count(EntityKind.LEDGER) == 1


class TestAccounts:
    """Tests for account generation."""

    @pytest.mark.asyncio
    async def test_requires_assets(self, fake_client, state):
        """Accounts cannot be created before assets."""
        generator = make_generator(fake_client, state)

        with pytest.raises(DependencyError):
            await generator.generate_accounts("o1", "l1", 3)

        assert fake_client.create_calls() == 0

    @pytest.mark.asyncio
    async def test_round_robin_over_assets(self, fake_client, state):
        """Accounts are spread over the ledger's assets and portfolios."""
        state.add_asset("l1", "a1", "BRL")
        state.add_asset("l1", "a2", "USD")
        state.add_entity_id(EntityKind.PORTFOLIO, "l1", "p1")
        generator = make_generator(fake_client, state)

        refs = await generator.generate_accounts("o1", "l1", 4)

        assert [state.get_account_asset("l1", r.id) for r in refs] == ["BRL", "USD", "BRL", "USD"]
        assert len(state.get_account_aliases("l1")) == 4
        stored = fake_client.entities[(EntityKind.ACCOUNT, "l1")]
        assert all(entity["portfolioId"] == "p1" for entity in stored)


class TestTransactions:
    """Tests for transaction generation."""

    @pytest.mark.asyncio
    async def test_deposits_then_transfers(self, fake_client, state):
        """Every account is funded, then transfers stay within an asset."""
        add_accounts(state, "l1", ["BRL", "USD", "BRL", "USD"])
        generator = make_generator(fake_client, state)

        refs = await generator.generate_transactions("o1", "l1", 2)

        stored = fake_client.entities[(EntityKind.TRANSACTION, "l1")]
        deposits = [t for t in stored if t["metadata"]["type"] == "deposit"]
        transfers = [t for t in stored if t["metadata"]["type"] == "transfer"]
        assert len(refs) == 12
        assert len(deposits) == 4
        assert all(t["send"]["source"]["from"][0]["accountAlias"].startswith("@external/") for t in deposits)
        assert len(transfers) == 8
        for transfer in transfers:
            source = transfer["send"]["source"]["from"][0]["accountAlias"]
            destination = transfer["send"]["distribute"]["to"][0]["accountAlias"]
            assert source != destination
            assert source.split("-")[1] == destination.split("-")[1]

    @pytest.mark.asyncio
    async def test_single_asset_accounts_only_get_deposits(self, fake_client, state):
        """Accounts with no peer of the same asset receive only a deposit."""
        add_accounts(state, "l1", ["BRL", "USD"])
        generator = make_generator(fake_client, state)

        refs = await generator.generate_transactions("o1", "l1", 3)

        assert len(refs) == 2

    @pytest.mark.asyncio
    async def test_requires_two_accounts(self, fake_client, state):
        """A single account cannot transact."""
        add_accounts(state, "l1", ["BRL"])
        generator = make_generator(fake_client, state)

        with pytest.raises(DependencyError):
            await generator.generate_transactions("o1", "l1", 1)
