"""Creation of entities through the resilience stack.

Every remote call runs as retry → circuit breaker → API client. Breakers
are scoped to the operation and its parent (``asset.create:<ledger_id>``),
so a ledger whose calls keep failing only trips its own circuit. A conflict
from the API is treated as a tagged ``AlreadyExists`` outcome and resolved by
looking the entity up, so a re-run reuses what is already there instead of
failing. Results are recorded in the ``StateManager``; failures are tracked
per entity and never abort a batch.
"""

from collections.abc import Callable, Sequence
from random import Random
from typing import Any

import structlog

from ledgerseed.clients.ledger_api import LedgerApiClient
from ledgerseed.config import ConcurrencyLimits
from ledgerseed.execution.circuit_breaker import CircuitBreakerError, CircuitBreakerRegistry
from ledgerseed.execution.retry_policy import RetryPolicy
from ledgerseed.execution.worker_pool import WorkerPool
from ledgerseed.generators.payloads import (
    asset_for_index,
    deposit_amount,
    external_account_alias,
    generate_payload,
    transfer_amount,
)
from ledgerseed.models.entities import (
    AlreadyExists,
    Created,
    CreateOutcome,
    EntityKind,
    EntityRef,
)
from ledgerseed.services.state_manager import StateManager
from ledgerseed.utils.exceptions import (
    ConflictError,
    DependencyError,
    GenerationError,
    TransientApiError,
)

logger = structlog.get_logger()

ContextFactory = Callable[[int], dict[str, Any]]


def circuit_id(kind: EntityKind, parent_id: str | None) -> str:
    """Breaker key for creating ``kind`` entities under one parent."""
    if parent_id is None:
        return f"{kind.value}.create"
    return f"{kind.value}.create:{parent_id}"


class EntityGenerator:
    """Creates batches of entities and records them in state.

    Example:
        generator = EntityGenerator(client, state)
        orgs = await generator.generate_organizations(2)
        ledger = await generator.generate_ledger(orgs[0].id, index=0)
    """

    def __init__(
        self,
        client: LedgerApiClient,
        state: StateManager,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        retry: RetryPolicy | None = None,
        concurrency: ConcurrencyLimits | None = None,
        rng: Random | None = None,
    ):
        self.client = client
        self.state = state
        self.breakers = breakers or CircuitBreakerRegistry()
        self.retry = retry or RetryPolicy()
        self.concurrency = concurrency or ConcurrencyLimits()
        self.rng = rng or Random()
        self.logger = logger.bind(service="entity_generator")

    # ------------------------------------------------------------------
    # Single entity
    # ------------------------------------------------------------------

    async def _attempt_create(
        self,
        kind: EntityKind,
        payload: dict[str, Any],
        organization_id: str | None,
        ledger_id: str | None,
    ) -> CreateOutcome:
        try:
            ref = await self.client.create_entity(
                kind,
                payload,
                organization_id=organization_id,
                ledger_id=ledger_id,
            )
        except ConflictError as e:
            return AlreadyExists(kind=kind, payload=payload, error=e)
        return Created(ref=ref)

    async def _resolve_existing(
        self,
        outcome: AlreadyExists,
        organization_id: str | None,
        ledger_id: str | None,
    ) -> EntityRef:
        """Look up an entity the API says already exists.

        Raises:
            TransientApiError: If the lookup fails or finds nothing.
        """
        try:
            ref = await self.client.find_entity(
                outcome.kind,
                outcome.payload,
                organization_id=organization_id,
                ledger_id=ledger_id,
            )
        except CircuitBreakerError:
            raise
        except Exception as e:
            raise TransientApiError(
                f"{outcome.kind.value} already exists but lookup failed: {e}",
                details={"conflict": outcome.error.message},
            ) from e

        if ref is None:
            raise TransientApiError(
                f"{outcome.kind.value} already exists but could not be found",
                details={"conflict": outcome.error.message},
            )

        self.logger.info(
            "Reusing existing entity",
            kind=outcome.kind.value,
            entity_id=ref.id,
        )
        return ref

    async def create_entity(
        self,
        kind: EntityKind,
        payload: dict[str, Any],
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
    ) -> EntityRef:
        """Create one entity with retry and circuit breaking.

        Args:
            kind: Entity kind.
            payload: Request body.
            organization_id: Owning organization.
            ledger_id: Owning ledger.

        Returns:
            Reference to the created or reused entity.

        Raises:
            GenerationError: Transient failures outlasted every retry.
            CircuitBreakerError: The circuit for this kind and parent is open.
            ClientApiError: The API rejected the request.
        """
        parent_id = ledger_id or organization_id
        breaker = self.breakers.get_circuit(circuit_id(kind, parent_id))

        async def create_or_reuse() -> EntityRef:
            outcome = await breaker.execute(
                lambda: self._attempt_create(kind, payload, organization_id, ledger_id)
            )
            match outcome:
                case Created(ref=ref):
                    return ref
                case AlreadyExists():
                    return await self._resolve_existing(outcome, organization_id, ledger_id)

        try:
            return await self.retry.execute(
                create_or_reuse,
                on_retry=lambda attempt, error, delay: self.state.increment_retry_count(),
                context={"kind": kind.value, "parent_id": parent_id},
            )
        except TransientApiError as e:
            raise GenerationError(
                f"Failed to create {kind.value} after {self.retry.config.max_retries} attempts",
                entity_type=kind.value,
                parent_id=parent_id,
                context={"last_error": str(e)},
            ) from e

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _record(
        self,
        kind: EntityKind,
        ref: EntityRef,
        payload: dict[str, Any],
        organization_id: str | None,
        ledger_id: str | None,
    ) -> None:
        attributes = {**payload, **ref.attributes}
        if kind == EntityKind.ORGANIZATION:
            self.state.add_entity_id(EntityKind.ORGANIZATION, None, ref.id)
        elif kind == EntityKind.LEDGER:
            self.state.add_entity_id(EntityKind.LEDGER, organization_id, ref.id)
        elif kind == EntityKind.ASSET:
            self.state.add_asset(ledger_id, ref.id, attributes["code"])
        elif kind == EntityKind.ACCOUNT:
            self.state.add_account(
                ledger_id,
                ref.id,
                alias=attributes.get("alias"),
                asset_code=attributes.get("assetCode"),
            )
        else:
            self.state.add_entity_id(kind, ledger_id, ref.id)

    def _record_failure(
        self,
        kind: EntityKind,
        parent_id: str | None,
        error: BaseException,
        context: dict[str, Any],
    ) -> None:
        self.state.track_generation_error(kind, parent_id, error, context)
        self.state.increment_error_count(kind)

    async def create_many(
        self,
        kind: EntityKind,
        payloads: Sequence[dict[str, Any]],
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
    ) -> list[EntityRef]:
        """Create entities concurrently within the kind's limit.

        Failures are recorded per entity; the batch continues.

        Returns:
            References of the entities that exist afterwards, in input order.
        """
        pool = WorkerPool(
            self.concurrency.for_kind(kind),
            self.concurrency.batch_delay,
            name=kind.plural,
        )
        parent_id = ledger_id or organization_id

        async def create(payload: dict[str, Any]) -> EntityRef:
            return await self.create_entity(
                kind,
                payload,
                organization_id=organization_id,
                ledger_id=ledger_id,
            )

        results = await pool.map(create, list(payloads))

        refs: list[EntityRef] = []
        for index, (payload, result) in enumerate(zip(payloads, results)):
            if isinstance(result, EntityRef):
                self._record(kind, result, payload, organization_id, ledger_id)
                refs.append(result)
            elif isinstance(result, Exception):
                self._record_failure(kind, parent_id, result, {"index": index})
            else:
                raise result

        self.logger.info(
            "Batch created",
            kind=kind.value,
            parent_id=parent_id,
            requested=len(payloads),
            created=len(refs),
        )
        return refs

    async def generate_batch(
        self,
        kind: EntityKind,
        count: int,
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
        context_for: ContextFactory | None = None,
        start_index: int = 0,
    ) -> list[EntityRef]:
        """Generate payloads and create ``count`` entities of ``kind``.

        Payloads are built sequentially so a seeded run is reproducible.
        A payload that cannot be built counts as a failed entity.
        """
        payloads: list[dict[str, Any]] = []
        parent_id = ledger_id or organization_id

        for offset in range(count):
            index = start_index + offset
            context = {"index": index, **(context_for(index) if context_for else {})}
            try:
                payloads.append(generate_payload(kind, context, self.rng))
            except Exception as e:
                self._record_failure(kind, parent_id, e, {"index": index})

        if not payloads:
            return []
        return await self.create_many(
            kind,
            payloads,
            organization_id=organization_id,
            ledger_id=ledger_id,
        )

    async def generate_organizations(self, count: int) -> list[EntityRef]:
        return await self.generate_batch(EntityKind.ORGANIZATION, count)

    async def generate_ledger(self, organization_id: str, index: int) -> EntityRef | None:
        """Create a single ledger; returns None if it failed."""
        refs = await self.generate_batch(
            EntityKind.LEDGER,
            1,
            organization_id=organization_id,
            start_index=index,
        )
        return refs[0] if refs else None

    async def generate_assets(self, organization_id: str, ledger_id: str, count: int) -> list[EntityRef]:
        return await self.generate_batch(
            EntityKind.ASSET,
            count,
            organization_id=organization_id,
            ledger_id=ledger_id,
            context_for=lambda index: {"code": asset_for_index(index)[0]},
        )

    async def generate_portfolios(self, organization_id: str, ledger_id: str, count: int) -> list[EntityRef]:
        return await self.generate_batch(
            EntityKind.PORTFOLIO,
            count,
            organization_id=organization_id,
            ledger_id=ledger_id,
        )

    async def generate_segments(self, organization_id: str, ledger_id: str, count: int) -> list[EntityRef]:
        return await self.generate_batch(
            EntityKind.SEGMENT,
            count,
            organization_id=organization_id,
            ledger_id=ledger_id,
        )

    async def generate_accounts(self, organization_id: str, ledger_id: str, count: int) -> list[EntityRef]:
        """Create accounts spread round-robin over the ledger's assets.

        Accounts are attached to the ledger's portfolios and segments when
        there are any.

        Raises:
            DependencyError: If the ledger has no assets.
        """
        asset_codes = self.state.get_asset_codes(ledger_id)
        if not asset_codes:
            raise DependencyError(EntityKind.ACCOUNT.value, EntityKind.ASSET.plural, ledger_id)

        portfolio_ids = self.state.get_ids(EntityKind.PORTFOLIO, ledger_id)
        segment_ids = self.state.get_ids(EntityKind.SEGMENT, ledger_id)

        def context_for(index: int) -> dict[str, Any]:
            context: dict[str, Any] = {"asset_code": asset_codes[index % len(asset_codes)]}
            if portfolio_ids:
                context["portfolio_id"] = portfolio_ids[index % len(portfolio_ids)]
            if segment_ids:
                context["segment_id"] = segment_ids[index % len(segment_ids)]
            return context

        return await self.generate_batch(
            EntityKind.ACCOUNT,
            count,
            organization_id=organization_id,
            ledger_id=ledger_id,
            context_for=context_for,
        )

    async def generate_transactions(
        self,
        organization_id: str,
        ledger_id: str,
        transactions_per_account: int,
    ) -> list[EntityRef]:
        """Fund every account, then transfer between accounts of the same asset.

        Each account first receives a deposit from the asset's external
        account. Afterwards every account that shares its asset with at least
        one other account sends ``transactions_per_account`` transfers to
        random peers.

        Raises:
            DependencyError: If the ledger has fewer than two accounts.
        """
        aliases = self.state.get_account_aliases(ledger_id)
        accounts = [
            (alias, self.state.get_account_asset(ledger_id, account_id))
            for account_id, alias in aliases.items()
        ]
        accounts = [(alias, code) for alias, code in accounts if code]
        if len(accounts) < 2:
            raise DependencyError(EntityKind.TRANSACTION.value, "two or more accounts", ledger_id)

        deposits = [
            generate_payload(
                EntityKind.TRANSACTION,
                {
                    "asset_code": code,
                    "source_alias": external_account_alias(code),
                    "destination_alias": alias,
                    "amount": deposit_amount(code),
                    "transaction_type": "deposit",
                },
                self.rng,
            )
            for alias, code in accounts
        ]
        refs = await self.create_many(
            EntityKind.TRANSACTION,
            deposits,
            organization_id=organization_id,
            ledger_id=ledger_id,
        )

        by_asset: dict[str, list[str]] = {}
        for alias, code in accounts:
            by_asset.setdefault(code, []).append(alias)

        transfers: list[dict[str, Any]] = []
        for _ in range(transactions_per_account):
            for code, group in by_asset.items():
                if len(group) < 2:
                    continue
                for source in group:
                    destination = self.rng.choice([a for a in group if a != source])
                    transfers.append(
                        generate_payload(
                            EntityKind.TRANSACTION,
                            {
                                "asset_code": code,
                                "source_alias": source,
                                "destination_alias": destination,
                                "amount": transfer_amount(code, self.rng),
                                "sequence": len(transfers),
                            },
                            self.rng,
                        )
                    )

        if transfers:
            refs += await self.create_many(
                EntityKind.TRANSACTION,
                transfers,
                organization_id=organization_id,
                ledger_id=ledger_id,
            )
        return refs
