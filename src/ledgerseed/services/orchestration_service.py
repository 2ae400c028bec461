"""Phased, resumable generation of the whole entity tree.

Organizations are created first. Each organization's ledgers are then
created one at a time, and every new ledger goes through its full
sequence (assets, portfolios, segments, accounts, transactions) before it
is checkpointed. Every ledger present in a checkpoint is therefore complete
and a resumed run only has to skip what the checkpoint already holds.
"""

import asyncio
from dataclasses import dataclass
from random import Random

import structlog
from rich.console import Console

from ledgerseed.clients.ledger_api import LedgerApiClient
from ledgerseed.config import GeneratorOptions
from ledgerseed.execution.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from ledgerseed.execution.retry_policy import RetryConfig, RetryPolicy
from ledgerseed.models.base import generate_ulid
from ledgerseed.models.checkpoint import (
    Checkpoint,
    CheckpointConfig,
    GenerationPhase,
    GenerationProgress,
)
from ledgerseed.models.entities import EntityKind
from ledgerseed.models.metrics import GenerationMetrics
from ledgerseed.models.state import CHILD_KINDS, GeneratorState
from ledgerseed.models.volume import VolumeMetrics
from ledgerseed.services.checkpoint_manager import CheckpointManager
from ledgerseed.services.entity_generator import EntityGenerator
from ledgerseed.services.performance_reporter import PerformanceReporter, PerformanceSummary
from ledgerseed.services.state_manager import StateManager
from ledgerseed.utils.exceptions import (
    DependencyError,
    GenerationCancelled,
    GenerationError,
)

logger = structlog.get_logger()


@dataclass
class OrchestrationResult:
    """Outcome of a generation run."""

    success: bool
    metrics: GenerationMetrics
    summary: PerformanceSummary | None = None
    error: BaseException | None = None
    cancelled: bool = False
    resumed: bool = False
    checkpoint_id: str | None = None


def discount_ledger(metrics: GenerationMetrics, state: GeneratorState, ledger_id: str) -> GenerationMetrics:
    """Take a ledger and the entities under it out of the created counts."""
    counts = {EntityKind.LEDGER: 1}
    for kind in CHILD_KINDS:
        if kind != EntityKind.LEDGER:
            counts[kind] = len(state.entity_ids.get(kind, {}).get(ledger_id, []))
    for kind, count in counts.items():
        metrics.created[kind] = max(metrics.created.get(kind, 0) - count, 0)
    return metrics


def without_ledger(state: GeneratorState, organization_id: str, ledger_id: str) -> GeneratorState:
    """Drop a ledger and everything under it from a state copy."""
    ledgers = state.entity_ids.get(EntityKind.LEDGER, {}).get(organization_id)
    if ledgers and ledger_id in ledgers:
        ledgers.remove(ledger_id)
    for kind in CHILD_KINDS:
        if kind != EntityKind.LEDGER:
            state.entity_ids.get(kind, {}).pop(ledger_id, None)
    state.asset_codes.pop(ledger_id, None)
    state.account_aliases.pop(ledger_id, None)
    state.account_assets.pop(ledger_id, None)
    return state


class OrchestrationService:
    """Drives a generation run from start (or checkpoint) to completion.

    Example:
        async with HttpLedgerClient.from_options(options) as client:
            service = build_orchestration_service(options, client)
            result = await service.orchestrate_generation()
    """

    def __init__(
        self,
        options: GeneratorOptions,
        state: StateManager,
        checkpoints: CheckpointManager,
        generator: EntityGenerator,
        reporter: PerformanceReporter | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.options = options
        self.state = state
        self.checkpoints = checkpoints
        self.generator = generator
        self.reporter = reporter or PerformanceReporter()
        self.breakers = breakers
        self.cancel_event = cancel_event
        self.logger = logger.bind(service="orchestration_service")

        self.volume: VolumeMetrics = options.volume_metrics
        self.volume_name: str = options.volume.value

        self._phase = GenerationPhase.ORGANIZATIONS
        self._org_index = 0
        self._ledger_index = 0
        self._in_flight: tuple[str, str] | None = None
        self._last_checkpoint_id: str | None = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def orchestrate_generation(self) -> OrchestrationResult:
        """Run generation, resuming from the latest checkpoint if there is one.

        Checkpoints are ignored when ``options.resume`` is off. Never raises
        for generation failures: an unexpected error saves an error
        checkpoint and returns a failed result.
        """
        with structlog.contextvars.bound_contextvars(run_id=generate_ulid()):
            try:
                checkpoint = None
                if self.options.resume:
                    checkpoint = self.checkpoints.load_latest_checkpoint()
                if checkpoint is not None:
                    self.logger.info("Found checkpoint, resuming generation", checkpoint_id=checkpoint.id)
                    return await self.resume_from_checkpoint(checkpoint)
                return await self.start_new_generation()

            except GenerationCancelled:
                self.logger.warning(
                    "Generation cancelled",
                    organization_index=self._org_index,
                    ledger_index=self._ledger_index,
                )
                self._save_checkpoint(self._phase)
                metrics = self.state.get_metrics()
                return OrchestrationResult(
                    success=False,
                    metrics=metrics,
                    summary=self._report(metrics),
                    cancelled=True,
                    checkpoint_id=self._last_checkpoint_id,
                )

            except Exception as e:
                self.logger.exception(
                    "Orchestration failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    phase=self._phase.value,
                )
                self._save_checkpoint(GenerationPhase.ERROR)
                metrics = self.state.get_metrics()
                return OrchestrationResult(
                    success=False,
                    metrics=metrics,
                    summary=self._report(metrics),
                    error=e,
                    checkpoint_id=self._last_checkpoint_id,
                )

    async def start_new_generation(self) -> OrchestrationResult:
        """Generate everything from scratch.

        Raises:
            GenerationError: If no organization could be created.
        """
        self.state.reset()
        self._phase = GenerationPhase.ORGANIZATIONS
        self._org_index = 0
        self._ledger_index = 0

        self.logger.info(
            "Starting generation",
            volume=self.volume_name,
            organizations=self.volume.organizations,
            estimated_entities=self.volume.estimated_entities,
        )

        organizations = await self.generator.generate_organizations(self.volume.organizations)
        if not organizations:
            raise GenerationError(
                "No organizations were created",
                entity_type=EntityKind.ORGANIZATION.value,
                context={"requested": self.volume.organizations},
            )
        self._save_checkpoint(GenerationPhase.ORGANIZATIONS)

        for org_index, organization_id in enumerate(self.state.get_organization_ids()):
            await self._generate_organization_entities(org_index, organization_id, existing_ledgers=0)

        return self._complete()

    async def resume_from_checkpoint(self, checkpoint: Checkpoint) -> OrchestrationResult:
        """Continue a run from a checkpoint.

        Organizations and ledgers already in the checkpoint are never
        created again. A checkpoint without organizations starts over.
        """
        if not checkpoint.state.organization_ids:
            self.logger.info("Checkpoint has no organizations, starting fresh", checkpoint_id=checkpoint.id)
            return await self.start_new_generation()

        restored = self.checkpoints.restore_state(checkpoint.state)
        self.state.restore_state(restored, checkpoint.metrics)
        self.volume = checkpoint.config.metrics
        self.volume_name = checkpoint.config.volume

        resume = self.checkpoints.determine_resume_point(checkpoint)
        self._phase = resume.current_phase
        self.logger.info(
            "Resuming generation",
            checkpoint_id=checkpoint.id,
            phase=resume.current_phase.value,
            skip_organizations=resume.skip_organizations,
            volume=self.volume_name,
        )

        organization_ids = self.state.get_organization_ids()
        for org_index in range(resume.skip_organizations, len(organization_ids)):
            organization_id = organization_ids[org_index]
            await self._generate_organization_entities(
                org_index,
                organization_id,
                existing_ledgers=resume.skip_ledgers_per_org.get(organization_id, 0),
            )

        result = self._complete()
        result.resumed = True
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise GenerationCancelled()

    async def _generate_organization_entities(
        self,
        org_index: int,
        organization_id: str,
        existing_ledgers: int,
    ) -> None:
        """Create the missing ledgers of one organization, one at a time."""
        self._org_index = org_index
        self._ledger_index = max(existing_ledgers - 1, 0)
        remaining = self.volume.ledgers_per_org - existing_ledgers
        log = self.logger.bind(organization_id=organization_id, organization_index=org_index)

        if remaining <= 0:
            log.debug("Organization already complete", ledgers=existing_ledgers)
            return

        created = 0
        for offset in range(remaining):
            self._check_cancelled()
            ledger_index = existing_ledgers + offset
            self._phase = GenerationPhase.LEDGERS

            ledger = await self.generator.generate_ledger(organization_id, ledger_index)
            if ledger is None:
                continue
            created += 1

            self._in_flight = (organization_id, ledger.id)
            await self._generate_ledger_entities(organization_id, ledger.id)
            self._in_flight = None

            self._ledger_index = ledger_index
            self._save_checkpoint(GenerationPhase.LEDGERS, org_index, ledger_index)

        if existing_ledgers + created == 0:
            self.state.increment_error_count(EntityKind.LEDGER)
            log.warning("No ledgers created, skipping organization")
        else:
            log.info("Organization complete", ledgers_created=created)

    async def _generate_ledger_entities(self, organization_id: str, ledger_id: str) -> None:
        """Run the per-ledger sequence; structural failures skip the rest of the ledger."""
        log = self.logger.bind(organization_id=organization_id, ledger_id=ledger_id)
        volume = self.volume

        self._phase = GenerationPhase.ASSETS
        assets = await self.generator.generate_assets(organization_id, ledger_id, volume.assets_per_ledger)
        if not assets:
            self.state.increment_error_count(EntityKind.ASSET)
            log.warning("No assets created, skipping ledger")
            return

        # Portfolios and segments are optional; their failures are absorbed
        self._phase = GenerationPhase.PORTFOLIOS
        await self.generator.generate_portfolios(organization_id, ledger_id, volume.portfolios_per_ledger)
        self._phase = GenerationPhase.SEGMENTS
        await self.generator.generate_segments(organization_id, ledger_id, volume.segments_per_ledger)

        self._phase = GenerationPhase.ACCOUNTS
        try:
            self._validate_dependencies(ledger_id)
            accounts = await self.generator.generate_accounts(organization_id, ledger_id, volume.accounts_per_ledger)
        except DependencyError as e:
            self.state.track_generation_error(EntityKind.ACCOUNT, ledger_id, e)
            self.state.increment_error_count(EntityKind.ACCOUNT)
            log.warning("Skipping accounts", error=str(e))
            return

        if not accounts:
            self.state.increment_error_count(EntityKind.ACCOUNT)
            log.warning("No accounts created, skipping transactions")
            return

        if volume.transactions_per_account == 0:
            return

        self._phase = GenerationPhase.TRANSACTIONS
        if len(accounts) < 2:
            self.state.increment_error_count(EntityKind.TRANSACTION)
            log.warning("Transactions need at least two accounts", accounts=len(accounts))
            return

        try:
            await self.generator.generate_transactions(
                organization_id,
                ledger_id,
                volume.transactions_per_account,
            )
        except DependencyError as e:
            self.state.track_generation_error(EntityKind.TRANSACTION, ledger_id, e)
            self.state.increment_error_count(EntityKind.TRANSACTION)
            log.warning("Skipping transactions", error=str(e))

    def _validate_dependencies(self, ledger_id: str) -> None:
        """Raises DependencyError if the ledger has no usable assets."""
        if not self.state.get_asset_codes(ledger_id):
            raise DependencyError(EntityKind.ACCOUNT.value, EntityKind.ASSET.plural, ledger_id)

    # ------------------------------------------------------------------
    # Checkpoints and reporting
    # ------------------------------------------------------------------

    def _completed_steps(self, state: GeneratorState) -> list[str]:
        steps = []
        if state.organization_ids:
            steps.append(EntityKind.ORGANIZATION.plural)
        for kind in CHILD_KINDS:
            if any(state.entity_ids.get(kind, {}).values()):
                steps.append(kind.plural)
        return steps

    def _failed_steps(self, metrics: GenerationMetrics) -> list[str]:
        return [kind.plural for kind in EntityKind if metrics.error_count(kind) > 0]

    def _save_checkpoint(
        self,
        phase: GenerationPhase,
        org_index: int | None = None,
        ledger_index: int | None = None,
    ) -> Checkpoint | None:
        """Save a checkpoint; a failed write is logged and the run continues.

        A ledger whose sequence has not finished is left out of both state
        and created counts. On resume its deterministic natural keys conflict
        with what already exists, so it is looked up and finished instead of
        created twice.
        """
        state = self.state.get_state()
        metrics = self.state.get_metrics()
        if self._in_flight is not None:
            organization_id, ledger_id = self._in_flight
            metrics = discount_ledger(metrics, state, ledger_id)
            state = without_ledger(state, organization_id, ledger_id)

        progress = GenerationProgress(
            phase=phase,
            current_organization_index=self._org_index if org_index is None else org_index,
            current_ledger_index=self._ledger_index if ledger_index is None else ledger_index,
            completed_steps=self._completed_steps(state),
            failed_steps=self._failed_steps(metrics),
        )
        checkpoint = self.checkpoints.create_checkpoint(
            state,
            progress,
            CheckpointConfig(volume=self.volume_name, metrics=self.volume),
            metrics,
        )

        try:
            self.checkpoints.save_checkpoint(checkpoint)
        except OSError as e:
            self.logger.warning("Failed to save checkpoint", error=str(e), phase=phase.value)
            return None

        self._last_checkpoint_id = checkpoint.id
        return checkpoint

    def _report(self, metrics: GenerationMetrics) -> PerformanceSummary:
        trips = self.breakers.total_trips if self.breakers is not None else 0
        return self.reporter.report(metrics, trips, self.state.get_memory_stats())

    def _complete(self) -> OrchestrationResult:
        metrics = self.state.complete_generation()
        summary = self._report(metrics)
        self.checkpoints.cleanup_old_checkpoints(self.options.checkpoint_keep)
        return OrchestrationResult(
            success=True,
            metrics=metrics,
            summary=summary,
            checkpoint_id=self._last_checkpoint_id,
        )


def build_orchestration_service(
    options: GeneratorOptions,
    client: LedgerApiClient,
    cancel_event: asyncio.Event | None = None,
    console: Console | None = None,
) -> OrchestrationService:
    """Wire an ``OrchestrationService`` with default collaborators.

    Args:
        options: Generator options.
        client: Remote API client; the caller owns its lifecycle.
        cancel_event: Set to stop the run at the next ledger boundary.
        console: Console for the performance summary.

    Returns:
        Ready-to-run OrchestrationService.
    """
    state = StateManager(max_entities_in_memory=options.max_entities_in_memory)
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig.from_settings(options.circuit_breaker))
    generator = EntityGenerator(
        client,
        state,
        breakers=breakers,
        retry=RetryPolicy(RetryConfig.from_settings(options.retry)),
        concurrency=options.concurrency,
        rng=Random(options.seed),
    )
    return OrchestrationService(
        options=options,
        state=state,
        checkpoints=CheckpointManager(options.checkpoint_dir),
        generator=generator,
        reporter=PerformanceReporter(console),
        breakers=breakers,
        cancel_event=cancel_event,
    )
