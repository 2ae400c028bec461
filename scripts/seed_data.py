#!/usr/bin/env python3
"""Seed a ledger platform with organizations, ledgers, accounts and transactions."""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone

import structlog
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from ledgerseed.clients.ledger_api import HttpLedgerClient
from ledgerseed.config import ConcurrencyLimits, GeneratorOptions
from ledgerseed.log import configure_logging
from ledgerseed.models.volume import VolumeSize
from ledgerseed.services.checkpoint_manager import CheckpointManager
from ledgerseed.services.orchestration_service import build_orchestration_service
from ledgerseed.utils.exceptions import ConfigurationError

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed a ledger platform with test data")
    parser.add_argument(
        "--volume",
        choices=[v.value for v in VolumeSize],
        help="Volume preset (default: small)",
    )
    parser.add_argument("--base-url", help="API base URL without port (default: http://localhost)")
    parser.add_argument("--onboarding-port", type=int, help="Onboarding service port (default: 3000)")
    parser.add_argument("--transaction-port", type=int, help="Transaction service port (default: 3001)")
    parser.add_argument("--concurrency", type=int, help="Concurrent requests per phase")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible data")
    parser.add_argument("--checkpoint-dir", help="Directory for checkpoint files")
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--no-resume", action="store_true", help="Clear checkpoints and start fresh")
    parser.add_argument("--list-checkpoints", action="store_true", help="List checkpoints and exit")
    return parser


def load_options(args: argparse.Namespace) -> GeneratorOptions:
    """Merge environment variables with CLI flags (flags win)."""
    concurrency = None
    if args.concurrency is not None:
        try:
            concurrency = ConcurrencyLimits.uniform(args.concurrency)
        except PydanticValidationError as e:
            raise ConfigurationError("--concurrency is out of range", {"value": args.concurrency}) from e

    return GeneratorOptions.from_env(
        volume=args.volume,
        base_url=args.base_url,
        onboarding_port=args.onboarding_port,
        transaction_port=args.transaction_port,
        seed=args.seed,
        checkpoint_dir=args.checkpoint_dir,
        debug=args.debug,
        concurrency=concurrency,
        resume=False if args.no_resume else None,
    )


def list_checkpoints(options: GeneratorOptions, console: Console) -> None:
    checkpoints = CheckpointManager(options.checkpoint_dir).list_checkpoints()
    if not checkpoints:
        console.print(f"No checkpoints in {options.checkpoint_dir}")
        return

    table = Table(title=f"Checkpoints in {options.checkpoint_dir}")
    table.add_column("ID")
    table.add_column("Saved at")
    table.add_column("File")
    for checkpoint in checkpoints:
        saved_at = datetime.fromtimestamp(checkpoint.timestamp_ms / 1000, tz=timezone.utc)
        table.add_row(checkpoint.id, saved_at.isoformat(timespec="seconds"), checkpoint.path.name)
    console.print(table)


async def run(options: GeneratorOptions, console: Console) -> int:
    """Run one generation and return the process exit code."""
    if not options.resume:
        CheckpointManager(options.checkpoint_dir).clear_checkpoints()

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        # Signal handlers are unavailable on some platforms (e.g. Windows)
        pass

    async with HttpLedgerClient.from_options(options) as client:
        service = build_orchestration_service(options, client, cancel_event, console)
        result = await service.orchestrate_generation()

    if result.cancelled:
        logger.warning("Generation interrupted; re-run to resume", checkpoint_id=result.checkpoint_id)
    elif not result.success:
        logger.error("Generation failed", error=str(result.error), checkpoint_id=result.checkpoint_id)
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(debug=bool(args.debug), json_logs=args.json_logs)
    console = Console(stderr=True)

    try:
        options = load_options(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=e.message, **e.details)
        return 1

    if options.debug and not args.debug:
        configure_logging(debug=True, json_logs=args.json_logs)

    if args.list_checkpoints:
        list_checkpoints(options, console)
        return 0

    return asyncio.run(run(options, console))


if __name__ == "__main__":
    sys.exit(main())
