"""Generation services: state, checkpoints, entity creation and orchestration."""

from ledgerseed.services.checkpoint_manager import CheckpointFile, CheckpointManager
from ledgerseed.services.entity_generator import EntityGenerator
from ledgerseed.services.orchestration_service import (
    OrchestrationResult,
    OrchestrationService,
    build_orchestration_service,
)
from ledgerseed.services.performance_reporter import PerformanceReporter, PerformanceSummary
from ledgerseed.services.state_manager import StateManager

__all__ = [
    "CheckpointFile",
    "CheckpointManager",
    "EntityGenerator",
    "OrchestrationResult",
    "OrchestrationService",
    "build_orchestration_service",
    "PerformanceReporter",
    "PerformanceSummary",
    "StateManager",
]
