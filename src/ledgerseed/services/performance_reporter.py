"""End-of-run performance summary.

Turns ``GenerationMetrics`` into success rates, throughput and
recommendations, and renders them as a rich table.
"""

from typing import Any

from pydantic import Field
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ledgerseed.models.base import BaseModel
from ledgerseed.models.entities import EntityKind
from ledgerseed.models.metrics import GenerationMetrics

LOW_SUCCESS_RATE = 90.0
LOW_THROUGHPUT = 5.0  # Entities per second
HIGH_RETRY_RATIO = 0.1  # Retries per created entity


class ErrorSummary(BaseModel):
    """Errors of one entity kind."""

    kind: EntityKind
    count: int
    percentage: float


class PerformanceSummary(BaseModel):
    """Figures reported at the end of a run."""

    duration_seconds: float
    total_entities: int
    total_errors: int
    overall_success_rate: float
    entities_generated: dict[EntityKind, int]
    success_rates: dict[EntityKind, float]
    throughput: dict[EntityKind, float]
    overall_throughput: float
    errors: list[ErrorSummary] = Field(default_factory=list)
    retries: int = 0
    tracked_errors: int = 0
    circuit_breaker_trips: int = 0
    estimated_memory_mb: float = 0.0
    recommendations: list[str] = Field(default_factory=list)


def _success_rate(created: int, errors: int) -> float:
    attempted = created + errors
    if attempted == 0:
        return 100.0
    return created / attempted * 100


def format_duration(seconds: float) -> str:
    """Render seconds as ``1h 2m 3.4s``."""
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    if hours:
        return f"{hours}h {minutes}m {secs:.1f}s"
    if minutes:
        return f"{minutes}m {secs:.1f}s"
    return f"{secs:.1f}s"


class PerformanceReporter:
    """Builds and prints the performance summary."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def generate_summary(
        self,
        metrics: GenerationMetrics,
        circuit_breaker_trips: int = 0,
        memory_stats: dict[str, Any] | None = None,
    ) -> PerformanceSummary:
        """Compute the summary figures.

        Args:
            metrics: Final (or current) metrics of the run.
            circuit_breaker_trips: How often any circuit opened.
            memory_stats: Output of ``StateManager.get_memory_stats``.

        Returns:
            PerformanceSummary.
        """
        duration = metrics.duration()
        kinds = list(EntityKind)

        generated = {kind: metrics.created_count(kind) for kind in kinds}
        rates = {
            kind: _success_rate(metrics.created_count(kind), metrics.error_count(kind))
            for kind in kinds
        }
        throughput = {
            kind: (generated[kind] / duration if duration > 0 else 0.0)
            for kind in kinds
        }

        total_errors = metrics.total_errors
        errors = sorted(
            (
                ErrorSummary(kind=kind, count=count, percentage=count / total_errors * 100)
                for kind, count in metrics.errors.items()
                if count > 0
            ),
            key=lambda e: e.count,
            reverse=True,
        )

        summary = PerformanceSummary(
            duration_seconds=duration,
            total_entities=metrics.total_created,
            total_errors=total_errors,
            overall_success_rate=_success_rate(metrics.total_created, total_errors),
            entities_generated=generated,
            success_rates=rates,
            throughput=throughput,
            overall_throughput=metrics.total_created / duration if duration > 0 else 0.0,
            errors=errors,
            retries=metrics.retries,
            tracked_errors=metrics.tracked_errors,
            circuit_breaker_trips=circuit_breaker_trips,
            estimated_memory_mb=float((memory_stats or {}).get("estimated_memory_mb", 0.0)),
        )
        summary.recommendations = self._recommendations(summary)
        return summary

    def _recommendations(self, summary: PerformanceSummary) -> list[str]:
        recommendations = []

        for kind, rate in summary.success_rates.items():
            if rate < LOW_SUCCESS_RATE:
                recommendations.append(
                    f"Investigate high failure rate for {kind.plural} ({100 - rate:.1f}% failures)"
                )

        if summary.total_entities and summary.overall_throughput < LOW_THROUGHPUT:
            recommendations.append("Consider increasing concurrency for better throughput")

        if summary.total_entities and summary.retries / summary.total_entities > HIGH_RETRY_RATIO:
            recommendations.append("High retry count; check API health or reduce concurrency")

        if summary.circuit_breaker_trips:
            recommendations.append(
                f"Circuit breakers opened {summary.circuit_breaker_trips} time(s); the API was degraded"
            )

        return recommendations

    def render(self, summary: PerformanceSummary) -> None:
        """Print the summary to the console."""
        table = Table(title="Entities Generated", expand=False)
        table.add_column("Kind", style="bold")
        table.add_column("Created", justify="right")
        table.add_column("Errors", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Rate (/s)", justify="right")

        errors_by_kind = {e.kind: e.count for e in summary.errors}
        for kind, count in summary.entities_generated.items():
            rate = summary.success_rates[kind]
            style = "red" if rate < LOW_SUCCESS_RATE else "green"
            table.add_row(
                kind.plural,
                f"{count:,}",
                f"{errors_by_kind.get(kind, 0):,}",
                f"[{style}]{rate:.1f}%[/]",
                f"{summary.throughput[kind]:.2f}",
            )

        overview = (
            f"Duration: {format_duration(summary.duration_seconds)}\n"
            f"Total entities: {summary.total_entities:,}\n"
            f"Overall success rate: {summary.overall_success_rate:.1f}%\n"
            f"Throughput: {summary.overall_throughput:.2f} entities/s\n"
            f"Retries: {summary.retries:,}  Circuit breaker trips: {summary.circuit_breaker_trips}\n"
            f"Estimated state memory: {summary.estimated_memory_mb:.2f} MB"
        )

        self.console.print(Panel(overview, title="Generation Performance Summary"))
        self.console.print(table)

        if summary.recommendations:
            self.console.print(
                Panel(
                    "\n".join(f"• {r}" for r in summary.recommendations),
                    title="Recommendations",
                    border_style="yellow",
                )
            )

    def report(
        self,
        metrics: GenerationMetrics,
        circuit_breaker_trips: int = 0,
        memory_stats: dict[str, Any] | None = None,
    ) -> PerformanceSummary:
        """Generate and print the summary."""
        summary = self.generate_summary(metrics, circuit_breaker_trips, memory_stats)
        self.render(summary)
        return summary
