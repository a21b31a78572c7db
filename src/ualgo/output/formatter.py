"""Output formatting using Rich for terminal output."""

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme

from ualgo.orchestration.checkpoint import Checkpoint
from ualgo.orchestration.composer import ComposedResult
from ualgo.orchestration.models import OutcomeStatus, Subtask, SubtaskOutcome
from ualgo.orchestration.task_graph import GraphAnalysis, TaskGraph
from ualgo.orchestration.workflow import WorkflowSummary

UA_THEME = Theme(
    {
        "priority.high": "red",
        "priority.medium": "yellow",
        "priority.low": "dim",
        "success": "green",
        "error": "red bold",
        "warning": "yellow",
        "info": "blue",
        "metadata": "dim",
    }
)

STATUS_STYLES = {
    OutcomeStatus.SUCCESS: "success",
    OutcomeStatus.EXHAUSTED: "warning",
    OutcomeStatus.UNRESOLVED: "error",
    OutcomeStatus.SKIPPED: "metadata",
}


class OutputFormatter:
    """Handles all output formatting for ualgo."""

    def __init__(self, color: bool = True, verbose: bool = False) -> None:
        self.console = Console(theme=UA_THEME, no_color=not color)
        self.verbose = verbose

    def print_error(self, message: str) -> None:
        self.console.print(f"[error]Error: {message}[/error]")

    def print_success(self, message: str) -> None:
        self.console.print(f"[success]{message}[/success]")

    def print_info(self, message: str) -> None:
        self.console.print(f"[info]{message}[/info]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[warning]{message}[/warning]")

    def print_subtasks(self, subtasks, title: str = "Subtasks") -> None:
        table = Table(title=title)
        table.add_column("#", justify="right", style="metadata")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Priority", justify="center")
        table.add_column("Complexity", justify="right")
        table.add_column("Depends on")

        for index, subtask in enumerate(subtasks, start=1):
            style = f"priority.{subtask.priority.value}"
            table.add_row(
                str(index),
                subtask.id,
                subtask.title,
                f"[{style}]{subtask.priority.value}[/{style}]",
                str(subtask.complexity),
                ", ".join(subtask.dependencies) or "-",
            )

        self.console.print(table)

    def print_graph(self, graph: TaskGraph) -> None:
        """Ordered subtasks, their batches and any dropped dependencies."""
        self.print_subtasks(graph.topological_order(), title="Execution Order")

        for index, batch in enumerate(graph.parallel_batches(), start=1):
            members = ", ".join(s.id for s in graph.ordered_batch(batch))
            self.console.print(f"[info]Batch {index}:[/info] {members}")

        for dropped in graph.dropped_dependencies:
            self.print_warning(
                f"Dropped dependency {dropped.subtask_id} -> {dropped.missing_id} (unknown id)"
            )

    def print_analysis(self, analysis: GraphAnalysis) -> None:
        grade_style = "success" if analysis.quality_grade in ("A", "B") else "warning"
        lines = [
            f"Subtasks: {analysis.total_subtasks}",
            f"Average complexity: {analysis.average_complexity}",
            f"Batches: {analysis.batch_count}",
            f"High priority work: {'yes' if analysis.has_high_priority else 'no'}",
            f"All have acceptance criteria: {analysis.all_have_acceptance_criteria}",
            f"[{grade_style}]Quality: {analysis.quality_score}/100 "
            f"({analysis.quality_grade})[/{grade_style}]",
        ]
        self.console.print(
            Panel("\n".join(lines), title="Decomposition Analysis", border_style="info")
        )

    def print_outcomes(
        self,
        subtasks: list[Subtask],
        test_results: dict[str, SubtaskOutcome],
        solution_results: dict[str, SubtaskOutcome],
    ) -> None:
        table = Table(title="Subtask Results")
        table.add_column("ID", style="cyan")
        table.add_column("Test", justify="center")
        table.add_column("Solution", justify="center")
        table.add_column("Attempts", justify="right")

        for subtask in subtasks:
            test = test_results.get(subtask.id)
            solution = solution_results.get(subtask.id)
            attempts = (test.attempts if test else 0) + (solution.attempts if solution else 0)
            table.add_row(
                subtask.id,
                self._status_cell(test),
                self._status_cell(solution),
                str(attempts),
            )

        self.console.print(table)

    def print_summary(
        self, summary: WorkflowSummary, final_submission_id: str | None = None
    ) -> None:
        style = "success" if summary.success_rate >= 0.5 else "warning"
        lines = [
            f"Subtasks: {summary.total_subtasks}",
            f"Tests generated: {summary.tests_generated}",
            f"[{style}]Solved: {summary.solved_subtasks} ({summary.success_rate:.0%})[/{style}]",
            f"Skipped: {summary.skipped_subtasks}",
            f"Average complexity: {summary.average_complexity}",
            f"Duration: {summary.duration_seconds:.1f}s",
        ]
        if final_submission_id:
            lines.append(f"Final submission: #{final_submission_id}")
        self.console.print(Panel("\n".join(lines), title="Workflow Complete", border_style=style))

    def print_composed(self, composed: ComposedResult, language: str = "python") -> None:
        if self.verbose:
            self._print_metadata(composed.statistics)
        self.console.print(Syntax(composed.content, language, line_numbers=False))

    def print_failure_stats(self, stats: dict[str, Any], recent: list[dict]) -> None:
        self.console.print(f"[info]Total failures: {stats['total_failures']}[/info]")

        for heading, key in (
            ("By phase", "by_phase"),
            ("By error type", "by_error_type"),
            ("By artifact kind", "by_artifact_kind"),
        ):
            counts = stats.get(key) or {}
            if not counts:
                continue
            table = Table(title=heading)
            table.add_column("Name", style="cyan")
            table.add_column("Count", justify="right")
            for name, count in sorted(counts.items(), key=lambda item: -item[1]):
                table.add_row(name, str(count))
            self.console.print(table)

        if recent:
            table = Table(title="Recent Failures")
            table.add_column("Session", style="metadata")
            table.add_column("Subtask", style="cyan")
            table.add_column("Phase")
            table.add_column("Error")
            for record in recent:
                table.add_row(
                    record["session_id"],
                    record["subtask_id"],
                    record["phase"],
                    record["error_message"][:80],
                )
            self.console.print(table)

    def print_checkpoints(self, checkpoints: list[Checkpoint]) -> None:
        table = Table(title="Checkpoints")
        table.add_column("#", justify="right", style="metadata")
        table.add_column("Phase", style="cyan")
        table.add_column("Timestamp")
        table.add_column("Subtasks", justify="right")

        for checkpoint in checkpoints:
            table.add_row(
                str(checkpoint.sequence),
                checkpoint.phase,
                checkpoint.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                str(len(checkpoint.state_snapshot.get("subtasks", []))),
            )

        self.console.print(table)

    def _status_cell(self, outcome: SubtaskOutcome | None) -> str:
        if outcome is None:
            return "[metadata]-[/metadata]"
        style = STATUS_STYLES[outcome.status]
        return f"[{style}]{outcome.status.value}[/{style}]"

    def _print_metadata(self, metadata: dict[str, Any]) -> None:
        """Print metadata in a dimmed style."""
        parts = [f"{k}={v}" for k, v in metadata.items()]
        self.console.print(f"[metadata]({', '.join(parts)})[/metadata]")


# Global formatter instance
_formatter: OutputFormatter | None = None


def get_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Get or create the global formatter instance."""
    global _formatter
    if _formatter is None:
        _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter
