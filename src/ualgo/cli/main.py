"""Main CLI entry point for ualgo."""

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from ualgo.collaborators.generator import LLMGenerator
from ualgo.collaborators.protocol import Generator, Tracker
from ualgo.collaborators.tracker import DryRunTracker, GitHubTracker
from ualgo.config.manager import ConfigManager
from ualgo.config.schema import UAConfig, get_analytics_dir, get_sessions_dir
from ualgo.llm.client import LLMClientFactory
from ualgo.orchestration.analytics import AnalyticsLogger
from ualgo.orchestration.checkpoint import CheckpointManager
from ualgo.orchestration.errors import WorkflowError
from ualgo.orchestration.task_graph import TaskGraph
from ualgo.orchestration.workflow import WorkflowCoordinator
from ualgo.output.formatter import get_formatter


def _configure_logging(verbose: bool, color: bool) -> None:
    """Log through rich on stderr."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True, no_color=not color),
                show_path=False,
                rich_tracebacks=verbose,
            )
        ],
        force=True,
    )


def _build_generator(config: UAConfig) -> LLMGenerator:
    """LLM-backed generator; the client is None when no API key is set."""
    client = LLMClientFactory.create(config)
    model = LLMClientFactory.model_for(config, client) if client else config.generation.model
    return LLMGenerator(
        client,
        model=model,
        max_tokens=config.generation.max_tokens,
        temperature=config.generation.temperature,
    )


def _build_tracker(config: UAConfig) -> Tracker:
    tracker_config = config.tracker
    if tracker_config.owner and tracker_config.repo:
        return GitHubTracker.from_config(tracker_config)
    if tracker_config.dry_run:
        return DryRunTracker()
    raise click.UsageError(
        "GitHub owner and repo are required (set GITHUB_OWNER/GITHUB_REPO or use --dry-run)"
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("--no-color", is_flag=True, help="Disable colors")
@click.version_option(package_name="ualgo")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """ualgo - decompose a task, search for tested solutions, compose the result.

    \b
    Examples:
        ualgo decompose "build a URL shortener"
        ualgo solve --dry-run "implement an LRU cache"
        ualgo failures
        ualgo config show
    """
    ctx.ensure_object(dict)
    config = ConfigManager.get_config()
    verbose = verbose or config.global_.verbose
    ctx.obj["verbose"] = verbose

    color = config.global_.color and not no_color
    get_formatter(color=color, verbose=verbose)
    _configure_logging(verbose, color)


@cli.command()
@click.argument("task", nargs=-1, required=True)
@click.option("--dry-run", is_flag=True, help="Do not create anything on GitHub")
@click.option("--max-subtasks", type=click.IntRange(min=1), help="Cap the decomposition size")
@click.option("--max-attempts", type=click.IntRange(min=1), help="Attempts per test/solution")
@click.option("--concurrency", type=click.IntRange(min=1), help="Subtasks searched at once")
@click.option("--json", "output_json", is_flag=True, help="JSON output")
def solve(
    task: tuple[str, ...],
    dry_run: bool,
    max_subtasks: int | None,
    max_attempts: int | None,
    concurrency: int | None,
    output_json: bool,
) -> None:
    """Run the full workflow for TASK."""
    config = ConfigManager.get_config().model_copy(deep=True)
    if dry_run:
        config.tracker.dry_run = True
    if max_subtasks:
        config.decomposition.max_subtasks = max_subtasks
    if max_attempts:
        config.search.max_attempts = max_attempts
    if concurrency:
        config.workflow.max_concurrency = concurrency

    formatter = get_formatter()
    generator = _build_generator(config)
    if isinstance(generator, LLMGenerator) and generator.llm_client is None:
        formatter.print_error(
            "No LLM API key found (set ANTHROPIC_API_KEY or OPENAI_API_KEY)"
        )
        raise SystemExit(1)

    tracker = _build_tracker(config)
    asyncio.run(_run_workflow(" ".join(task), config, generator, tracker, output_json))


async def _run_workflow(
    task_text: str,
    config: UAConfig,
    generator: Generator,
    tracker: Tracker,
    output_json: bool,
) -> None:
    formatter = get_formatter()
    coordinator = WorkflowCoordinator.from_config(
        config,
        generator,
        tracker,
        sessions_dir=get_sessions_dir() if config.workflow.checkpoints else None,
        analytics=AnalyticsLogger(get_analytics_dir()) if config.workflow.analytics else None,
    )

    if not output_json:
        formatter.print_info(f"Session {coordinator.state.session_id}: {task_text}")

    try:
        result = await coordinator.run(task_text)
    except WorkflowError as e:
        if output_json:
            formatter.console.print_json(json.dumps(coordinator.state.to_dict()))
        formatter.print_error(f"{type(e).__name__}: {e}")
        raise SystemExit(1)
    finally:
        if isinstance(tracker, GitHubTracker):
            await tracker.close()

    if output_json:
        formatter.console.print_json(json.dumps(result.state.to_dict()))
        return

    state = result.state
    formatter.print_outcomes(state.subtasks, state.test_results, state.solution_results)
    formatter.print_summary(result.summary, result.final_submission_id)
    formatter.print_composed(result.composed)


@cli.command()
@click.argument("task", nargs=-1, required=True)
@click.option("--max-subtasks", type=click.IntRange(min=1), help="Cap the decomposition size")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def decompose(task: tuple[str, ...], max_subtasks: int | None, output_format: str) -> None:
    """Decompose TASK and show execution order and batches."""
    config = ConfigManager.get_config()
    formatter = get_formatter()
    generator = _build_generator(config)

    async def build() -> TaskGraph:
        raw = await generator.generate_decomposition(" ".join(task))
        graph = TaskGraph.decompose(
            raw, max_subtasks=max_subtasks or config.decomposition.max_subtasks
        )
        graph.validate()
        return graph

    try:
        graph = asyncio.run(build())
    except WorkflowError as e:
        formatter.print_error(f"{type(e).__name__}: {e}")
        raise SystemExit(1)

    if output_format == "json":
        data = graph.to_dict()
        data["analysis"] = graph.analyze().to_dict()
        formatter.console.print_json(json.dumps(data))
        return

    formatter.print_graph(graph)
    formatter.print_analysis(graph.analyze())


@cli.command()
@click.option("--limit", default=10, show_default=True, help="Recent failures to list")
def failures(limit: int) -> None:
    """Show statistics for skipped and unresolved subtasks."""
    analytics = AnalyticsLogger(get_analytics_dir())
    get_formatter().print_failure_stats(
        analytics.get_failure_stats(), analytics.get_recent_failures(limit)
    )


@cli.command()
@click.argument("session_id")
def checkpoints(session_id: str) -> None:
    """List checkpoints written for SESSION_ID."""
    formatter = get_formatter()
    session_dir = get_sessions_dir() / session_id
    if not session_dir.is_dir():
        formatter.print_error(f"No session found: {session_id}")
        raise SystemExit(1)

    saved = CheckpointManager(session_dir).list_checkpoints()
    if not saved:
        formatter.print_warning(f"No checkpoints for session {session_id}")
        return
    formatter.print_checkpoints(saved)


@cli.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current configuration."""
    config_dict = ConfigManager.get_config().model_dump(by_alias=True)
    get_formatter().console.print_json(json.dumps(config_dict, indent=2))


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from ualgo.config.schema import get_config_file

    config_file = get_config_file()

    if not config_file.exists():
        ConfigManager.save_user_config(ConfigManager.get_config())

    editor = os.environ.get("EDITOR", "vim")
    subprocess.run([editor, str(config_file)])


if __name__ == "__main__":
    cli()
