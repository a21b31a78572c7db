"""Tests for ualgo CLI commands"""
import json
from datetime import datetime
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from ualgo.cli.main import cli
from ualgo.collaborators.protocol import Generator
from ualgo.config.schema import get_analytics_dir, get_sessions_dir
from ualgo.orchestration.analytics import AnalyticsLogger, FailureRecord
from ualgo.orchestration.checkpoint import Checkpoint, CheckpointManager
from ualgo.orchestration.models import ArtifactKind, Candidate


class StaticGenerator(Generator):
    """Fixed decomposition with one valid artifact per request."""

    def __init__(self, decomposition=None):
        self.decomposition = decomposition or [
            {"id": "a", "title": "Parse"},
            {"id": "b", "title": "Format", "dependencies": ["a"]},
        ]

    async def generate_decomposition(self, task_text):
        return self.decomposition

    async def generate_artifact(self, context, prior_failure_reason=None):
        if context.kind is ArtifactKind.TEST:
            return Candidate("def test_it():\n    assert run() == 1\n", context.kind)
        return Candidate("def run():\n    return 1\n", context.kind)

    async def compose_freeform(self, merge_context):
        return ""


@pytest.fixture
def runner():
    """Create Click test runner"""
    return CliRunner()


def test_decompose_table_uses_fallback_without_api_key(runner):
    result = runner.invoke(cli, ["--no-color", "decompose", "build", "a", "parser"])

    assert result.exit_code == 0, result.output
    assert "Batch 1: subtask-1" in result.stdout
    assert "Batch 4: subtask-4" in result.stdout
    assert "Decomposition Analysis" in result.stdout


def test_decompose_json(runner):
    result = runner.invoke(cli, ["decompose", "--format", "json", "build a parser"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["order"] == ["subtask-1", "subtask-2", "subtask-3", "subtask-4"]
    assert data["batches"] == [["subtask-1"], ["subtask-2"], ["subtask-3"], ["subtask-4"]]
    assert data["analysis"]["total_subtasks"] == 4


def test_decompose_max_subtasks(runner):
    result = runner.invoke(cli, ["decompose", "--format", "json", "--max-subtasks", "2", "x"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["order"] == ["subtask-1", "subtask-2"]


def test_decompose_cycle_fails(runner):
    cyclic = StaticGenerator(
        [{"id": "a", "dependencies": ["b"]}, {"id": "b", "dependencies": ["a"]}]
    )
    with patch("ualgo.cli.main._build_generator", return_value=cyclic):
        result = runner.invoke(cli, ["decompose", "loop"])

    assert result.exit_code == 1
    assert "CyclicDependencyError" in result.stdout


def test_solve_dry_run(runner):
    with patch("ualgo.cli.main._build_generator", return_value=StaticGenerator()):
        result = runner.invoke(cli, ["solve", "--dry-run", "build a parser"])

    assert result.exit_code == 0, result.output
    assert "Workflow Complete" in result.stdout
    assert "Composed solution for: build a parser" in result.stdout

    sessions = list(get_sessions_dir().iterdir())
    assert len(sessions) == 1
    assert (sessions[0] / "06_completed.json").exists()


def test_solve_json(runner):
    with patch("ualgo.cli.main._build_generator", return_value=StaticGenerator()):
        result = runner.invoke(
            cli, ["solve", "--dry-run", "--json", "--max-attempts", "1", "--concurrency", "2", "x"]
        )

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["phase"] == "completed"
    assert data["summary"]["solved_subtasks"] == 2
    assert data["solution_results"]["b"]["attempts"] == 1


def test_solve_failure_exits_nonzero(runner):
    cyclic = StaticGenerator([{"id": "a", "dependencies": ["a"]}])
    with patch("ualgo.cli.main._build_generator", return_value=cyclic):
        result = runner.invoke(cli, ["solve", "--dry-run", "loop"])

    assert result.exit_code == 1
    assert "CyclicDependencyError" in result.stdout


def test_solve_requires_api_key(runner):
    result = runner.invoke(cli, ["solve", "--dry-run", "x"])

    assert result.exit_code == 1
    assert "No LLM API key" in result.stdout


def test_solve_requires_repo_unless_dry_run(runner):
    with patch("ualgo.cli.main._build_generator", return_value=StaticGenerator()):
        result = runner.invoke(cli, ["solve", "x"])

    assert result.exit_code == 2
    assert "GITHUB_OWNER" in result.output


def test_failures(runner):
    AnalyticsLogger(get_analytics_dir()).log_failure(
        FailureRecord(
            session_id="abc",
            phase="solution_search",
            subtask_id="subtask-2",
            error_type="unresolved",
            error_message="model unavailable",
            artifact_kind="solution",
        )
    )

    result = runner.invoke(cli, ["failures"])

    assert result.exit_code == 0, result.output
    assert "Total failures: 1" in result.stdout
    assert "subtask-2" in result.stdout


def test_checkpoints(runner):
    CheckpointManager(get_sessions_dir() / "abc").save_checkpoint(
        Checkpoint(
            session_id="abc",
            sequence=1,
            phase="decomposition",
            timestamp=datetime(2026, 1, 1, 12, 0, 0),
            state_snapshot={"subtasks": [{}, {}]},
        )
    )

    result = runner.invoke(cli, ["checkpoints", "abc"])

    assert result.exit_code == 0, result.output
    assert "decomposition" in result.stdout
    assert "2026-01-01 12:00:00" in result.stdout


def test_checkpoints_unknown_session(runner):
    result = runner.invoke(cli, ["checkpoints", "nope"])

    assert result.exit_code == 1
    assert "No session found" in result.stdout


def test_config_show(runner):
    result = runner.invoke(cli, ["config", "show"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["global"]["color"] is True
    assert data["search"]["max_attempts"] == 3
