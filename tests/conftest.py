"""Pytest configuration and fixtures."""

import pytest

from ualgo.config.manager import ConfigManager
from ualgo.output import formatter

ISOLATED_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GITHUB_TOKEN",
    "GITHUB_OWNER",
    "GITHUB_REPO",
    "UA_DRY_RUN",
    "UA_MAX_SUBTASKS",
    "UA_MAX_SOLUTION_ATTEMPTS",
)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config, sessions and analytics out of the real home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for name in ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset cached config and the global formatter before each test."""
    ConfigManager.reset()
    formatter._formatter = None
    yield
    ConfigManager.reset()
    formatter._formatter = None
