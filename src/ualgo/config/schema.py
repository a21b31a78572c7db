"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class GlobalConfig(BaseModel):
    """Global ualgo configuration."""

    color: bool = True
    verbose: bool = False


class GenerationConfig(BaseModel):
    """Language model used by the generator."""

    model: str = "claude-sonnet-4-5"
    max_tokens: int = 4000
    temperature: float = 0.2
    provider: str | None = None  # "anthropic" | "openai", inferred from model when unset


class DecompositionConfig(BaseModel):
    """Task decomposition limits."""

    max_subtasks: int = Field(default=10, ge=1)


class SearchConfig(BaseModel):
    """Candidate search budget and validation markers.

    Marker lists are regular expressions. An empty list keeps the built-in
    patterns for that group.
    """

    max_attempts: int = Field(default=3, ge=1)
    min_length: int = Field(default=50, ge=0)
    executable_logic_markers: list[str] = Field(default_factory=list)
    exported_symbol_markers: list[str] = Field(default_factory=list)
    placeholder_markers: list[str] = Field(default_factory=list)
    low_effort_markers: list[str] = Field(default_factory=list)


class TrackerConfig(BaseModel):
    """GitHub tracker settings."""

    owner: str | None = None
    repo: str | None = None
    base_branch: str = "main"
    api_url: str = "https://api.github.com"
    dry_run: bool = False
    labels: list[str] = Field(default_factory=lambda: ["universal-algorithm"])
    timeout_seconds: float = 30.0
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: float = 1.0
    max_rate_limit_wait_seconds: float = 900.0
    max_concurrent_calls: int = Field(default=4, ge=1)


class WorkflowConfig(BaseModel):
    """Coordinator behaviour."""

    max_concurrency: int = Field(default=1, ge=1)
    freeform_composition: bool = False
    checkpoints: bool = True
    analytics: bool = True


class UAConfig(BaseModel):
    """Root configuration model for ualgo."""

    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    decomposition: DecompositionConfig = Field(default_factory=DecompositionConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @classmethod
    def default(cls) -> "UAConfig":
        """Create default configuration."""
        return cls()


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_dir = Path.home() / ".config" / "ualgo"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.toml"


def get_sessions_dir() -> Path:
    """Get the sessions storage directory."""
    sessions_dir = get_config_dir() / "sessions"
    sessions_dir.mkdir(parents=True, exist_ok=True)
    return sessions_dir


def get_analytics_dir() -> Path:
    """Get the failure analytics directory."""
    analytics_dir = get_config_dir() / "analytics"
    analytics_dir.mkdir(parents=True, exist_ok=True)
    return analytics_dir
