"""Configuration manager for loading and merging configs."""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import toml

from ualgo.config.schema import UAConfig, get_config_file

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigManager:
    """Manages configuration loading, merging, and access."""

    _instance: "ConfigManager | None" = None
    _config: UAConfig | None = None

    # env var -> (dotted config path, type)
    ENV_OVERRIDES: dict[str, tuple[str, type]] = {
        "UA_DRY_RUN": ("tracker.dry_run", bool),
        "UA_MAX_SUBTASKS": ("decomposition.max_subtasks", int),
        "UA_MAX_SOLUTION_ATTEMPTS": ("search.max_attempts", int),
        "GITHUB_OWNER": ("tracker.owner", str),
        "GITHUB_REPO": ("tracker.repo", str),
    }

    def __new__(cls) -> "ConfigManager":
        """Singleton pattern for config manager."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_config(cls) -> UAConfig:
        """Get the current configuration, loading if necessary."""
        if cls._config is None:
            cls._config = cls.load_config()
        return cls._config

    @classmethod
    def load_config(cls, environ: Mapping[str, str] | None = None) -> UAConfig:
        """Load configuration from all sources.

        Priority (highest to lowest):
        1. Environment variables (see ENV_OVERRIDES)
        2. Project-level config (.ualgo.toml in cwd or parents)
        3. User config (~/.config/ualgo/config.toml)
        4. Default config
        """
        config_dict: dict[str, Any] = {}

        user_config_file = get_config_file()
        if user_config_file.exists():
            config_dict = cls._deep_merge(config_dict, toml.load(user_config_file))

        project_config_file = cls._find_project_config()
        if project_config_file and project_config_file.exists():
            config_dict = cls._deep_merge(config_dict, toml.load(project_config_file))

        env_config = cls._env_overrides(os.environ if environ is None else environ)
        config_dict = cls._deep_merge(config_dict, env_config)

        if config_dict:
            return UAConfig.model_validate(config_dict)
        return UAConfig.default()

    @classmethod
    def reload(cls) -> UAConfig:
        """Force reload configuration from disk."""
        cls._config = cls.load_config()
        return cls._config

    @classmethod
    def reset(cls) -> None:
        """Forget the cached configuration."""
        cls._config = None

    @classmethod
    def _find_project_config(cls) -> Path | None:
        """Find project-level config file by searching up from cwd."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_file = parent / ".ualgo.toml"
            if config_file.exists():
                return config_file
            if parent == Path.home():
                break
        return None

    @classmethod
    def _env_overrides(cls, environ: Mapping[str, str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for env_var, (key_path, kind) in cls.ENV_OVERRIDES.items():
            raw = environ.get(env_var)
            if raw is None or raw == "":
                continue

            if kind is bool:
                value: Any = raw.strip().lower() in TRUE_VALUES
            elif kind is int:
                try:
                    value = int(raw)
                except ValueError:
                    logger.warning(f"Ignoring {env_var}={raw!r}: not an integer")
                    continue
            else:
                value = raw

            current = overrides
            keys = key_path.split(".")
            for key in keys[:-1]:
                current = current.setdefault(key, {})
            current[keys[-1]] = value
        return overrides

    @classmethod
    def _deep_merge(
        cls, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def save_user_config(cls, config: UAConfig) -> None:
        """Save configuration to user config file."""
        config_file = get_config_file()
        config_dict = config.model_dump(by_alias=True, exclude_none=True)
        with open(config_file, "w") as f:
            toml.dump(config_dict, f)

    @classmethod
    def set_value(cls, key_path: str, value: Any) -> None:
        """Set a configuration value by dot-separated path.

        Example: set_value("tracker.owner", "octocat")
        """
        config_dict = cls.get_config().model_dump(by_alias=True)

        keys = key_path.split(".")
        current = config_dict
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

        cls._config = UAConfig.model_validate(config_dict)
        cls.save_user_config(cls._config)

    @classmethod
    def get_value(cls, key_path: str, default: Any = None) -> Any:
        """Get a configuration value by dot-separated path."""
        current: Any = cls.get_config().model_dump(by_alias=True)
        for key in key_path.split("."):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current
