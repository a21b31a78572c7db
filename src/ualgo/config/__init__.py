"""Configuration management."""

from ualgo.config.manager import ConfigManager
from ualgo.config.schema import UAConfig

__all__ = ["ConfigManager", "UAConfig"]
