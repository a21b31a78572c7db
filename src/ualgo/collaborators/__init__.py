"""External services the workflow talks to."""

from ualgo.collaborators.protocol import Generator, Tracker
from ualgo.collaborators.resilience import ResilientCaller

__all__ = ["Generator", "Tracker", "ResilientCaller"]
