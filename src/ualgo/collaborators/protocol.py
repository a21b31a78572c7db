"""Contracts for the services the workflow core depends on"""
from abc import ABC, abstractmethod
from typing import Any

from ualgo.orchestration.models import ArtifactRequest, Candidate


class Generator(ABC):
    """Produces decompositions, candidate artifacts and merged compositions.

    Implementations raise ``GenerationError`` on any failure. They do not
    retry on their own; retries are driven by the search engine's attempt
    budget.
    """

    @abstractmethod
    async def generate_decomposition(self, task_text: str) -> dict[str, Any] | list:
        """Return raw subtasks, either ``{"subtasks": [...]}`` or a bare list"""
        pass

    @abstractmethod
    async def generate_artifact(
        self, context: ArtifactRequest, prior_failure_reason: str | None = None
    ) -> Candidate:
        """Generate one candidate for a subtask"""
        pass

    @abstractmethod
    async def compose_freeform(self, merge_context: dict[str, Any]) -> str:
        """Merge solved components into a single artifact"""
        pass


class Tracker(ABC):
    """Records work items and artifact submissions in an external system."""

    dry_run: bool = False

    @abstractmethod
    async def create_record(
        self, title: str, body: str, parent_id: str | None = None
    ) -> str:
        """Create a record and return its id"""
        pass

    @abstractmethod
    async def create_artifact_submission(
        self,
        title: str,
        branch_hint: str,
        content: str,
        record_id: str,
        file_path: str | None = None,
    ) -> str:
        """Submit an artifact for review and return the submission id"""
        pass

    @abstractmethod
    async def get_approval_status(self, submission_id: str) -> bool:
        """Whether the submission has been approved"""
        pass

    @abstractmethod
    async def add_comment(self, record_id: str, body: str) -> None:
        """Attach a comment to an existing record"""
        pass
