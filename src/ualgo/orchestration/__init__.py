"""Core orchestration logic."""
from ualgo.orchestration.errors import (
    CollaboratorError,
    CyclicDependencyError,
    GenerationError,
    GraphNotValidatedError,
    InvalidGraphError,
    NoViableSolutionsError,
    RateLimitError,
    WorkflowCancelledError,
    WorkflowError,
)
from ualgo.orchestration.models import (
    ArtifactKind,
    Candidate,
    Phase,
    Priority,
    SearchResult,
    SearchStatus,
    Subtask,
)
from ualgo.orchestration.task_graph import DroppedDependency, TaskGraph

__all__ = [
    "ArtifactKind",
    "Candidate",
    "CollaboratorError",
    "CyclicDependencyError",
    "DroppedDependency",
    "GenerationError",
    "GraphNotValidatedError",
    "InvalidGraphError",
    "NoViableSolutionsError",
    "Phase",
    "Priority",
    "RateLimitError",
    "SearchResult",
    "SearchStatus",
    "Subtask",
    "TaskGraph",
    "WorkflowCancelledError",
    "WorkflowError",
]
