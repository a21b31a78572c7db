"""Error taxonomy for the workflow core."""


class WorkflowError(Exception):
    """Base exception for workflow errors."""

    pass


class InvalidGraphError(WorkflowError):
    """Decomposition input could not be normalized into a usable graph."""

    pass


class GraphNotValidatedError(InvalidGraphError):
    """Ordering or batching was requested on a graph that did not pass validation."""

    pass


class CyclicDependencyError(WorkflowError):
    """The dependency edges of a graph contain a cycle."""

    def __init__(self, involved_id: str):
        self.involved_id = involved_id
        super().__init__(f"Circular dependency detected involving subtask: {involved_id}")


class GenerationError(WorkflowError):
    """Generator failed to produce a decomposition, artifact, or merge."""

    pass


class CollaboratorError(WorkflowError):
    """Tracker (or other service) call failed."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class RateLimitError(CollaboratorError):
    """Service asked us to stop issuing calls until ``reset_at`` (epoch seconds)."""

    def __init__(self, message: str, reset_at: float):
        super().__init__(message, retryable=True, status_code=429)
        self.reset_at = reset_at


class NoViableSolutionsError(WorkflowError):
    """Composition was reached without a single usable solution."""

    pass


class WorkflowCancelledError(WorkflowError):
    """Run was abandoned at a phase boundary."""

    pass
