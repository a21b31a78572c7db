"""Core data models for task decomposition and candidate search."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Priority(Enum):
    """Subtask priority."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Phase(Enum):
    """Workflow phase, in canonical order."""

    IDLE = "idle"
    DECOMPOSITION = "decomposition"
    ISSUE_CREATION = "issue_creation"
    TEST_GENERATION = "test_generation"
    SOLUTION_SEARCH = "solution_search"
    SOLUTION_COMPOSITION = "solution_composition"
    COMPLETED = "completed"
    FAILED = "failed"


# Phases that do work; progress is measured against this list
WORKING_PHASES = (
    Phase.DECOMPOSITION,
    Phase.ISSUE_CREATION,
    Phase.TEST_GENERATION,
    Phase.SOLUTION_SEARCH,
    Phase.SOLUTION_COMPOSITION,
)


class ArtifactKind(Enum):
    """What a search produces for a subtask."""

    TEST = "test"
    SOLUTION = "solution"


class SearchStatus(Enum):
    """Terminal status of one candidate search."""

    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class OutcomeStatus(Enum):
    """Per-subtask result recorded by the coordinator."""

    SUCCESS = "success"  # chosen candidate passed validation
    EXHAUSTED = "exhausted"  # best-of-exhausted candidate kept
    UNRESOLVED = "unresolved"  # every attempt errored
    SKIPPED = "skipped"  # collaborator or workflow error for this subtask


@dataclass(frozen=True)
class Subtask:
    """A unit of work produced by decomposition. Immutable once normalized."""

    id: str
    title: str
    description: str
    priority: Priority = Priority.MEDIUM
    complexity: int = 5
    dependencies: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dict for serialization"""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "complexity": self.complexity,
            "dependencies": list(self.dependencies),
            "acceptance_criteria": list(self.acceptance_criteria),
        }


@dataclass(frozen=True)
class Candidate:
    """One generated artifact. The core treats ``content`` as opaque text."""

    content: str
    kind: ArtifactKind = ArtifactKind.SOLUTION
    file_name: str | None = None
    explanation: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "kind": self.kind.value,
            "file_name": self.file_name,
            "explanation": self.explanation,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of running the structural rules over a candidate."""

    failed_rules: tuple[str, ...] = ()
    messages: tuple[str, ...] = ()
    checked_rules: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.failed_rules

    @property
    def failure_reason(self) -> str | None:
        """Human-readable list of failed rules, fed back to the generator."""
        if self.passed:
            return None
        return ", ".join(self.messages or self.failed_rules)


@dataclass(frozen=True)
class SearchAttempt:
    """Record of a single generate-and-validate step."""

    attempt_number: int
    candidate: Candidate | None = None
    validation: ValidationResult | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def errored(self) -> bool:
        return self.candidate is None


@dataclass(frozen=True)
class SearchResult:
    """Result of one CandidateSearchEngine invocation."""

    subtask_id: str
    kind: ArtifactKind
    attempts: tuple[SearchAttempt, ...]
    chosen: Candidate | None
    status: SearchStatus

    @property
    def is_success(self) -> bool:
        return self.status is SearchStatus.SUCCESS

    @property
    def chosen_attempt(self) -> SearchAttempt | None:
        """The attempt whose candidate was chosen, if any."""
        for attempt in self.attempts:
            if attempt.candidate is not None and attempt.candidate is self.chosen:
                return attempt
        return None


@dataclass(frozen=True)
class SearchContext:
    """Per-search inputs shared by every attempt."""

    kind: ArtifactKind = ArtifactKind.SOLUTION
    task_description: str = ""
    test_artifact: Candidate | None = None


@dataclass(frozen=True)
class ArtifactRequest:
    """Everything a generator needs to produce one candidate."""

    kind: ArtifactKind
    subtask: Subtask
    task_description: str = ""
    test_artifact: Candidate | None = None
    attempt: int = 1


@dataclass
class SubtaskOutcome:
    """What the coordinator keeps for one subtask and artifact kind"""
    subtask_id: str
    kind: ArtifactKind
    status: OutcomeStatus
    candidate: Candidate | None = None
    attempts: int = 0
    submission_id: str | None = None
    error: str | None = None

    @property
    def usable(self) -> bool:
        return self.candidate is not None and self.status in (
            OutcomeStatus.SUCCESS,
            OutcomeStatus.EXHAUSTED,
        )

    def to_dict(self) -> dict:
        return {
            "subtask_id": self.subtask_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "attempts": self.attempts,
            "submission_id": self.submission_id,
            "error": self.error,
        }
