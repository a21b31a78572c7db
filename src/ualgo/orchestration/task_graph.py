"""Dependency graph of subtasks: normalization, validation, ordering, batching."""
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from ualgo.orchestration.errors import (
    CyclicDependencyError,
    GraphNotValidatedError,
    InvalidGraphError,
)
from ualgo.orchestration.models import Priority, Subtask

logger = logging.getLogger(__name__)

MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 10
DEFAULT_COMPLEXITY = 5

# DFS marks
_UNVISITED = 0
_IN_PROGRESS = 1
_DONE = 2


@dataclass(frozen=True)
class DroppedDependency:
    """A dependency edge discarded during normalization."""

    subtask_id: str
    missing_id: str


@dataclass(frozen=True)
class GraphAnalysis:
    """Quality heuristics for a decomposition"""
    total_subtasks: int
    average_complexity: float
    has_high_priority: bool
    has_dependencies: bool
    all_have_acceptance_criteria: bool
    balanced_complexity: bool
    batch_count: int
    quality_score: int
    quality_grade: str

    def to_dict(self) -> dict:
        return {
            "total_subtasks": self.total_subtasks,
            "average_complexity": self.average_complexity,
            "has_high_priority": self.has_high_priority,
            "has_dependencies": self.has_dependencies,
            "all_have_acceptance_criteria": self.all_have_acceptance_criteria,
            "balanced_complexity": self.balanced_complexity,
            "batch_count": self.batch_count,
            "quality_score": self.quality_score,
            "quality_grade": self.quality_grade,
        }


class TaskGraph:
    """Validated, ordered collection of subtasks for one run.

    Build with :meth:`decompose`, then call :meth:`validate` once before
    asking for :meth:`topological_order` or :meth:`parallel_batches`.
    """

    def __init__(
        self,
        subtasks: Iterable[Subtask],
        dropped_dependencies: Iterable[DroppedDependency] = (),
        duplicate_ids: Iterable[str] = (),
    ):
        self._subtasks: dict[str, Subtask] = {}
        for subtask in subtasks:
            if subtask.id in self._subtasks:
                raise InvalidGraphError(f"Duplicate subtask id: {subtask.id}")
            self._subtasks[subtask.id] = subtask

        if not self._subtasks:
            raise InvalidGraphError("Decomposition produced no subtasks")

        self.dropped_dependencies: tuple[DroppedDependency, ...] = tuple(dropped_dependencies)
        self.duplicate_ids: tuple[str, ...] = tuple(duplicate_ids)
        self._validated = False
        self._cycle_error: CyclicDependencyError | None = None
        self._order: tuple[Subtask, ...] | None = None
        self._batches: tuple[frozenset[str], ...] | None = None

    # --- Construction ---

    @classmethod
    def decompose(
        cls, raw_subtasks: Any, max_subtasks: int | None = None
    ) -> "TaskGraph":
        """Normalize raw decomposition output into a new graph.

        Accepts a list of mappings (or plain title strings). Missing ids
        become ``subtask-N`` by original position, complexity is clamped to
        1-10, unknown priorities become medium, and dependencies on ids that
        are not in the list are dropped and reported in
        ``dropped_dependencies``. Generated ids skip names already taken by an
        explicit id; a repeated explicit id keeps its first entry and the
        repeat is reported in ``duplicate_ids``.

        Raises:
            InvalidGraphError: If no subtask survives normalization.
        """
        if isinstance(raw_subtasks, Mapping):
            raw_subtasks = raw_subtasks.get("subtasks")

        if not isinstance(raw_subtasks, (list, tuple)):
            raise InvalidGraphError(
                f"Expected a list of subtasks, got {type(raw_subtasks).__name__}"
            )

        items = list(raw_subtasks)
        if max_subtasks is not None and max_subtasks > 0:
            items = items[:max_subtasks]

        normalized = [cls._normalize_item(raw, index) for index, raw in enumerate(items)]
        drafts, duplicates = cls._assign_ids([d for d in normalized if d is not None])

        known_ids = {draft["id"] for draft in drafts}
        dropped: list[DroppedDependency] = []
        subtasks: list[Subtask] = []

        for draft in drafts:
            kept: list[str] = []
            for dep in draft["dependencies"]:
                if dep in known_ids:
                    if dep not in kept:
                        kept.append(dep)
                else:
                    dropped.append(DroppedDependency(draft["id"], dep))
            subtasks.append(
                Subtask(
                    id=draft["id"],
                    title=draft["title"],
                    description=draft["description"],
                    priority=draft["priority"],
                    complexity=draft["complexity"],
                    dependencies=tuple(kept),
                    acceptance_criteria=draft["acceptance_criteria"],
                )
            )

        for edge in dropped:
            logger.warning(
                f"Dropped dependency {edge.subtask_id} -> {edge.missing_id}: unknown subtask id"
            )

        return cls(subtasks, dropped_dependencies=dropped, duplicate_ids=duplicates)

    @staticmethod
    def _assign_ids(
        drafts: list[dict[str, Any]],
    ) -> tuple[list[dict[str, Any]], list[str]]:
        """Give id-less drafts a free ``subtask-N`` id and drop repeated explicit ids.

        The first entry with an explicit id wins; later entries with the same
        id are discarded and returned as duplicates.
        """
        taken = {draft["id"] for draft in drafts if draft["id"]}
        seen: set[str] = set()
        kept: list[dict[str, Any]] = []
        duplicates: list[str] = []

        for draft in drafts:
            if draft["id"]:
                if draft["id"] in seen:
                    logger.warning(f"Ignoring subtask with duplicate id: {draft['id']}")
                    duplicates.append(draft["id"])
                    continue
            else:
                base = f"subtask-{draft['position']}"
                candidate = base
                suffix = 2
                while candidate in taken:
                    candidate = f"{base}-{suffix}"
                    suffix += 1
                taken.add(candidate)
                draft["id"] = candidate
            seen.add(draft["id"])
            kept.append(draft)

        return kept, duplicates

    @classmethod
    def _normalize_item(cls, raw: Any, index: int) -> dict[str, Any] | None:
        """Normalize one raw subtask entry; returns None for unusable entries."""
        if isinstance(raw, str):
            raw = {"title": raw}
        if not isinstance(raw, Mapping):
            logger.warning(f"Ignoring subtask entry {index + 1}: not an object")
            return None

        raw_id = raw.get("id")
        subtask_id = str(raw_id).strip() if raw_id not in (None, "") else ""

        title = str(raw.get("title") or "").strip() or f"Subtask {index + 1}"
        description = str(raw.get("description") or "").strip() or title

        return {
            "id": subtask_id,
            "position": index + 1,
            "title": title,
            "description": description,
            "priority": cls._normalize_priority(raw.get("priority")),
            "complexity": cls._normalize_complexity(
                raw.get(
                    "complexity",
                    raw.get("estimated_complexity", raw.get("estimatedComplexity")),
                )
            ),
            "dependencies": [str(dep) for dep in cls._as_list(raw.get("dependencies"))],
            "acceptance_criteria": tuple(
                str(criterion)
                for criterion in cls._as_list(
                    raw.get("acceptance_criteria", raw.get("acceptanceCriteria"))
                )
            ),
        }

    @staticmethod
    def _normalize_priority(value: Any) -> Priority:
        if isinstance(value, Priority):
            return value
        try:
            return Priority(str(value).strip().lower())
        except ValueError:
            return Priority.MEDIUM

    @staticmethod
    def _normalize_complexity(value: Any) -> int:
        if isinstance(value, bool):
            return DEFAULT_COMPLEXITY
        try:
            number = int(round(float(value)))
        except (TypeError, ValueError, OverflowError):
            return DEFAULT_COMPLEXITY
        return max(MIN_COMPLEXITY, min(MAX_COMPLEXITY, number))

    @staticmethod
    def _as_list(value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, (list, tuple, set, frozenset)):
            return list(value)
        return []

    # --- Access ---

    def get(self, subtask_id: str) -> Subtask:
        """Get a subtask by id."""
        try:
            return self._subtasks[subtask_id]
        except KeyError:
            raise KeyError(f"Unknown subtask: {subtask_id}") from None

    @property
    def subtasks(self) -> tuple[Subtask, ...]:
        """Subtasks in declaration order."""
        return tuple(self._subtasks.values())

    def __len__(self) -> int:
        return len(self._subtasks)

    def __iter__(self) -> Iterator[Subtask]:
        return iter(self._subtasks.values())

    def __contains__(self, subtask_id: object) -> bool:
        return subtask_id in self._subtasks

    @property
    def is_validated(self) -> bool:
        return self._validated

    # --- Validation ---

    def validate(self) -> None:
        """Check the dependency edges for cycles.

        Three-colour depth-first traversal in declaration order; reaching a
        node that is still in progress is a back-edge.

        Raises:
            CyclicDependencyError: On the first back-edge found.
        """
        if self._validated:
            return
        if self._cycle_error is not None:
            raise self._cycle_error

        marks = {subtask_id: _UNVISITED for subtask_id in self._subtasks}

        def visit(root: str) -> None:
            # Explicit stack so long dependency chains stay off the call stack
            marks[root] = _IN_PROGRESS
            stack = [(root, iter(self._subtasks[root].dependencies))]
            while stack:
                subtask_id, deps = stack[-1]
                for dep in deps:
                    if marks[dep] == _IN_PROGRESS:
                        raise CyclicDependencyError(dep)
                    if marks[dep] == _UNVISITED:
                        marks[dep] = _IN_PROGRESS
                        stack.append((dep, iter(self._subtasks[dep].dependencies)))
                        break
                else:
                    marks[subtask_id] = _DONE
                    stack.pop()

        try:
            for subtask_id in self._subtasks:
                if marks[subtask_id] == _UNVISITED:
                    visit(subtask_id)
        except CyclicDependencyError as e:
            self._cycle_error = e
            raise

        self._validated = True

    def _require_validated(self) -> None:
        if self._cycle_error is not None:
            raise GraphNotValidatedError(
                f"Graph failed validation: {self._cycle_error}"
            ) from self._cycle_error
        if not self._validated:
            raise GraphNotValidatedError("validate() must be called before ordering")

    # --- Ordering ---

    def topological_order(self) -> tuple[Subtask, ...]:
        """Subtasks with every dependency before its dependents.

        Ties are broken by declaration order, so the result is stable for a
        fixed input.
        """
        self._require_validated()
        if self._order is not None:
            return self._order

        visited: set[str] = set()
        ordered: list[Subtask] = []

        for root in self._subtasks.values():
            if root.id in visited:
                continue
            visited.add(root.id)
            stack = [(root, iter(root.dependencies))]
            while stack:
                subtask, deps = stack[-1]
                for dep in deps:
                    if dep not in visited:
                        visited.add(dep)
                        child = self._subtasks[dep]
                        stack.append((child, iter(child.dependencies)))
                        break
                else:
                    ordered.append(subtask)
                    stack.pop()

        self._order = tuple(ordered)
        return self._order

    def parallel_batches(self) -> tuple[frozenset[str], ...]:
        """Group subtasks into batches that may run concurrently.

        Greedy first-fit over the topological order: a subtask joins the
        first batch that holds none of its dependencies and comes after every
        batch that does; otherwise it opens a new batch. Batches only grant
        permission to overlap; execution order still follows
        :meth:`topological_order`.
        """
        self._require_validated()
        if self._batches is not None:
            return self._batches

        batches: list[set[str]] = []
        batch_of: dict[str, int] = {}

        for subtask in self.topological_order():
            deps = set(subtask.dependencies)
            earliest = max((batch_of[dep] + 1 for dep in deps), default=0)

            target = None
            for index in range(earliest, len(batches)):
                if not batches[index] & deps:
                    target = index
                    break

            if target is None:
                batches.append(set())
                target = len(batches) - 1

            batches[target].add(subtask.id)
            batch_of[subtask.id] = target

        self._batches = tuple(frozenset(batch) for batch in batches)
        return self._batches

    def ordered_batch(self, batch: Iterable[str]) -> list[Subtask]:
        """Members of a batch in topological order."""
        members = set(batch)
        return [subtask for subtask in self.topological_order() if subtask.id in members]

    # --- Reporting ---

    def analyze(self) -> GraphAnalysis:
        """Score the decomposition with simple structural heuristics."""
        subtasks = self.subtasks
        complexities = [s.complexity for s in subtasks]
        average = sum(complexities) / len(complexities)

        has_high_priority = any(s.priority is Priority.HIGH for s in subtasks)
        has_dependencies = any(s.dependencies for s in subtasks)
        all_have_criteria = all(s.acceptance_criteria for s in subtasks)
        balanced = max(complexities) - min(complexities) <= 7
        batch_count = len(self.parallel_batches()) if self._validated else 0

        score = 0
        if 2 <= len(subtasks) <= 8:
            score += 20
        if 3 <= average <= 7:
            score += 20
        if has_high_priority:
            score += 10
        if has_dependencies:
            score += 10
        if all_have_criteria:
            score += 20
        if balanced:
            score += 10
        if batch_count > 1:
            score += 10

        return GraphAnalysis(
            total_subtasks=len(subtasks),
            average_complexity=round(average, 2),
            has_high_priority=has_high_priority,
            has_dependencies=has_dependencies,
            all_have_acceptance_criteria=all_have_criteria,
            balanced_complexity=balanced,
            batch_count=batch_count,
            quality_score=score,
            quality_grade=_quality_grade(score),
        )

    def to_dict(self) -> dict:
        """Convert to dict for serialization"""
        data: dict[str, Any] = {
            "subtasks": [s.to_dict() for s in self.subtasks],
            "dropped_dependencies": [
                {"subtask_id": d.subtask_id, "missing_id": d.missing_id}
                for d in self.dropped_dependencies
            ],
            "duplicate_ids": list(self.duplicate_ids),
            "validated": self._validated,
        }
        if self._validated:
            data["order"] = [s.id for s in self.topological_order()]
            data["batches"] = [
                [s.id for s in self.ordered_batch(batch)] for batch in self.parallel_batches()
            ]
        return data


def _quality_grade(score: int) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"
