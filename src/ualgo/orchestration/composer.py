"""Deterministic assembly of solved subtask artifacts."""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from ualgo.collaborators.protocol import Generator
from ualgo.orchestration.errors import GenerationError, NoViableSolutionsError
from ualgo.orchestration.models import Candidate, Subtask

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolvedArtifact:
    """A subtask paired with the solution chosen for it."""

    subtask: Subtask
    candidate: Candidate


@dataclass(frozen=True)
class ComposedResult:
    """Concatenated solution plus bookkeeping about what went into it."""

    task_description: str
    content: str
    components: tuple[SolvedArtifact, ...]
    statistics: dict = field(default_factory=dict)
    refined: bool = False

    def to_dict(self) -> dict:
        return {
            "task_description": self.task_description,
            "content": self.content,
            "components": [
                {"subtask_id": c.subtask.id, "title": c.subtask.title}
                for c in self.components
            ],
            "statistics": dict(self.statistics),
            "refined": self.refined,
        }


class ArtifactComposer:
    """Joins solved artifacts in the order given, each under its subtask title.

    No semantic merge happens here: components are neither deduplicated nor
    checked for conflicting names. Use :meth:`refine` to ask a generator for a
    merged version.
    """

    SEPARATOR = "# " + "-" * 60

    def compose(
        self,
        original_task_description: str,
        solved_artifacts: Sequence[SolvedArtifact],
    ) -> ComposedResult:
        components = tuple(solved_artifacts)
        if not components:
            raise NoViableSolutionsError(
                f"No usable solutions to compose for: {original_task_description[:80]}"
            )

        sections = [f"# Composed solution for: {original_task_description}"]
        for index, component in enumerate(components, start=1):
            sections.append(
                f"{self.SEPARATOR}\n"
                f"# Component {index}: {component.subtask.title} ({component.subtask.id})\n"
                f"{self.SEPARATOR}\n"
                f"{component.candidate.content.rstrip()}"
            )
        content = "\n\n".join(sections) + "\n"

        logger.info(f"Composed {len(components)} component(s)")
        return ComposedResult(
            task_description=original_task_description,
            content=content,
            components=components,
            statistics=self._statistics(components),
        )

    async def refine(self, composed: ComposedResult, generator: Generator) -> ComposedResult:
        """Ask the generator for a merged version, keeping ``composed`` on failure."""
        merge_context = {
            "task_description": composed.task_description,
            "components": [
                {
                    "subtask_id": c.subtask.id,
                    "title": c.subtask.title,
                    "description": c.subtask.description,
                    "content": c.candidate.content,
                }
                for c in composed.components
            ],
            "statistics": dict(composed.statistics),
        }

        try:
            merged = await generator.compose_freeform(merge_context)
        except GenerationError as e:
            logger.warning(f"Freeform composition failed, keeping concatenation: {e}")
            return composed

        if not merged or not merged.strip():
            logger.warning("Freeform composition returned nothing, keeping concatenation")
            return composed

        return replace(composed, content=merged, refined=True)

    @staticmethod
    def _statistics(components: tuple[SolvedArtifact, ...]) -> dict:
        total_complexity = sum(c.subtask.complexity for c in components)
        return {
            "component_count": len(components),
            "total_complexity": total_complexity,
            "average_complexity": round(total_complexity / len(components), 2),
            "total_characters": sum(len(c.candidate.content) for c in components),
            "subtask_ids": [c.subtask.id for c in components],
        }
