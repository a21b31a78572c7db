"""Workflow coordinator: decomposition, per-subtask search, composition."""
import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ualgo.collaborators.protocol import Generator, Tracker
from ualgo.orchestration.analytics import AnalyticsLogger, FailureRecord
from ualgo.orchestration.checkpoint import Checkpoint, CheckpointManager
from ualgo.orchestration.composer import ArtifactComposer, ComposedResult, SolvedArtifact
from ualgo.orchestration.errors import (
    CollaboratorError,
    GenerationError,
    InvalidGraphError,
    NoViableSolutionsError,
    WorkflowCancelledError,
    WorkflowError,
)
from ualgo.orchestration.models import (
    WORKING_PHASES,
    ArtifactKind,
    OutcomeStatus,
    Phase,
    SearchContext,
    Subtask,
    SubtaskOutcome,
)
from ualgo.orchestration.search import CandidateSearchEngine
from ualgo.orchestration.task_graph import DroppedDependency, TaskGraph
from ualgo.orchestration.validation import CandidateScorer, CandidateValidator, MarkerSet

logger = logging.getLogger(__name__)


@dataclass
class WorkflowSummary:
    """Statistics computed when a run completes"""
    total_subtasks: int
    tests_generated: int
    solved_subtasks: int
    skipped_subtasks: int
    success_rate: float
    average_complexity: float
    duration_seconds: float

    def to_dict(self) -> dict:
        return {
            "total_subtasks": self.total_subtasks,
            "tests_generated": self.tests_generated,
            "solved_subtasks": self.solved_subtasks,
            "skipped_subtasks": self.skipped_subtasks,
            "success_rate": self.success_rate,
            "average_complexity": self.average_complexity,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class WorkflowState:
    """Everything a run accumulates. Only the coordinator writes to it."""
    session_id: str
    phase: Phase = Phase.IDLE
    failed_phase: Phase | None = None
    task_description: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None

    subtasks: list[Subtask] = field(default_factory=list)
    batches: list[frozenset[str]] = field(default_factory=list)
    dropped_dependencies: list[DroppedDependency] = field(default_factory=list)

    parent_record_id: str | None = None
    record_ids: dict[str, str] = field(default_factory=dict)
    test_results: dict[str, SubtaskOutcome] = field(default_factory=dict)
    solution_results: dict[str, SubtaskOutcome] = field(default_factory=dict)
    composition_result: ComposedResult | None = None
    final_submission_id: str | None = None
    summary: WorkflowSummary | None = None
    error: str | None = None

    paused: bool = False
    paused_at: datetime | None = None
    resumed_at: datetime | None = None

    def to_dict(self) -> dict:
        """Convert to dict for serialization"""
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "task_description": self.task_description,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "subtasks": [s.to_dict() for s in self.subtasks],
            "batches": [sorted(batch) for batch in self.batches],
            "dropped_dependencies": [
                {"subtask_id": d.subtask_id, "missing_id": d.missing_id}
                for d in self.dropped_dependencies
            ],
            "parent_record_id": self.parent_record_id,
            "record_ids": dict(self.record_ids),
            "test_results": {k: v.to_dict() for k, v in self.test_results.items()},
            "solution_results": {k: v.to_dict() for k, v in self.solution_results.items()},
            "composition": (
                self.composition_result.to_dict() if self.composition_result else None
            ),
            "final_submission_id": self.final_submission_id,
            "summary": self.summary.to_dict() if self.summary else None,
            "error": self.error,
            "paused": self.paused,
        }


@dataclass
class WorkflowResult:
    """Final result of a completed run"""
    session_id: str
    summary: WorkflowSummary
    composed: ComposedResult
    final_submission_id: str | None
    state: WorkflowState


class WorkflowCoordinator:
    """Drives one task from decomposition to a composed solution.

    Phases run in a fixed order. A failure for a single subtask during test
    generation or solution search is recorded as ``skipped`` and the run
    continues; invalid or cyclic decompositions and the absence of any usable
    solution abort the run. The coordinator then sits in ``failed`` until
    :meth:`reset` is called.
    """

    def __init__(
        self,
        generator: Generator,
        tracker: Tracker,
        search_engine: CandidateSearchEngine | None = None,
        composer: ArtifactComposer | None = None,
        *,
        max_subtasks: int | None = None,
        max_attempts: int | None = None,
        max_concurrency: int = 1,
        freeform_composition: bool = False,
        sessions_dir: Path | None = None,
        analytics: AnalyticsLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.generator = generator
        self.tracker = tracker
        self.search_engine = search_engine or CandidateSearchEngine(generator)
        if self.search_engine.should_stop is None:
            self.search_engine.should_stop = self.is_cancelled
        self.composer = composer or ArtifactComposer()
        self.max_subtasks = max_subtasks
        self.max_attempts = max_attempts
        self.max_concurrency = max_concurrency
        self.freeform_composition = freeform_composition
        self.sessions_dir = sessions_dir
        self.analytics = analytics
        self.clock = clock

        self.graph: TaskGraph | None = None
        self.state = WorkflowState(session_id=self._new_session_id())
        self.checkpoints: list[Checkpoint] = []
        self._checkpoint_mgr: CheckpointManager | None = None
        self._running = False
        self._cancelled = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    @classmethod
    def from_config(
        cls,
        config,
        generator: Generator,
        tracker: Tracker,
        sessions_dir: Path | None = None,
        analytics: AnalyticsLogger | None = None,
    ) -> "WorkflowCoordinator":
        """Assemble a coordinator from a UAConfig."""
        search = config.search
        markers = MarkerSet.from_overrides(
            executable_logic=search.executable_logic_markers,
            exported_symbol=search.exported_symbol_markers,
            placeholder=search.placeholder_markers,
            low_effort=search.low_effort_markers,
        )
        engine = CandidateSearchEngine(
            generator,
            validators={
                kind: CandidateValidator.for_kind(kind, markers) for kind in ArtifactKind
            },
            scorer=CandidateScorer(markers, min_length=search.min_length),
            max_attempts=search.max_attempts,
        )

        workflow = config.workflow
        if workflow.analytics and analytics is None:
            analytics = AnalyticsLogger()

        return cls(
            generator,
            tracker,
            engine,
            max_subtasks=config.decomposition.max_subtasks,
            max_concurrency=workflow.max_concurrency,
            freeform_composition=workflow.freeform_composition,
            sessions_dir=sessions_dir if workflow.checkpoints else None,
            analytics=analytics,
        )

    @staticmethod
    def _new_session_id() -> str:
        return str(uuid.uuid4())[:8]

    # --- Control ---

    def progress(self) -> float:
        """Percentage of the working phases already reached.

        ``completed`` is always 100 and ``idle`` 0. A failed run keeps the
        value of the phase it failed in.
        """
        phase = self.state.phase
        if phase is Phase.FAILED:
            phase = self.state.failed_phase or Phase.IDLE
        if phase is Phase.COMPLETED:
            return 100.0
        if phase in WORKING_PHASES:
            return WORKING_PHASES.index(phase) / len(WORKING_PHASES) * 100
        return 0.0

    def pause(self) -> None:
        """Hold the run at the next phase boundary. The current phase finishes."""
        if self.state.paused:
            return
        self.state.paused = True
        self.state.paused_at = self.clock()
        self._resume_event.clear()
        logger.info(f"Workflow {self.state.session_id} paused")

    def resume(self) -> None:
        if not self.state.paused:
            return
        self.state.paused = False
        self.state.resumed_at = self.clock()
        self._resume_event.set()
        logger.info(f"Workflow {self.state.session_id} resumed")

    def cancel(self) -> None:
        """Abandon the run at the next phase boundary.

        Searches already running finish their current attempt and stop.
        """
        self._cancelled = True
        self._resume_event.set()
        logger.info(f"Workflow {self.state.session_id} cancellation requested")

    def is_cancelled(self) -> bool:
        return self._cancelled

    def status(self) -> dict:
        state = self.state
        status = {
            "session_id": state.session_id,
            "phase": state.phase.value,
            "progress": self.progress(),
            "task": state.task_description,
            "started_at": state.started_at.isoformat() if state.started_at else None,
            "paused": state.paused,
            "subtasks": len(state.subtasks),
        }
        if state.phase is Phase.FAILED:
            status["failed_phase"] = state.failed_phase.value if state.failed_phase else None
            status["error"] = state.error
        if state.phase is Phase.COMPLETED and state.summary:
            status["statistics"] = state.summary.to_dict()
        return status

    def reset(self) -> None:
        """Clear all state so the coordinator can run again."""
        if self._running:
            raise WorkflowError("Cannot reset a running workflow")
        self.graph = None
        self.state = WorkflowState(session_id=self._new_session_id())
        self.checkpoints = []
        self._checkpoint_mgr = None
        self._cancelled = False
        self._resume_event.set()

    # --- Run ---

    async def run(self, task_description: str) -> WorkflowResult:
        """Run every phase for ``task_description``.

        Raises:
            InvalidGraphError: Decomposition could not be normalized.
            CyclicDependencyError: Decomposition contains a cycle.
            NoViableSolutionsError: No subtask produced a usable solution.
            WorkflowCancelledError: cancel() was called.
        """
        if self.state.phase is not Phase.IDLE:
            raise WorkflowError(
                f"Workflow is {self.state.phase.value}; call reset() before running again"
            )

        state = self.state
        state.task_description = task_description
        state.started_at = self.clock()
        self._running = True
        if self.sessions_dir is not None:
            self._checkpoint_mgr = CheckpointManager(self.sessions_dir / state.session_id)

        logger.info(f"Workflow {state.session_id} started: {task_description[:80]}")

        try:
            await self._enter(Phase.DECOMPOSITION)
            await self._decompose(task_description)
            self._checkpoint()

            await self._enter(Phase.ISSUE_CREATION)
            await self._create_records(task_description)
            self._checkpoint()

            await self._enter(Phase.TEST_GENERATION)
            await self._run_searches(ArtifactKind.TEST)
            self._checkpoint()

            await self._enter(Phase.SOLUTION_SEARCH)
            await self._run_searches(ArtifactKind.SOLUTION)
            self._checkpoint()

            await self._enter(Phase.SOLUTION_COMPOSITION)
            await self._compose(task_description)
            self._checkpoint()

            await self._complete()
            self._checkpoint()
        except Exception as e:
            state.failed_phase = state.phase
            state.phase = Phase.FAILED
            state.error = str(e)
            logger.error(
                f"Workflow {state.session_id} failed during {state.failed_phase.value}: {e}"
            )
            try:
                self._checkpoint()
            except OSError as checkpoint_error:
                logger.error(f"Could not write failure checkpoint: {checkpoint_error}")
            raise
        finally:
            self._running = False

        return WorkflowResult(
            session_id=state.session_id,
            summary=state.summary,
            composed=state.composition_result,
            final_submission_id=state.final_submission_id,
            state=state,
        )

    async def _enter(self, phase: Phase) -> None:
        """Phase boundary: honour pause and cancel, then switch phase."""
        if self.state.paused and not self._cancelled:
            logger.info(f"Waiting for resume before {phase.value}")
        await self._resume_event.wait()
        if self._cancelled:
            raise WorkflowCancelledError(f"Workflow cancelled before {phase.value}")

        self.state.phase = phase
        logger.info(f"Phase: {phase.value} ({self.progress():.0f}%)")

    async def _decompose(self, task_description: str) -> None:
        try:
            raw = await self.generator.generate_decomposition(task_description)
        except GenerationError as e:
            raise InvalidGraphError(f"Decomposition failed: {e}") from e

        graph = TaskGraph.decompose(raw, max_subtasks=self.max_subtasks)
        graph.validate()

        self.graph = graph
        self.state.subtasks = list(graph.topological_order())
        self.state.batches = list(graph.parallel_batches())
        self.state.dropped_dependencies = list(graph.dropped_dependencies)
        logger.info(
            f"Decomposed into {len(graph)} subtask(s) in {len(self.state.batches)} batch(es)"
        )

    async def _create_records(self, task_description: str) -> None:
        state = self.state
        try:
            state.parent_record_id = await self.tracker.create_record(
                f"Universal Algorithm: {task_description[:80]}",
                self._parent_body(task_description),
            )
        except CollaboratorError as e:
            logger.warning(f"Could not create parent record, subtasks will be unlinked: {e}")

        for subtask in state.subtasks:
            try:
                state.record_ids[subtask.id] = await self.tracker.create_record(
                    subtask.title, self._subtask_body(subtask), parent_id=state.parent_record_id
                )
            except CollaboratorError as e:
                logger.warning(f"Could not create record for {subtask.id}: {e}")
                self._record_failure(subtask, None, e)
            except Exception as e:
                logger.exception(f"Unexpected error creating record for {subtask.id}")
                self._record_failure(subtask, None, e)

    def _parent_body(self, task_description: str) -> str:
        lines = [task_description, "", "## Subtasks", ""]
        lines += [f"- [ ] {s.title} (`{s.id}`)" for s in self.state.subtasks]
        return "\n".join(lines)

    @staticmethod
    def _subtask_body(subtask: Subtask) -> str:
        lines = [
            subtask.description,
            "",
            f"**Priority:** {subtask.priority.value}",
            f"**Complexity:** {subtask.complexity}/10",
        ]
        if subtask.dependencies:
            lines.append(f"**Depends on:** {', '.join(subtask.dependencies)}")
        if subtask.acceptance_criteria:
            lines += ["", "## Acceptance Criteria", ""]
            lines += [f"- [ ] {c}" for c in subtask.acceptance_criteria]
        return "\n".join(lines)

    async def _run_searches(self, kind: ArtifactKind) -> None:
        """Search every eligible subtask, one batch at a time."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        for batch in self.state.batches:
            members = [s for s in self.state.subtasks if s.id in batch]
            if kind is ArtifactKind.SOLUTION:
                members = [s for s in members if self._has_usable_test(s.id)]
            if not members:
                continue

            async def process(subtask: Subtask) -> None:
                async with semaphore:
                    await self._process_subtask(subtask, kind)

            # Barrier: the whole batch settles before the next one starts
            outcomes = await asyncio.gather(
                *(process(s) for s in members), return_exceptions=True
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

        results = self._results(kind)
        usable = sum(1 for outcome in results.values() if outcome.usable)
        logger.info(f"{kind.value}: {usable}/{len(results)} subtask(s) usable")

    def _has_usable_test(self, subtask_id: str) -> bool:
        outcome = self.state.test_results.get(subtask_id)
        return outcome is not None and outcome.usable

    def _results(self, kind: ArtifactKind) -> dict[str, SubtaskOutcome]:
        if kind is ArtifactKind.TEST:
            return self.state.test_results
        return self.state.solution_results

    async def _process_subtask(self, subtask: Subtask, kind: ArtifactKind) -> None:
        try:
            outcome = await self._search_and_submit(subtask, kind)
        except WorkflowError as e:
            logger.warning(f"Skipping {kind.value} for {subtask.id}: {e}")
            outcome = self._skipped(subtask, kind, e)
        except Exception as e:
            logger.exception(f"Unexpected error in {kind.value} for {subtask.id}, skipping")
            outcome = self._skipped(subtask, kind, e)
        self._results(kind)[subtask.id] = outcome

    def _skipped(self, subtask: Subtask, kind: ArtifactKind, error: Exception) -> SubtaskOutcome:
        self._record_failure(subtask, kind, error)
        return SubtaskOutcome(
            subtask_id=subtask.id, kind=kind, status=OutcomeStatus.SKIPPED, error=str(error)
        )

    async def _search_and_submit(self, subtask: Subtask, kind: ArtifactKind) -> SubtaskOutcome:
        record_id = self.state.record_ids.get(subtask.id, self.state.parent_record_id)
        if record_id is None:
            raise CollaboratorError(f"No tracker record to attach {kind.value} for {subtask.id}")

        test_outcome = self.state.test_results.get(subtask.id)
        context = SearchContext(
            kind=kind,
            task_description=self.state.task_description,
            test_artifact=(
                test_outcome.candidate
                if kind is ArtifactKind.SOLUTION and test_outcome is not None
                else None
            ),
        )
        result = await self.search_engine.search(subtask, context, max_attempts=self.max_attempts)

        if result.chosen is None:
            errors = [a.error for a in result.attempts if a.error]
            message = errors[-1] if errors else "no candidate generated"
            logger.warning(f"No {kind.value} candidate for {subtask.id}: {message}")
            self._record_failure(subtask, kind, None, message)
            return SubtaskOutcome(
                subtask_id=subtask.id,
                kind=kind,
                status=OutcomeStatus.UNRESOLVED,
                attempts=len(result.attempts),
                error=message,
            )

        label = "Test" if kind is ArtifactKind.TEST else "Solution"
        submission_id = await self.tracker.create_artifact_submission(
            f"{label} for #{record_id}: {subtask.title}",
            f"{kind.value}/{subtask.id}",
            result.chosen.content,
            record_id,
            file_path=self._artifact_path(subtask, kind, result.chosen.file_name),
        )

        return SubtaskOutcome(
            subtask_id=subtask.id,
            kind=kind,
            status=OutcomeStatus.SUCCESS if result.is_success else OutcomeStatus.EXHAUSTED,
            candidate=result.chosen,
            attempts=len(result.attempts),
            submission_id=submission_id,
        )

    @staticmethod
    def _artifact_path(subtask: Subtask, kind: ArtifactKind, file_name: str | None) -> str:
        if kind is ArtifactKind.TEST:
            return f"tests/{file_name or f'test_{subtask.id}.py'}"
        return f"src/{file_name or f'{subtask.id}.py'}"

    async def _compose(self, task_description: str) -> None:
        state = self.state
        solved = [
            SolvedArtifact(subtask, state.solution_results[subtask.id].candidate)
            for subtask in state.subtasks
            if subtask.id in state.solution_results and state.solution_results[subtask.id].usable
        ]
        if not solved:
            raise NoViableSolutionsError("No subtask produced a usable solution")

        composed = self.composer.compose(task_description, solved)
        if self.freeform_composition:
            composed = await self.composer.refine(composed, self.generator)
        state.composition_result = composed

        if state.parent_record_id is None:
            logger.warning("No parent record, composed solution not submitted")
            return
        try:
            state.final_submission_id = await self.tracker.create_artifact_submission(
                f"Final solution for #{state.parent_record_id}",
                "solution/main",
                composed.content,
                state.parent_record_id,
                file_path="src/solution.py",
            )
        except CollaboratorError as e:
            logger.warning(f"Could not submit composed solution: {e}")

    async def _complete(self) -> None:
        state = self.state
        state.completed_at = self.clock()
        state.summary = self._summarize()
        state.phase = Phase.COMPLETED

        summary = state.summary
        logger.info(
            f"Workflow {state.session_id} completed: {summary.solved_subtasks}/"
            f"{summary.total_subtasks} solved ({summary.success_rate:.0%})"
        )

        if state.parent_record_id is None:
            return
        comment = (
            "## Universal Algorithm complete\n\n"
            f"- Subtasks: {summary.total_subtasks}\n"
            f"- Solved: {summary.solved_subtasks} ({summary.success_rate:.0%})\n"
            f"- Skipped: {summary.skipped_subtasks}\n"
        )
        if state.final_submission_id:
            comment += f"- Final solution: #{state.final_submission_id}\n"
        try:
            await self.tracker.add_comment(state.parent_record_id, comment)
        except CollaboratorError as e:
            logger.warning(f"Could not post completion comment: {e}")

    def _summarize(self) -> WorkflowSummary:
        state = self.state
        total = len(state.subtasks)
        solved = sum(1 for o in state.solution_results.values() if o.usable)
        tests = sum(1 for o in state.test_results.values() if o.usable)
        skipped = sum(
            1
            for results in (state.test_results, state.solution_results)
            for o in results.values()
            if o.status is OutcomeStatus.SKIPPED
        )
        average = sum(s.complexity for s in state.subtasks) / total if total else 0.0
        duration = (
            (state.completed_at - state.started_at).total_seconds()
            if state.started_at and state.completed_at
            else 0.0
        )
        return WorkflowSummary(
            total_subtasks=total,
            tests_generated=tests,
            solved_subtasks=solved,
            skipped_subtasks=skipped,
            success_rate=round(solved / total, 4) if total else 0.0,
            average_complexity=round(average, 2),
            duration_seconds=duration,
        )

    # --- Bookkeeping ---

    def _record_failure(
        self,
        subtask: Subtask,
        kind: ArtifactKind | None,
        error: Exception | None,
        message: str | None = None,
    ) -> None:
        if self.analytics is None:
            return
        self.analytics.log_failure(
            FailureRecord(
                session_id=self.state.session_id,
                phase=self.state.phase.value,
                subtask_id=subtask.id,
                error_type=type(error).__name__ if error else "unresolved",
                error_message=message or str(error),
                artifact_kind=kind.value if kind else None,
            )
        )

    def _checkpoint(self) -> None:
        if self._checkpoint_mgr is None:
            return
        checkpoint = Checkpoint(
            session_id=self.state.session_id,
            sequence=self._checkpoint_mgr.next_sequence(),
            phase=self.state.phase.value,
            timestamp=self.clock(),
            state_snapshot=self.state.to_dict(),
        )
        self._checkpoint_mgr.save_checkpoint(checkpoint)
        self.checkpoints.append(checkpoint)
