"""Bounded generate-validate-retry search for a single subtask."""
import logging
from collections.abc import Callable, Mapping

from ualgo.collaborators.protocol import Generator
from ualgo.orchestration.errors import GenerationError
from ualgo.orchestration.models import (
    ArtifactKind,
    ArtifactRequest,
    Candidate,
    SearchAttempt,
    SearchContext,
    SearchResult,
    SearchStatus,
    Subtask,
)
from ualgo.orchestration.validation import CandidateScorer, CandidateValidator

logger = logging.getLogger(__name__)


class CandidateSearchEngine:
    """Asks a generator for candidates until one passes validation.

    Each call to :meth:`search` is independent: attempts are kept only for the
    duration of the call and nothing is shared between searches, so several
    searches may run concurrently on the same engine.
    """

    DEFAULT_MAX_ATTEMPTS = 3

    def __init__(
        self,
        generator: Generator,
        validators: Mapping[ArtifactKind, CandidateValidator] | None = None,
        scorer: CandidateScorer | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        should_stop: Callable[[], bool] | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.validators = dict(validators or {})
        self.scorer = scorer or CandidateScorer()
        self.max_attempts = max_attempts
        self.should_stop = should_stop

    def validator_for(self, kind: ArtifactKind) -> CandidateValidator:
        if kind not in self.validators:
            self.validators[kind] = CandidateValidator.for_kind(kind)
        return self.validators[kind]

    async def search(
        self,
        subtask: Subtask,
        context: SearchContext | None = None,
        max_attempts: int | None = None,
    ) -> SearchResult:
        """Run the attempt loop for one subtask and artifact kind."""
        context = context or SearchContext()
        limit = max_attempts if max_attempts is not None else self.max_attempts
        if limit < 1:
            raise ValueError("max_attempts must be at least 1")

        validator = self.validator_for(context.kind)
        attempts: list[SearchAttempt] = []
        failure_reason: str | None = None

        for attempt_number in range(1, limit + 1):
            if self.should_stop and self.should_stop():
                logger.info(
                    f"Search for {subtask.id} ({context.kind.value}) stopped "
                    f"after {len(attempts)} attempt(s)"
                )
                break

            request = ArtifactRequest(
                kind=context.kind,
                subtask=subtask,
                task_description=context.task_description,
                test_artifact=context.test_artifact,
                attempt=attempt_number,
            )

            try:
                generated = await self.generator.generate_artifact(
                    request, failure_reason if attempt_number > 1 else None
                )
            except GenerationError as e:
                logger.warning(
                    f"Attempt {attempt_number}/{limit} for {subtask.id} "
                    f"({context.kind.value}) failed to generate: {e}"
                )
                attempts.append(SearchAttempt(attempt_number=attempt_number, error=str(e)))
                continue

            candidate = self._as_candidate(generated, context.kind)
            validation = validator.validate(candidate)
            attempts.append(
                SearchAttempt(
                    attempt_number=attempt_number,
                    candidate=candidate,
                    validation=validation,
                )
            )

            if validation.passed:
                logger.debug(f"Attempt {attempt_number} for {subtask.id} passed validation")
                return SearchResult(
                    subtask_id=subtask.id,
                    kind=context.kind,
                    attempts=tuple(attempts),
                    chosen=candidate,
                    status=SearchStatus.SUCCESS,
                )

            failure_reason = validation.failure_reason
            logger.info(
                f"Attempt {attempt_number}/{limit} for {subtask.id} "
                f"({context.kind.value}) rejected: {failure_reason}"
            )

        return SearchResult(
            subtask_id=subtask.id,
            kind=context.kind,
            attempts=tuple(attempts),
            chosen=self._best_candidate(attempts),
            status=SearchStatus.EXHAUSTED,
        )

    def _best_candidate(self, attempts: list[SearchAttempt]) -> Candidate | None:
        """Highest score among non-errored attempts; earliest wins ties."""
        best: Candidate | None = None
        best_score = None
        for attempt in attempts:
            if attempt.candidate is None:
                continue
            score = self.scorer.score(attempt.candidate)
            if best_score is None or score > best_score:
                best, best_score = attempt.candidate, score
        return best

    @staticmethod
    def _as_candidate(generated: Candidate | str, kind: ArtifactKind) -> Candidate:
        if isinstance(generated, Candidate):
            return generated
        return Candidate(content=str(generated), kind=kind)
