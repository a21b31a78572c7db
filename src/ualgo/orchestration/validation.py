"""Structural validation rules and scoring for generated candidates."""
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ualgo.orchestration.models import ArtifactKind, Candidate, ValidationResult


@dataclass(frozen=True)
class MarkerSet:
    """Regex patterns for the text signals the rules and scorer look for."""

    executable_logic: tuple[str, ...] = (
        r"\bdef\s+\w+\s*\(",
        r"\bclass\s+\w+",
        r"\bfunction\b",
        r"=>",
        r"\blambda\b",
    )
    exported_symbol: tuple[str, ...] = (
        r"^(?:async\s+)?def\s+[A-Za-z]\w*",
        r"^class\s+[A-Za-z]\w*",
        r"\bexport\s",
        r"module\.exports",
        r"\b__all__\b",
    )
    placeholder: tuple[str, ...] = (
        r"\bTODO\b",
        r"\bFIXME\b",
        r"\bNotImplementedError\b",
        r"(?i)not (?:yet )?implemented",
    )
    structured_comment: tuple[str, ...] = (r'"""', r"'''", r"/\*\*")
    error_handling: tuple[str, ...] = (
        r"\btry\b",
        r"\bexcept\b",
        r"\bcatch\b",
        r"\braise\s+\w+",
        r"\bthrow\s",
    )
    low_effort: tuple[str, ...] = (r"(?i)placeholder", r"(?i)\bstub\b")
    test_case: tuple[str, ...] = (
        r"\bdef\s+test_\w*",
        r"\btest\(",
        r"\bit\(",
        r"\bclass\s+Test\w*",
    )
    assertion: tuple[str, ...] = (
        r"\bassert\b",
        r"\bexpect\(",
        r"\bassert[A-Z]\w*\(",
        r"pytest\.raises",
    )

    @classmethod
    def from_overrides(cls, **overrides: Iterable[str] | None) -> "MarkerSet":
        """Build a marker set, replacing only the groups that are given."""
        values = {key: tuple(value) for key, value in overrides.items() if value}
        return cls(**values)


DEFAULT_MARKERS = MarkerSet()


def _compile(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.MULTILINE) for p in patterns)


def _any_match(patterns: Sequence[re.Pattern[str]], text: str) -> bool:
    return any(p.search(text) for p in patterns)


class ValidationRule(ABC):
    """A single structural check over a candidate."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier reported in failed_rules"""
        pass

    @property
    @abstractmethod
    def failure_message(self) -> str:
        """Feedback text handed to the generator when the rule fails"""
        pass

    @abstractmethod
    def check(self, candidate: Candidate) -> bool:
        """Return True if the candidate satisfies the rule"""
        pass


class MarkerRule(ValidationRule):
    """Passes when any pattern matches (or, with ``forbid=True``, when none does)."""

    def __init__(
        self,
        name: str,
        patterns: Iterable[str],
        failure_message: str,
        forbid: bool = False,
    ):
        self._name = name
        self._patterns = _compile(patterns)
        self._failure_message = failure_message
        self.forbid = forbid

    @property
    def name(self) -> str:
        return self._name

    @property
    def failure_message(self) -> str:
        return self._failure_message

    def check(self, candidate: Candidate) -> bool:
        found = _any_match(self._patterns, candidate.content)
        return not found if self.forbid else found


def default_rules(
    kind: ArtifactKind = ArtifactKind.SOLUTION, markers: MarkerSet = DEFAULT_MARKERS
) -> list[ValidationRule]:
    """Default rule list for an artifact kind."""
    rules: list[ValidationRule] = [
        MarkerRule(
            "executable_logic",
            markers.executable_logic,
            "Missing function or class definitions",
        ),
        MarkerRule(
            "no_placeholders",
            markers.placeholder,
            "Contains placeholder or TODO markers",
            forbid=True,
        ),
        MarkerRule(
            "exported_symbol",
            markers.exported_symbol,
            "Missing an externally usable symbol",
        ),
    ]
    if kind is ArtifactKind.TEST:
        rules.append(MarkerRule("test_case", markers.test_case, "Missing a test case"))
        rules.append(MarkerRule("assertion", markers.assertion, "Missing assertions"))
    return rules


class CandidateValidator:
    """Runs a pluggable list of rules over a candidate."""

    def __init__(self, rules: Sequence[ValidationRule]):
        self.rules = list(rules)

    @classmethod
    def for_kind(
        cls, kind: ArtifactKind, markers: MarkerSet = DEFAULT_MARKERS
    ) -> "CandidateValidator":
        return cls(default_rules(kind, markers))

    def validate(self, candidate: Candidate) -> ValidationResult:
        failed = [rule for rule in self.rules if not rule.check(candidate)]
        return ValidationResult(
            failed_rules=tuple(rule.name for rule in failed),
            messages=tuple(rule.failure_message for rule in failed),
            checked_rules=tuple(rule.name for rule in self.rules),
        )


class CandidateScorer:
    """Ranks candidates when no attempt passed validation.

    Scoring: +10 for each quality signal present (executable logic, exported
    symbol, structured comment, error handling), +10 when no placeholder is
    present, -10 when shorter than ``min_length``, -5 when a low-effort
    marker is present.
    """

    SIGNAL_POINTS = 10
    CLEAN_POINTS = 10
    SHORT_PENALTY = 10
    LOW_EFFORT_PENALTY = 5

    def __init__(self, markers: MarkerSet = DEFAULT_MARKERS, min_length: int = 50):
        self.min_length = min_length
        self._signals = (
            _compile(markers.executable_logic),
            _compile(markers.exported_symbol),
            _compile(markers.structured_comment),
            _compile(markers.error_handling),
        )
        self._placeholder = _compile(markers.placeholder)
        self._low_effort = _compile(markers.low_effort)

    def score(self, candidate: Candidate) -> int:
        text = candidate.content
        score = 0

        for patterns in self._signals:
            if _any_match(patterns, text):
                score += self.SIGNAL_POINTS

        if not _any_match(self._placeholder, text):
            score += self.CLEAN_POINTS

        if len(text) < self.min_length:
            score -= self.SHORT_PENALTY
        if _any_match(self._low_effort, text):
            score -= self.LOW_EFFORT_PENALTY

        return score
