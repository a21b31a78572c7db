"""Tests for candidate validation rules and scoring"""
import pytest

from ualgo.orchestration.models import ArtifactKind, Candidate
from ualgo.orchestration.validation import (
    CandidateScorer,
    CandidateValidator,
    MarkerRule,
    MarkerSet,
    default_rules,
)

GOOD_SOLUTION = '''"""Stack implementation."""


class Stack:
    def __init__(self):
        self._items = []

    def push(self, item):
        self._items.append(item)

    def pop(self):
        if not self._items:
            raise IndexError("pop from empty stack")
        return self._items.pop()
'''

GOOD_TEST = """import pytest
from stack import Stack


def test_push_then_pop():
    stack = Stack()
    stack.push(1)
    assert stack.pop() == 1
"""

PLACEHOLDER = "def solve(x):\n    # TODO: implement\n    pass\n"

PROSE = "Here is how you would approach it, step by step, without any code."


def test_good_solution_passes():
    result = CandidateValidator.for_kind(ArtifactKind.SOLUTION).validate(
        Candidate(content=GOOD_SOLUTION)
    )

    assert result.passed
    assert result.failure_reason is None
    assert result.checked_rules == ("executable_logic", "no_placeholders", "exported_symbol")


def test_placeholder_fails_with_message():
    result = CandidateValidator.for_kind(ArtifactKind.SOLUTION).validate(
        Candidate(content=PLACEHOLDER)
    )

    assert not result.passed
    assert result.failed_rules == ("no_placeholders",)
    assert result.failure_reason == "Contains placeholder or TODO markers"


def test_prose_fails_logic_and_symbol_rules():
    result = CandidateValidator.for_kind(ArtifactKind.SOLUTION).validate(
        Candidate(content=PROSE)
    )

    assert result.failed_rules == ("executable_logic", "exported_symbol")
    assert "Missing function or class definitions" in result.failure_reason
    assert "Missing an externally usable symbol" in result.failure_reason


def test_test_kind_requires_test_case_and_assertion():
    validator = CandidateValidator.for_kind(ArtifactKind.TEST)

    assert validator.validate(Candidate(content=GOOD_TEST, kind=ArtifactKind.TEST)).passed

    result = validator.validate(Candidate(content=GOOD_SOLUTION, kind=ArtifactKind.TEST))
    assert result.failed_rules == ("test_case", "assertion")


def test_default_rules_per_kind():
    assert len(default_rules(ArtifactKind.SOLUTION)) == 3
    assert [r.name for r in default_rules(ArtifactKind.TEST)][-2:] == ["test_case", "assertion"]


def test_marker_rule_forbid_inverts_match():
    rule = MarkerRule("no_print", [r"\bprint\("], "Uses print", forbid=True)

    assert rule.check(Candidate(content="x = 1"))
    assert not rule.check(Candidate(content="print('hi')"))


def test_custom_rules_are_pluggable():
    validator = CandidateValidator([MarkerRule("has_main", [r"__main__"], "No entry point")])

    result = validator.validate(Candidate(content=GOOD_SOLUTION))
    assert result.failed_rules == ("has_main",)
    assert result.checked_rules == ("has_main",)


def test_marker_overrides_replace_only_given_groups():
    markers = MarkerSet.from_overrides(placeholder=[r"\bXXX\b"], executable_logic=None)

    assert markers.placeholder == (r"\bXXX\b",)
    assert markers.executable_logic == MarkerSet().executable_logic

    validator = CandidateValidator.for_kind(ArtifactKind.SOLUTION, markers)
    assert validator.validate(Candidate(content=PLACEHOLDER)).passed


def test_scorer_rewards_quality_signals():
    scorer = CandidateScorer()

    # logic, exported symbol, docstring, error handling and no placeholder
    assert scorer.score(Candidate(content=GOOD_SOLUTION)) == 50


def test_scorer_penalizes_short_and_low_effort():
    scorer = CandidateScorer()

    assert scorer.score(Candidate(content="x = 1")) == 0
    # logic + exported + clean - short - low effort
    assert scorer.score(Candidate(content="def stub(): pass")) == 15


def test_scorer_min_length_is_configurable():
    scorer = CandidateScorer(min_length=1)
    assert scorer.score(Candidate(content="x = 1")) == 10


@pytest.mark.parametrize(
    "content",
    [
        "raise NotImplementedError",
        "# FIXME later",
        "return None  # Not yet implemented",
    ],
)
def test_placeholder_markers(content):
    rule = default_rules()[1]
    assert not rule.check(Candidate(content=content))
