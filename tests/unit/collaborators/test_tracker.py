"""Tests for GitHubTracker and DryRunTracker"""
import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from ualgo.collaborators.resilience import ResilientCaller
from ualgo.collaborators.tracker import DryRunTracker, GitHubTracker
from ualgo.config.schema import TrackerConfig
from ualgo.orchestration.errors import CollaboratorError, RateLimitError


class FakeGitHub:
    """Routes requests to canned responses and remembers what was sent."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        responses = self.routes.get((request.method, request.url.path))
        if responses is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(responses, list):
            return responses.pop(0) if len(responses) > 1 else responses[0]
        return responses

    def sent(self, method, path):
        return [body for m, p, body in self.requests if m == method and p == path]


def _tracker(routes, caller=None, **kwargs):
    github = FakeGitHub(routes)
    tracker = GitHubTracker(
        "octo",
        "repo",
        "token",
        transport=httpx.MockTransport(github),
        caller=caller or ResilientCaller(sleep=AsyncMock()),
        labels=["universal-algorithm"],
        **kwargs,
    )
    return tracker, github


REPO = "/repos/octo/repo"


def test_owner_and_repo_required():
    with pytest.raises(CollaboratorError):
        GitHubTracker(None, "repo", "token")


def test_token_required_unless_dry_run():
    with pytest.raises(CollaboratorError):
        GitHubTracker("octo", "repo")

    assert GitHubTracker("octo", "repo", dry_run=True).dry_run is True


def test_from_config_reads_token_from_env(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "env-token")
    config = TrackerConfig(owner="octo", repo="repo", base_branch="develop", max_retries=1)

    tracker = GitHubTracker.from_config(config)

    assert tracker.base_branch == "develop"
    assert tracker.caller.max_retries == 1
    assert tracker._client.headers["Authorization"] == "Bearer env-token"


@pytest.mark.asyncio
async def test_dry_run_ids_are_sequential_and_nothing_is_sent():
    def fail(request):
        raise AssertionError(f"unexpected request {request.url}")

    tracker = GitHubTracker("octo", "repo", dry_run=True, transport=httpx.MockTransport(fail))

    parent = await tracker.create_record("Parent", "body")
    child = await tracker.create_record("Child", "body", parent_id=parent)
    submission = await tracker.create_artifact_submission("PR", "test/a", "code", child)

    assert (parent, child, submission) == ("1", "2", "3")
    assert await tracker.get_approval_status(submission) is True
    await tracker.close()


@pytest.mark.asyncio
async def test_create_record():
    tracker, github = _tracker(
        {
            ("POST", f"{REPO}/issues"): httpx.Response(201, json={"number": 7}),
        }
    )

    assert await tracker.create_record("Parent", "Do it") == "7"

    body = github.sent("POST", f"{REPO}/issues")[0]
    assert body == {"title": "Parent", "body": "Do it", "labels": ["universal-algorithm"]}
    await tracker.close()


@pytest.mark.asyncio
async def test_create_sub_record_links_parent():
    tracker, github = _tracker(
        {
            ("POST", f"{REPO}/issues"): httpx.Response(201, json={"number": 8}),
            ("POST", f"{REPO}/issues/7/comments"): httpx.Response(201, json={}),
        }
    )

    assert await tracker.create_record("Child", "Part", parent_id="7") == "8"

    issue = github.sent("POST", f"{REPO}/issues")[0]
    assert "**Parent Issue:** #7" in issue["body"]
    assert issue["labels"] == ["universal-algorithm", "subtask"]
    comment = github.sent("POST", f"{REPO}/issues/7/comments")[0]
    assert comment == {"body": "Sub-issue created: #8 - Child"}
    await tracker.close()


@pytest.mark.asyncio
async def test_create_artifact_submission_opens_pull_request():
    tracker, github = _tracker(
        {
            ("GET", f"{REPO}/git/ref/heads/main"): httpx.Response(
                200, json={"object": {"sha": "base-sha"}}
            ),
            ("POST", f"{REPO}/git/refs"): httpx.Response(201, json={}),
            ("PUT", f"{REPO}/contents/src/a.py"): httpx.Response(201, json={}),
            ("POST", f"{REPO}/pulls"): httpx.Response(201, json={"number": 42}),
            ("POST", f"{REPO}/issues/8/comments"): httpx.Response(201, json={}),
        }
    )

    number = await tracker.create_artifact_submission(
        "Solution for #8: A", "solution/A", "print('hi')\n", "8", file_path="src/a.py"
    )

    assert number == "42"
    assert github.sent("POST", f"{REPO}/git/refs")[0] == {
        "ref": "refs/heads/ualgo/solution/A",
        "sha": "base-sha",
    }
    put = github.sent("PUT", f"{REPO}/contents/src/a.py")[0]
    assert base64.b64decode(put["content"]).decode() == "print('hi')\n"
    assert put["branch"] == "ualgo/solution/A"
    assert "sha" not in put
    pull = github.sent("POST", f"{REPO}/pulls")[0]
    assert pull["head"] == "ualgo/solution/A"
    assert pull["base"] == "main"
    assert github.sent("POST", f"{REPO}/issues/8/comments")[0] == {
        "body": "Pull request created: #42"
    }
    await tracker.close()


@pytest.mark.asyncio
async def test_existing_branch_and_file_are_reused():
    tracker, github = _tracker(
        {
            ("GET", f"{REPO}/git/ref/heads/main"): httpx.Response(
                200, json={"object": {"sha": "base-sha"}}
            ),
            ("POST", f"{REPO}/git/refs"): httpx.Response(
                422, json={"message": "Reference already exists"}
            ),
            ("GET", f"{REPO}/contents/src/a.py"): httpx.Response(200, json={"sha": "file-sha"}),
            ("PUT", f"{REPO}/contents/src/a.py"): httpx.Response(200, json={}),
            ("POST", f"{REPO}/pulls"): httpx.Response(201, json={"number": 43}),
            ("POST", f"{REPO}/issues/8/comments"): httpx.Response(201, json={}),
        }
    )

    number = await tracker.create_artifact_submission(
        "Solution", "solution/A", "code", "8", file_path="src/a.py"
    )

    assert number == "43"
    assert github.sent("PUT", f"{REPO}/contents/src/a.py")[0]["sha"] == "file-sha"
    await tracker.close()


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    sleep = AsyncMock()
    tracker, github = _tracker(
        {
            ("POST", f"{REPO}/issues"): [
                httpx.Response(502, json={"message": "Bad Gateway"}),
                httpx.Response(201, json={"number": 9}),
            ],
        },
        caller=ResilientCaller(sleep=sleep, retry_delay_seconds=0.5),
    )

    assert await tracker.create_record("Retry me", "body") == "9"

    assert len(github.sent("POST", f"{REPO}/issues")) == 2
    sleep.assert_awaited_once_with(0.5)
    await tracker.close()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    tracker, github = _tracker(
        {("POST", f"{REPO}/issues"): httpx.Response(410, json={"message": "Issues are disabled"})}
    )

    with pytest.raises(CollaboratorError) as exc_info:
        await tracker.create_record("Nope", "body")

    assert exc_info.value.status_code == 410
    assert exc_info.value.retryable is False
    assert "Issues are disabled" in str(exc_info.value)
    assert len(github.requests) == 1
    await tracker.close()


@pytest.mark.asyncio
async def test_rate_limit_with_reset_header():
    tracker, _ = _tracker(
        {
            ("POST", f"{REPO}/issues"): httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "5000"},
                json={"message": "API rate limit exceeded"},
            )
        },
        caller=ResilientCaller(max_rate_limit_wait_seconds=60.0, clock=lambda: 1000.0),
        clock=lambda: 1000.0,
    )

    with pytest.raises(RateLimitError) as exc_info:
        await tracker.create_record("Too many", "body")

    assert exc_info.value.reset_at == 5000.0
    await tracker.close()


@pytest.mark.asyncio
async def test_rate_limit_retry_after_is_waited_out():
    sleep = AsyncMock()
    tracker, github = _tracker(
        {
            ("POST", f"{REPO}/issues"): [
                httpx.Response(429, headers={"retry-after": "5"}, json={"message": "slow"}),
                httpx.Response(201, json={"number": 10}),
            ],
        },
        caller=ResilientCaller(sleep=sleep, clock=lambda: 1000.0),
        clock=lambda: 1000.0,
    )

    assert await tracker.create_record("Later", "body") == "10"

    sleep.assert_awaited_once_with(5.0)
    await tracker.close()


@pytest.mark.asyncio
async def test_forbidden_without_rate_limit_headers_is_plain_error():
    tracker, _ = _tracker(
        {("POST", f"{REPO}/issues"): httpx.Response(403, json={"message": "Forbidden"})}
    )

    with pytest.raises(CollaboratorError) as exc_info:
        await tracker.create_record("Nope", "body")

    assert not isinstance(exc_info.value, RateLimitError)
    assert exc_info.value.status_code == 403
    await tracker.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reviews, approved",
    [
        ([], False),
        ([{"user": {"login": "alice"}, "state": "APPROVED"}], True),
        (
            [
                {"user": {"login": "alice"}, "state": "CHANGES_REQUESTED"},
                {"user": {"login": "alice"}, "state": "APPROVED"},
                {"user": {"login": "bob"}, "state": "COMMENTED"},
            ],
            True,
        ),
        (
            [
                {"user": {"login": "alice"}, "state": "APPROVED"},
                {"user": {"login": "bob"}, "state": "CHANGES_REQUESTED"},
            ],
            False,
        ),
    ],
)
async def test_approval_status(reviews, approved):
    tracker, _ = _tracker(
        {("GET", f"{REPO}/pulls/42/reviews"): httpx.Response(200, json=reviews)}
    )

    assert await tracker.get_approval_status("42") is approved
    await tracker.close()


@pytest.mark.asyncio
async def test_dry_run_tracker_keeps_everything():
    tracker = DryRunTracker(approve_by_default=False)

    parent = await tracker.create_record("Parent", "body")
    child = await tracker.create_record("Child", "body", parent_id=parent)
    submission = await tracker.create_artifact_submission(
        "Test", "test/child", "code", child, file_path="tests/test_child.py"
    )

    assert tracker.records[child].parent_id == parent
    assert tracker.records[parent].comments == ["Sub-issue created: #2 - Child"]
    assert tracker.submissions[submission].branch == "ualgo/test/child"
    assert await tracker.get_approval_status(submission) is False


@pytest.mark.asyncio
async def test_dry_run_tracker_unknown_ids():
    tracker = DryRunTracker()

    with pytest.raises(CollaboratorError):
        await tracker.add_comment("99", "hello")
    with pytest.raises(CollaboratorError):
        await tracker.get_approval_status("99")
