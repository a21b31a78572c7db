"""Issue and pull request tracking on GitHub."""

import base64
import itertools
import logging
import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ualgo.collaborators.protocol import Tracker
from ualgo.collaborators.resilience import ResilientCaller
from ualgo.orchestration.errors import CollaboratorError, RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
USER_AGENT = "ualgo/0.1"

RETRYABLE_STATUS = {500, 502, 503, 504}


def _branch_name(branch_hint: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._/-]+", "-", branch_hint).strip("-/")
    return f"ualgo/{name or 'artifact'}"


class GitHubTracker(Tracker):
    """Tracker on the GitHub REST API.

    Records are issues, submissions are pull requests holding a single file.
    In dry-run mode nothing is sent and ids are sequential numbers starting
    at 1, so repeated runs produce the same ids.
    """

    def __init__(
        self,
        owner: str | None,
        repo: str | None,
        token: str | None = None,
        *,
        base_branch: str = "main",
        api_url: str = DEFAULT_API_URL,
        labels: list[str] | None = None,
        dry_run: bool = False,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        caller: ResilientCaller | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if not owner or not repo:
            raise CollaboratorError("GitHub owner and repo are required")
        if not token and not dry_run:
            raise CollaboratorError("GitHub token is required unless running in dry-run mode")

        self.owner = owner
        self.repo = repo
        self.base_branch = base_branch
        self.labels = list(labels or [])
        self.dry_run = dry_run
        self.caller = caller or ResilientCaller()
        self.clock = clock
        self._ids = itertools.count(1)

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    @classmethod
    def from_config(cls, tracker_config, token: str | None = None, **kwargs) -> "GitHubTracker":
        return cls(
            tracker_config.owner,
            tracker_config.repo,
            token or os.getenv("GITHUB_TOKEN"),
            base_branch=tracker_config.base_branch,
            api_url=tracker_config.api_url,
            labels=tracker_config.labels,
            dry_run=tracker_config.dry_run,
            timeout_seconds=tracker_config.timeout_seconds,
            caller=ResilientCaller.from_config(tracker_config),
            **kwargs,
        )

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubTracker":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    # -- transport ----------------------------------------------------------

    def _raise_for_rate_limit(self, response: httpx.Response) -> None:
        if response.status_code not in (403, 429):
            return

        remaining = response.headers.get("x-ratelimit-remaining")
        retry_after = response.headers.get("retry-after")
        if remaining != "0" and retry_after is None:
            return

        reset_at = self.clock() + 60.0
        try:
            if retry_after is not None:
                reset_at = self.clock() + float(retry_after)
            elif response.headers.get("x-ratelimit-reset"):
                reset_at = float(response.headers["x-ratelimit-reset"])
        except ValueError:
            logger.warning("Unparseable rate limit headers, waiting 60s")

        raise RateLimitError(
            f"GitHub rate limit hit ({response.status_code}), resets at {reset_at:.0f}",
            reset_at=reset_at,
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise CollaboratorError(
                f"Timeout calling GitHub {method} {path}", retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(
                f"HTTP error calling GitHub {method} {path}: {e}", retryable=True
            ) from e

        self._raise_for_rate_limit(response)

        if not response.is_success:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise CollaboratorError(
                f"GitHub {method} {path} failed with {response.status_code}: {message}",
                retryable=response.status_code in RETRYABLE_STATUS,
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self.caller.call(
            self._send, method, path, description=f"GitHub {method} {path}", **kwargs
        )

    def _synthetic_id(self, what: str, title: str) -> str:
        synthetic = str(next(self._ids))
        logger.info(f"DRY RUN - Would create {what} #{synthetic}: {title}")
        return synthetic

    # -- Tracker ------------------------------------------------------------

    async def create_record(self, title: str, body: str, parent_id: str | None = None) -> str:
        labels = list(self.labels)
        if parent_id is not None:
            body = f"{body}\n\n---\n\n**Parent Issue:** #{parent_id}"
            labels.append("subtask")

        if self.dry_run:
            number = self._synthetic_id("issue", title)
        else:
            data = await self._request(
                "POST",
                f"{self._repo_path}/issues",
                json={"title": title, "body": body, "labels": labels},
            )
            number = str(data["number"])
            logger.info(f"Created issue #{number}: {title}")

        if parent_id is not None:
            await self.add_comment(parent_id, f"Sub-issue created: #{number} - {title}")
        return number

    async def create_artifact_submission(
        self,
        title: str,
        branch_hint: str,
        content: str,
        record_id: str,
        file_path: str | None = None,
    ) -> str:
        branch = _branch_name(branch_hint)
        path = file_path or f"ualgo/{branch_hint.replace('/', '_')}.txt"

        if self.dry_run:
            number = self._synthetic_id("pull request", title)
            await self.add_comment(record_id, f"Pull request created: #{number}")
            return number

        await self._create_branch(branch)
        await self._put_file(path, content, branch, f"{title} (#{record_id})")

        data = await self._request(
            "POST",
            f"{self._repo_path}/pulls",
            json={
                "title": title,
                "head": branch,
                "base": self.base_branch,
                "body": f"**Related Issue:** #{record_id}\n\n**File:** `{path}`",
            },
        )
        number = str(data["number"])
        logger.info(f"Created pull request #{number} from {branch}")

        await self.add_comment(record_id, f"Pull request created: #{number}")
        return number

    async def _create_branch(self, branch: str) -> None:
        ref = await self._request(
            "GET", f"{self._repo_path}/git/ref/heads/{self.base_branch}"
        )
        try:
            await self._request(
                "POST",
                f"{self._repo_path}/git/refs",
                json={"ref": f"refs/heads/{branch}", "sha": ref["object"]["sha"]},
            )
        except CollaboratorError as e:
            # 422: branch already exists, reuse it
            if e.status_code != 422:
                raise
            logger.debug(f"Branch {branch} already exists")

    async def _put_file(self, path: str, content: str, branch: str, message: str) -> None:
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        try:
            existing = await self._request(
                "GET", f"{self._repo_path}/contents/{path}", params={"ref": branch}
            )
            if isinstance(existing, dict) and existing.get("sha"):
                payload["sha"] = existing["sha"]
        except CollaboratorError as e:
            if e.status_code != 404:
                raise

        await self._request("PUT", f"{self._repo_path}/contents/{path}", json=payload)

    async def get_approval_status(self, submission_id: str) -> bool:
        """True when at least one reviewer approved and nobody's latest review requests changes."""
        if self.dry_run:
            return True

        reviews = await self._request("GET", f"{self._repo_path}/pulls/{submission_id}/reviews")
        latest: dict[str, str] = {}
        for review in reviews:
            user = (review.get("user") or {}).get("login", "")
            state = review.get("state", "")
            if state in ("APPROVED", "CHANGES_REQUESTED", "DISMISSED"):
                latest[user] = state

        states = set(latest.values())
        return "APPROVED" in states and "CHANGES_REQUESTED" not in states

    async def add_comment(self, record_id: str, body: str) -> None:
        if self.dry_run:
            logger.info(f"DRY RUN - Would comment on #{record_id}: {body[:80]}")
            return
        await self._request(
            "POST", f"{self._repo_path}/issues/{record_id}/comments", json={"body": body}
        )


@dataclass
class TrackedRecord:
    id: str
    title: str
    body: str
    parent_id: str | None = None
    comments: list[str] = field(default_factory=list)


@dataclass
class TrackedSubmission:
    id: str
    title: str
    branch: str
    content: str
    record_id: str
    file_path: str | None = None
    approved: bool = True


class DryRunTracker(Tracker):
    """In-memory tracker. Keeps everything it is given for later inspection."""

    dry_run = True

    def __init__(self, approve_by_default: bool = True):
        self.approve_by_default = approve_by_default
        self.records: dict[str, TrackedRecord] = {}
        self.submissions: dict[str, TrackedSubmission] = {}
        self._ids = itertools.count(1)

    async def create_record(self, title: str, body: str, parent_id: str | None = None) -> str:
        record_id = str(next(self._ids))
        self.records[record_id] = TrackedRecord(record_id, title, body, parent_id)
        if parent_id is not None:
            await self.add_comment(parent_id, f"Sub-issue created: #{record_id} - {title}")
        return record_id

    async def create_artifact_submission(
        self,
        title: str,
        branch_hint: str,
        content: str,
        record_id: str,
        file_path: str | None = None,
    ) -> str:
        submission_id = str(next(self._ids))
        self.submissions[submission_id] = TrackedSubmission(
            id=submission_id,
            title=title,
            branch=_branch_name(branch_hint),
            content=content,
            record_id=record_id,
            file_path=file_path,
            approved=self.approve_by_default,
        )
        return submission_id

    async def get_approval_status(self, submission_id: str) -> bool:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise CollaboratorError(f"Unknown submission: {submission_id}", status_code=404)
        return submission.approved

    async def add_comment(self, record_id: str, body: str) -> None:
        record = self.records.get(record_id)
        if record is None:
            raise CollaboratorError(f"Unknown record: {record_id}", status_code=404)
        record.comments.append(body)
