"""Failure log for subtasks that did not make it through a run"""
import json
from collections import Counter
from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass
class FailureRecord:
    """One skipped or unresolved subtask"""
    session_id: str
    phase: str  # "test_generation" | "solution_search" | ...
    subtask_id: str
    error_type: str  # exception class name, or "unresolved"
    error_message: str
    artifact_kind: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FailureRecord":
        data = dict(data)
        data["timestamp"] = datetime.fromisoformat(data["timestamp"])
        return cls(**data)


class AnalyticsLogger:
    """Appends FailureRecords to a JSONL file and aggregates them"""

    def __init__(self, analytics_dir: Path | None = None):
        if analytics_dir is None:
            from ualgo.config.schema import get_analytics_dir
            analytics_dir = get_analytics_dir()

        self.analytics_dir = analytics_dir
        self.analytics_dir.mkdir(parents=True, exist_ok=True)
        self.failures_log = self.analytics_dir / "failures.jsonl"

    def log_failure(self, failure: FailureRecord) -> None:
        with open(self.failures_log, "a") as f:
            f.write(json.dumps(failure.to_dict()) + "\n")

    def _records(self) -> Iterator[dict]:
        if not self.failures_log.exists():
            return
        with open(self.failures_log, "r") as f:
            for line in f:
                if line.strip():
                    yield json.loads(line)

    def get_failure_stats(self) -> dict[str, Any]:
        by_phase: Counter = Counter()
        by_error_type: Counter = Counter()
        by_kind: Counter = Counter()
        total = 0

        for record in self._records():
            total += 1
            by_phase[record["phase"]] += 1
            by_error_type[record["error_type"]] += 1
            if record.get("artifact_kind"):
                by_kind[record["artifact_kind"]] += 1

        return {
            "total_failures": total,
            "by_phase": dict(by_phase),
            "by_error_type": dict(by_error_type),
            "by_artifact_kind": dict(by_kind),
        }

    def get_recent_failures(self, limit: int = 10) -> list[dict]:
        """Newest first"""
        if limit <= 0:
            return []
        records = list(self._records())
        return records[-limit:][::-1]

    def get_failures_by_session(self, session_id: str) -> list[FailureRecord]:
        return [
            FailureRecord.from_dict(record)
            for record in self._records()
            if record["session_id"] == session_id
        ]
