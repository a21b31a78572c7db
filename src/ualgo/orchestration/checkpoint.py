"""Per-phase snapshots of a workflow run"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """WorkflowState snapshot taken after a phase finished"""
    session_id: str
    sequence: int
    phase: str  # Phase value, e.g. "decomposition", "completed", "failed"
    timestamp: datetime
    state_snapshot: dict[str, Any]
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return f"{self.sequence:02d}_{self.phase}.json"

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "sequence": self.sequence,
            "phase": self.phase,
            "timestamp": self.timestamp.isoformat(),
            "state_snapshot": self.state_snapshot,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Checkpoint":
        return cls(
            session_id=data["session_id"],
            sequence=int(data.get("sequence", 0)),
            phase=data["phase"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            state_snapshot=data.get("state_snapshot", {}),
            data=data.get("data", {}),
        )

    @classmethod
    def from_file(cls, path: Path) -> "Checkpoint":
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))


class CheckpointManager:
    """Writes one JSON file per checkpoint into a session directory"""

    def __init__(self, checkpoint_dir: Path):
        self.checkpoint_dir = checkpoint_dir
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)

    def next_sequence(self) -> int:
        return len(self._files()) + 1

    def save_checkpoint(self, checkpoint: Checkpoint) -> Path:
        filepath = self.checkpoint_dir / checkpoint.filename
        with open(filepath, "w") as f:
            json.dump(checkpoint.to_dict(), f, indent=2, default=str)
        logger.debug(f"Checkpoint written: {filepath}")
        return filepath

    def load_checkpoint(self, phase: str | None = None) -> Checkpoint | None:
        """Latest checkpoint, optionally restricted to one phase"""
        files = self._files(phase)
        if not files:
            return None
        return Checkpoint.from_file(files[-1])

    def list_checkpoints(self) -> list[Checkpoint]:
        return [Checkpoint.from_file(path) for path in self._files()]

    def _files(self, phase: str | None = None) -> list[Path]:
        pattern = f"*_{phase}.json" if phase else "*.json"
        return sorted(self.checkpoint_dir.glob(pattern))
