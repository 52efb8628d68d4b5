"""Pipeline run model — client-side view of one workflow execution."""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any


class RunStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_RUN_STATUSES

    @classmethod
    def parse(cls, value: Any) -> "RunStatus | None":
        """Map a runtime status string onto a RunStatus, or None if unrecognized."""
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _RUN_STATUS_SYNONYMS.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None


_TERMINAL_RUN_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.ERROR}
)
_RUN_STATUS_SYNONYMS = {
    "success": "completed",
    "succeeded": "completed",
    "canceled": "cancelled",
    "in_progress": "running",
}


class StepStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> "StepStatus | None":
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _STEP_STATUS_SYNONYMS.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None


_STEP_STATUS_SYNONYMS = {
    "completed": "success",
    "succeeded": "success",
    "suspended": "pending",
    "waiting": "pending",
    "error": "failed",
}


@dataclass
class StepState:
    status: StepStatus = StepStatus.PENDING
    output: Any = None


@dataclass
class PipelineRun:
    """Unified view of a run, folded from stream frames and poll snapshots."""

    run_id: str
    status: RunStatus = RunStatus.PENDING
    active_steps: dict[str, StepState] = field(default_factory=dict)

    def apply_step(self, step_id: str, status: StepStatus, output: Any = None) -> bool:
        """Record a step transition. Returns True if the step's status changed.

        A step that reached SUCCESS keeps it; later reports of any other
        status are dropped (the output may still be filled in).
        """
        state = self.active_steps.get(step_id)
        if state is None:
            self.active_steps[step_id] = StepState(status=status, output=output)
            return True

        if output is not None and state.output is None:
            state.output = output

        if state.status == StepStatus.SUCCESS or state.status == status:
            return False

        state.status = status
        if output is not None:
            state.output = output
        return True

    def apply_status(self, status: RunStatus) -> bool:
        """Record a run-level status. Terminal statuses are final."""
        if self.status.is_terminal or self.status == status:
            return False
        self.status = status
        return True

    def step_status(self, step_id: str) -> StepStatus | None:
        state = self.active_steps.get(step_id)
        return state.status if state else None


@dataclass
class MonitorSession:
    """Mutable state of one monitoring session."""

    is_active: bool = True
    consecutive_failure_count: int = 0
    files_extracted: bool = False
    workflow_complete: bool = False
    stop_reason: str | None = None


@dataclass(frozen=True)
class Artifact:
    """A single file produced by the pipeline, relative to the project root."""

    relative_path: str
    content: bytes | str = ""

    def __post_init__(self):
        object.__setattr__(self, "relative_path", normalize_relative_path(self.relative_path))

    @property
    def data(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


def normalize_relative_path(path: str) -> str:
    """Normalize a project-relative path, rejecting anything that escapes the root."""
    cleaned = str(path).replace("\\", "/").strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if not cleaned or cleaned.startswith("/") or (len(cleaned) > 1 and cleaned[1] == ":"):
        raise ValueError(f"Not a relative path: {path!r}")

    parts = [p for p in PurePosixPath(cleaned).parts if p not in ("", ".")]
    if not parts or ".." in parts:
        raise ValueError(f"Path escapes the project root: {path!r}")
    return "/".join(parts)
