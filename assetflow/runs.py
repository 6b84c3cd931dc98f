"""Task run records for assetflow.

A TaskRun is one execution attempt of a task. Leaf runs carry the transform
error or the written outputs; composite runs carry their child runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from .errors import TransformError
from .tasks import TaskKind


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED)


@dataclass
class TaskRun:
    """One execution of a task.

    Attributes:
        task: Name of the task.
        kind: Kind of the task.
        state: Current run state.
        started_at: When the run started.
        finished_at: When the run reached a terminal state.
        error: Transform error of a failed leaf run.
        outputs: Files written by a leaf run.
        children: Child runs of a composite, in execution order.
        failed_child: Name of the child that halted a sequence.
        cause: Changed path that triggered the run, if any.
    """

    task: str
    kind: TaskKind
    state: RunState = RunState.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: TransformError | None = None
    outputs: list[Path] = field(default_factory=list)
    children: list[TaskRun] = field(default_factory=list)
    failed_child: str | None = None
    cause: Path | None = None

    def start(self) -> None:
        self.state = RunState.RUNNING
        self.started_at = datetime.now(timezone.utc)

    def finish(self, succeeded: bool) -> None:
        self.state = RunState.SUCCEEDED if succeeded else RunState.FAILED
        self.finished_at = datetime.now(timezone.utc)

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state is RunState.FAILED

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def leaf_runs(self) -> list[TaskRun]:
        """Return all leaf runs below (and including) this run."""
        if self.kind is TaskKind.LEAF:
            return [self]
        found: list[TaskRun] = []
        for child in self.children:
            found.extend(child.leaf_runs())
        return found

    def failures(self) -> list[TaskRun]:
        """Return every failed leaf run, in execution order."""
        return [run for run in self.leaf_runs() if run.failed]

    def describe_failure(self) -> str:
        """Format a failed leaf run as `task [kind] message`."""
        if self.error is None:
            return f"{self.task}: failed"
        return f"{self.task} [{self.error.kind.value}] {self.error}"
