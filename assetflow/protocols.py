"""Protocol definitions for assetflow.

These describe the seams between the engine and its collaborators, so the
scheduler can run any transform and the reload coordinator can talk to any
kind of preview client.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .runs import TaskRun
    from .transform import TransformContext


@runtime_checkable
class Transform(Protocol):
    """A file-transform collaborator bound to a leaf task.

    Implementations read the given sources and write their results through
    the context, which keeps every write inside the task's output directory.
    Failures are raised as TransformError subclasses.
    """

    @abstractmethod
    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        """Transform sources into outputs.

        Args:
            sources: Input files matched by the task's patterns.
            context: Output scope and build settings.

        Returns:
            Paths of the files written.
        """
        ...


@runtime_checkable
class RunListener(Protocol):
    """Receives triggered task runs once they reach a terminal state."""

    @abstractmethod
    def __call__(self, run: TaskRun) -> None: ...


@runtime_checkable
class PreviewClient(Protocol):
    """A connected preview client (a websocket connection in practice)."""

    @abstractmethod
    async def send(self, message: str) -> None: ...
