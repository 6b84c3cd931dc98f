"""Task graph definitions for assetflow.

A task is either a leaf wrapping one transform collaborator, or a composite
(sequence or parallel group) listing child tasks by name. The TaskRegistry
stores tasks and keeps the graph acyclic at registration time.

Key classes:
- TaskKind: Leaf, Sequence or Parallel.
- Task: Immutable description of one named task.
- TaskRegistry: Registration, lookup and cycle checking.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .errors import CycleError, DuplicateTaskError, UnknownTaskError

if TYPE_CHECKING:
    from .protocols import Transform


class TaskKind(str, Enum):
    LEAF = "leaf"
    SEQUENCE = "sequence"
    PARALLEL = "parallel"


@dataclass(frozen=True)
class Task:
    """A named unit of build work.

    Attributes:
        name: Unique task name.
        kind: Leaf, Sequence or Parallel.
        children: Child task names, in order (composites only).
        transform: Collaborator invoked by the task (leaves only).
        patterns: Input glob patterns relative to the project root (leaves only).
        output: Output subdirectory relative to the build output (leaves only).
    """

    name: str
    kind: TaskKind
    children: tuple[str, ...] = ()
    transform: Transform | None = None
    patterns: tuple[str, ...] = ()
    output: str = ""

    @property
    def is_leaf(self) -> bool:
        return self.kind is TaskKind.LEAF


class TaskRegistry:
    """In-memory store of tasks forming an acyclic graph.

    Children may be registered after their parents; cycles are checked
    against whatever part of the graph is known at registration time.
    """

    def __init__(self):
        self._tasks: dict[str, Task] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def register(
        self,
        name: str,
        kind: TaskKind,
        children: Iterable[str | Task] = (),
        transform: Transform | None = None,
        patterns: Iterable[str] = (),
        output: str = "",
    ) -> Task:
        """Register a task.

        Args:
            name: Unique task name.
            kind: Kind of task.
            children: Child tasks or names (Sequence/Parallel).
            transform: Transform collaborator (Leaf).
            patterns: Input glob patterns (Leaf).
            output: Output subdirectory (Leaf).

        Returns:
            The registered Task.

        Raises:
            DuplicateTaskError: If the name is already registered.
            CycleError: If the task would (transitively) contain itself.
            ValueError: If the arguments don't fit the kind.
        """
        if name in self._tasks:
            raise DuplicateTaskError(name)

        child_names = tuple(c.name if isinstance(c, Task) else c for c in children)
        if kind is TaskKind.LEAF:
            if transform is None:
                raise ValueError(f"Leaf task '{name}' needs a transform")
            if child_names:
                raise ValueError(f"Leaf task '{name}' cannot have children")
        else:
            if transform is not None:
                raise ValueError(f"{kind.value.title()} task '{name}' cannot have a transform")
            if not child_names:
                raise ValueError(f"{kind.value.title()} task '{name}' needs children")

        self._check_cycle(name, child_names)

        task = Task(
            name=name,
            kind=kind,
            children=child_names,
            transform=transform,
            patterns=tuple(patterns),
            output=output,
        )
        self._tasks[name] = task
        return task

    def leaf(
        self,
        name: str,
        transform: Transform,
        patterns: Iterable[str] = (),
        output: str = "",
    ) -> Task:
        return self.register(
            name, TaskKind.LEAF, transform=transform, patterns=patterns, output=output
        )

    def sequence(self, name: str, *children: str | Task) -> Task:
        return self.register(name, TaskKind.SEQUENCE, children=children)

    def parallel(self, name: str, *children: str | Task) -> Task:
        return self.register(name, TaskKind.PARALLEL, children=children)

    def resolve(self, name: str) -> Task:
        """Return the task registered under name.

        Raises:
            UnknownTaskError: If no such task exists.
        """
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def validate(self) -> None:
        """Check that every child reference resolves.

        Raises:
            UnknownTaskError: For the first dangling reference.
        """
        for task in self._tasks.values():
            for child in task.children:
                if child not in self._tasks:
                    raise UnknownTaskError(child, referenced_by=task.name)

    def leaves(self, name: str) -> list[Task]:
        """Return the leaf tasks reachable from name, in execution order."""
        task = self.resolve(name)
        if task.is_leaf:
            return [task]
        found: list[Task] = []
        for child in task.children:
            for leaf in self.leaves(child):
                if leaf not in found:
                    found.append(leaf)
        return found

    def _check_cycle(self, name: str, children: tuple[str, ...]) -> None:
        # A cycle exists iff the new task is reachable from one of its children.
        for child in children:
            path = self._path_to(child, name, [name])
            if path is not None:
                raise CycleError(path)

    def _path_to(self, current: str, target: str, trail: list[str]) -> list[str] | None:
        trail = trail + [current]
        if current == target:
            return trail
        task = self._tasks.get(current)
        if task is None:
            return None
        for child in task.children:
            found = self._path_to(child, target, trail)
            if found is not None:
                return found
        return None
