"""Task scheduler for assetflow.

The Scheduler executes task graphs and reacts to watch triggers.

Composition:
- Sequence runs children in order and stops at the first failure.
- Parallel runs children on a thread pool and collects every failure.

Triggered reruns:
- Each task moves through Idle -> Queued -> Running -> Idle.
- A trigger for a Running task only sets a rerun flag; when the run ends,
  one fresh run starts. Bursts of triggers therefore cost at most one
  in-flight run plus one pending rerun per task.
- Runs of the same task never overlap: each task has its own lock, taken
  by both run_once and triggered runs.
- Listeners see a triggered run after its terminal state is recorded and
  before the next run of that task can start.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from pathlib import Path

from .protocols import RunListener
from .runs import TaskRun
from .tasks import Task, TaskKind, TaskRegistry
from .transform import TransformContext, TransformTask

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"


class Scheduler:
    """Runs task graphs once or in response to triggers.

    Attributes:
        registry: Task graph to run.
        context: Build-wide transform context.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        context: TransformContext,
        max_workers: int | None = None,
    ):
        self.registry = registry
        self.context = context
        self._lock = threading.Lock()
        self._task_locks: dict[str, threading.Lock] = {}
        self._states: dict[str, TaskState] = {}
        self._rerun: set[str] = set()
        self._causes: dict[str, Path] = {}
        self._drivers: dict[str, Future] = {}
        self._latest: dict[str, TaskRun] = {}
        self._listeners: list[RunListener] = []
        self._accepting = True
        self._dispatch = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="assetflow-trigger"
        )

    def add_listener(self, listener: RunListener) -> None:
        """Register a callable receiving every triggered run when it ends."""
        self._listeners.append(listener)

    def state(self, name: str) -> TaskState:
        with self._lock:
            return self._states.get(name, TaskState.IDLE)

    def latest_run(self, name: str) -> TaskRun | None:
        with self._lock:
            return self._latest.get(name)

    def run_once(self, name: str) -> TaskRun:
        """Run a task and its children, blocking until done.

        Args:
            name: Task to run.

        Returns:
            The finished TaskRun.

        Raises:
            UnknownTaskError: If the task or one of its children is unknown.
        """
        task = self.registry.resolve(name)
        run, _ = self._execute(task, driven=False)
        return run

    def run_for_trigger(self, names: Iterable[str], cause: Path | None = None) -> None:
        """Schedule reruns for the named tasks without waiting for them.

        Args:
            names: Tasks to rerun.
            cause: Changed path that triggered the rerun.

        Raises:
            UnknownTaskError: If any name is unknown; nothing is scheduled then.
        """
        tasks = [self.registry.resolve(name) for name in names]
        with self._lock:
            if not self._accepting:
                logger.debug("Scheduler stopped; ignoring trigger for %s", names)
                return
            for task in tasks:
                name = task.name
                if cause is not None:
                    self._causes[name] = cause
                state = self._states.get(name, TaskState.IDLE)
                if state is TaskState.RUNNING:
                    self._rerun.add(name)
                elif name not in self._drivers:
                    self._start_driver(name)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no triggered runs are queued or running.

        Returns:
            True if idle, False if the timeout expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._drivers.values())
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(pending, timeout=remaining)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting triggers; in-flight runs are allowed to finish."""
        with self._lock:
            self._accepting = False
            self._rerun.clear()
        self._dispatch.shutdown(wait=wait)

    # Triggered runs

    def _start_driver(self, name: str) -> None:
        # Caller holds self._lock.
        self._states[name] = TaskState.QUEUED
        future = self._dispatch.submit(self._drive, name)
        self._drivers[name] = future
        future.add_done_callback(self._driver_done)

    def _drive(self, name: str) -> TaskRun:
        task = self.registry.resolve(name)
        while True:
            with self._lock:
                cause = self._causes.pop(name, None)
            run, again = self._execute(task, driven=True, cause=cause)
            if not again:
                return run

    @staticmethod
    def _driver_done(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Triggered run crashed: %s", exc, exc_info=exc)

    # Execution

    def _task_lock(self, name: str) -> threading.Lock:
        with self._lock:
            return self._task_locks.setdefault(name, threading.Lock())

    def _execute(
        self, task: Task, driven: bool, cause: Path | None = None
    ) -> tuple[TaskRun, bool]:
        """Run a task under its lock.

        Returns:
            The finished run, and whether a driven run must go again.
        """
        with self._task_lock(task.name):
            with self._lock:
                self._states[task.name] = TaskState.RUNNING
            try:
                run = TaskRun(task=task.name, kind=task.kind, cause=cause)
                run.start()
                if task.kind is TaskKind.LEAF:
                    self._run_leaf(task, run)
                elif task.kind is TaskKind.SEQUENCE:
                    self._run_sequence(task, run)
                else:
                    self._run_parallel(task, run)
            except BaseException:
                with self._lock:
                    self._rerun.discard(task.name)
                    self._states[task.name] = TaskState.IDLE
                    if driven:
                        self._drivers.pop(task.name, None)
                raise
            with self._lock:
                self._latest[task.name] = run
            self._log_run(run)
            if driven:
                self._publish(run)
            again = self._finish(task.name, driven)
        return run, again

    def _finish(self, name: str, driven: bool) -> bool:
        # Runs under the task's lock, so no other run of it can start here.
        with self._lock:
            if not driven and name in self._drivers:
                # A triggered run is already waiting for this task.
                self._rerun.discard(name)
                self._states[name] = TaskState.QUEUED
                return False
            if name in self._rerun and self._accepting:
                self._rerun.discard(name)
                if driven:
                    self._states[name] = TaskState.QUEUED
                    return True
                self._start_driver(name)
                return False
            self._rerun.discard(name)
            self._states[name] = TaskState.IDLE
            if driven:
                self._drivers.pop(name, None)
            return False

    def _run_leaf(self, task: Task, run: TaskRun) -> None:
        logger.info("Starting '%s'...", task.name)
        result = TransformTask(task).run(self.context)
        run.outputs = result.outputs
        run.error = result.error
        run.finish(result.ok)

    def _run_sequence(self, task: Task, run: TaskRun) -> None:
        for child_name in task.children:
            child, _ = self._execute(self.registry.resolve(child_name), driven=False)
            run.children.append(child)
            if child.failed:
                run.failed_child = child_name
                break
        run.finish(run.failed_child is None)

    def _run_parallel(self, task: Task, run: TaskRun) -> None:
        children = [self.registry.resolve(name) for name in task.children]
        with ThreadPoolExecutor(
            max_workers=len(children), thread_name_prefix=f"assetflow-{task.name}"
        ) as pool:
            futures = [pool.submit(self._execute, child, False) for child in children]
            run.children = [future.result()[0] for future in futures]
        run.finish(all(child.succeeded for child in run.children))

    def _publish(self, run: TaskRun) -> None:
        for listener in list(self._listeners):
            try:
                listener(run)
            except Exception:
                logger.exception("Run listener failed for '%s'", run.task)

    @staticmethod
    def _log_run(run: TaskRun) -> None:
        if run.kind is not TaskKind.LEAF:
            logger.debug("'%s' %s", run.task, run.state.value)
        elif run.succeeded:
            logger.info("Finished '%s' after %.2fs", run.task, run.duration or 0.0)
        else:
            logger.error("Failed '%s': %s", run.task, run.describe_failure())
