"""Filesystem watching for assetflow.

The Watcher maps filesystem events to the tasks that must rerun.

- One recursive watchdog watch is installed per distinct base directory of
  the binding globs.
- Events are debounced per path: editors often write a file several times
  per save, and only the last event inside the window produces a trigger.
- Each settled path becomes a TriggerBatch naming every task bound to a
  matching pattern. Batches are consumed through `batches()`.

Key classes:
- WatchBinding: Glob pattern plus the tasks it triggers.
- TriggerBatch: Tasks to rerun for one changed path.
- Watcher: Observer lifecycle, debouncing and matching.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from re import Pattern

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatchError
from .utils import expand_braces, glob_to_regex, is_within, static_base

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class WatchBinding:
    """Associates a glob (relative to the project root) with tasks.

    Attributes:
        pattern: Glob pattern, `**` and brace alternatives allowed.
        tasks: Names of the tasks to rerun on a match.
    """

    pattern: str
    tasks: tuple[str, ...]
    regex: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "regex", glob_to_regex(self.pattern))

    def matches(self, relative: str) -> bool:
        return self.regex.match(relative) is not None

    @property
    def bases(self) -> list[str]:
        return sorted({static_base(p) for p in expand_braces(self.pattern)})


@dataclass(frozen=True)
class TriggerBatch:
    """Tasks to rerun because a path changed."""

    tasks: frozenset[str]
    path: Path


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if raw:
                path = raw.decode() if isinstance(raw, bytes) else raw
                self.watcher.record(Path(path))


class Watcher:
    """Watches binding globs and yields debounced trigger batches.

    Attributes:
        root: Directory the binding patterns are relative to.
        debounce: Seconds a path must stay quiet before it triggers.
        ignore: Directories whose events are dropped (e.g. the output dir).
        bindings: Active bindings.
        disabled: Bindings that could not be watched.
    """

    def __init__(
        self,
        root: Path,
        debounce: float = 0.1,
        ignore: Iterable[Path] = (),
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.root = root
        self.debounce = debounce
        self.ignore = tuple(ignore)
        self.bindings: tuple[WatchBinding, ...] = ()
        self.disabled: list[WatchBinding] = []
        self._observer_factory = observer_factory
        self._observer = None
        self._lock = threading.Lock()
        self._timers: dict[Path, threading.Timer] = {}
        self._queue: queue.Queue = queue.Queue()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def watch(self, bindings: Iterable[WatchBinding]) -> None:
        """Start monitoring the given bindings.

        Bindings whose base directory can't be watched are logged and
        disabled; the rest keep working.
        """
        with self._lock:
            if self._running:
                raise RuntimeError("Watcher is already running")
            self.bindings = tuple(bindings)
            self.disabled = []
            self._queue = queue.Queue()

            handler = _ChangeHandler(self)
            observer = self._observer_factory()
            scheduled: set[Path] = set()
            for binding in self.bindings:
                try:
                    for base in binding.bases:
                        directory = (self.root / base).resolve()
                        if directory in scheduled:
                            continue
                        self._schedule(observer, handler, binding, directory)
                        scheduled.add(directory)
                except WatchError as exc:
                    logger.warning("%s; binding disabled", exc)
                    self.disabled.append(binding)
            observer.start()
            self._observer = observer
            self._running = True
        logger.info("Watching %d pattern(s)", len(self.bindings) - len(self.disabled))

    def stop(self) -> None:
        """Stop monitoring and release the observer. Safe to call repeatedly."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
        self._queue.put(_STOP)
        logger.debug("Watcher stopped")

    def batches(self) -> Iterator[TriggerBatch]:
        """Yield trigger batches until the watcher stops."""
        source = self._queue
        while True:
            item = source.get()
            if item is _STOP:
                return
            yield item

    def tasks_for(self, path: Path) -> set[str]:
        """Return the names of tasks bound to patterns matching path."""
        try:
            relative = path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return set()
        names: set[str] = set()
        for binding in self.bindings:
            if binding in self.disabled:
                continue
            if binding.matches(relative):
                names.update(binding.tasks)
        return names

    def record(self, path: Path) -> None:
        """Note an event for path, restarting its debounce timer."""
        if any(is_within(path, ignored) for ignored in self.ignore):
            return
        if "node_modules" in path.parts:
            return
        with self._lock:
            if not self._running:
                return
            previous = self._timers.pop(path, None)
            if previous is not None:
                previous.cancel()
            timer = threading.Timer(self.debounce, self._flush, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _flush(self, path: Path) -> None:
        with self._lock:
            if not self._running:
                return
            if self._timers.get(path) is not threading.current_thread():
                return
            del self._timers[path]
        tasks = self.tasks_for(path)
        if not tasks:
            logger.debug("No task bound to %s", path)
            return
        logger.info("Changed %s -> %s", path.name, ", ".join(sorted(tasks)))
        self._queue.put(TriggerBatch(tasks=frozenset(tasks), path=path))

    def _schedule(self, observer, handler, binding: WatchBinding, directory: Path) -> None:
        if not directory.is_dir():
            raise WatchError(binding.pattern, f"{directory} is not a directory")
        try:
            observer.schedule(handler, str(directory), recursive=True)
        except OSError as exc:
            raise WatchError(binding.pattern, str(exc)) from exc
