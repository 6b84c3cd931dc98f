"""Leaf task execution for assetflow.

TransformTask binds a leaf Task to its collaborator. It resolves the input
globs, calls the collaborator, and turns whatever happens into a
TransformResult, so a failing transform never aborts the pipeline.

Every write goes through TransformContext, which refuses targets outside
the task's output directory.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path

from .config import BuildConfig
from .errors import OutputContainmentError, ToolError, TransformError, TransformIOError
from .tasks import Task
from .utils import ensure_clean_dir, is_within, resolve_globs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformContext:
    """Output scope and settings handed to a transform.

    Attributes:
        config: The build configuration.
        output_dir: Directory this transform may write into.
    """

    config: BuildConfig
    output_dir: Path

    @classmethod
    def for_config(cls, config: BuildConfig) -> TransformContext:
        return cls(config=config, output_dir=config.output_dir)

    @property
    def production(self) -> bool:
        return self.config.production

    def scoped(self, subdir: str) -> TransformContext:
        """Return a context restricted to a subdirectory of this one."""
        if not subdir:
            return self
        target = self.output_dir / subdir
        self.check_target(target)
        return replace(self, output_dir=target)

    def check_target(self, target: Path) -> Path:
        """Assert target is inside the output directory.

        Raises:
            OutputContainmentError: If it is not.
        """
        if not target.is_absolute():
            target = self.output_dir / target
        if not is_within(target, self.output_dir):
            raise OutputContainmentError(target, self.output_dir)
        return target

    def write_bytes(self, relative: str | Path, data: bytes) -> Path:
        """Write data below the output directory and return the full path."""
        target = self.check_target(Path(relative))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise TransformIOError(f"Cannot write output: {exc}", target, exc) from exc
        return target

    def write_text(self, relative: str | Path, text: str) -> Path:
        return self.write_bytes(relative, text.encode("utf-8"))

    def copy(self, source: Path, relative: str | Path) -> Path:
        target = self.check_target(Path(relative))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as exc:
            raise TransformIOError(f"Cannot copy: {exc}", source, exc) from exc
        return target

    def clean(self) -> None:
        """Empty the output directory."""
        self.check_target(self.output_dir)
        ensure_clean_dir(self.output_dir)


@dataclass
class TransformResult:
    """Outcome of one transform invocation.

    Attributes:
        outputs: Files written on success.
        error: Categorized error on failure.
    """

    outputs: list[Path] = field(default_factory=list)
    error: TransformError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, outputs: list[Path]) -> TransformResult:
        return cls(outputs=list(outputs))

    @classmethod
    def failure(cls, error: TransformError) -> TransformResult:
        return cls(error=error)


class TransformTask:
    """Executable wrapper around a leaf Task.

    Attributes:
        task: The leaf task being run.
    """

    def __init__(self, task: Task):
        if not task.is_leaf or task.transform is None:
            raise ValueError(f"Task '{task.name}' is not a leaf task")
        self.task = task

    def inputs(self, context: TransformContext) -> list[Path]:
        """Resolve the task's input patterns against the project root."""
        return resolve_globs(context.config.project_root, self.task.patterns)

    def run(self, context: TransformContext) -> TransformResult:
        """Invoke the collaborator and capture its outcome.

        Args:
            context: Build-wide context; narrowed to the task's output dir.

        Returns:
            TransformResult with outputs on success or a categorized error.
        """
        try:
            scoped = context.scoped(self.task.output)
            sources = self.inputs(context)
            logger.debug("%s: %d input file(s)", self.task.name, len(sources))
            outputs = self.task.transform(sources, scoped)
        except TransformError as exc:
            return TransformResult.failure(exc)
        except OSError as exc:
            path = Path(exc.filename) if getattr(exc, "filename", None) else None
            return TransformResult.failure(TransformIOError(str(exc), path, exc))
        except Exception as exc:
            logger.debug("%s raised", self.task.name, exc_info=True)
            return TransformResult.failure(ToolError(format_error_message(exc), None, exc))
        return TransformResult.success(outputs or [])


def format_error_message(exc: Exception) -> str:
    """Format an unexpected exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"
