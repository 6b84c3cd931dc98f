"""Error taxonomy for assetflow.

Errors fall into three groups:
- Fatal startup errors: ConfigError and the RegistryError family
  (DuplicateTaskError, CycleError, UnknownTaskError).
- Recoverable per-task errors: TransformError and its categories
  (ParseError, TransformIOError, ToolError). These are captured in the
  TaskRun and never abort the pipeline.
- WatchError: a single watch binding could not be installed.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path


class ConfigError(Exception):
    """Configuration could not be found or is invalid.

    Attributes:
        message: Human-readable error message.
        path: Config file involved, if any.
    """

    def __init__(self, message: str, path: Path | None = None):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class RegistryError(Exception):
    """Base class for task graph registration errors."""


class DuplicateTaskError(RegistryError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Task '{name}' is already registered")


class UnknownTaskError(RegistryError):
    def __init__(self, name: str, referenced_by: str | None = None):
        self.name = name
        self.referenced_by = referenced_by
        if referenced_by:
            super().__init__(f"Task '{referenced_by}' references unknown task '{name}'")
        else:
            super().__init__(f"Unknown task '{name}'")


class CycleError(RegistryError):
    """Registering a task would make the graph cyclic.

    Attributes:
        cycle: Task names forming the cycle, first and last entries equal.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Task cycle detected: " + " -> ".join(cycle))


class ErrorKind(str, Enum):
    PARSE = "parse"
    IO = "io"
    TOOL = "tool"


class TransformError(Exception):
    """A transform collaborator failed.

    Attributes:
        message: Human-readable error message.
        source_path: Input file that caused the error, if known.
        original_error: The underlying exception, if any.
    """

    kind: ErrorKind = ErrorKind.TOOL

    def __init__(
        self,
        message: str,
        source_path: Path | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.source_path = source_path
        self.original_error = original_error
        prefix = f"{source_path}: " if source_path else ""
        super().__init__(f"{prefix}{message}")


class ParseError(TransformError):
    """Input could not be parsed (template syntax, SCSS syntax, bad image)."""

    kind = ErrorKind.PARSE


class TransformIOError(TransformError):
    """Reading an input or writing an output failed."""

    kind = ErrorKind.IO


class ToolError(TransformError):
    """An external tool is missing or exited abnormally."""

    kind = ErrorKind.TOOL


class OutputContainmentError(TransformIOError):
    """A transform tried to write outside its designated output directory."""

    def __init__(self, target: Path, output_dir: Path):
        self.target = target
        self.output_dir = output_dir
        super().__init__(f"Refusing to write {target} outside of {output_dir}")


class WatchError(Exception):
    """A filesystem watch could not be installed for a pattern."""

    def __init__(self, pattern: str, message: str):
        self.pattern = pattern
        self.message = message
        super().__init__(f"Cannot watch '{pattern}': {message}")
