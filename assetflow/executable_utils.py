"""External tool helpers for assetflow collaborators.

Functions:
    find_executable: Locate a tool on PATH or in the project's node_modules.
    run_tool: Run a tool, feeding stdin and capturing stdout as bytes.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from .errors import ToolError

logger = logging.getLogger(__name__)


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or local node_modules.

    Args:
        name: Name of the executable (e.g. 'sass', 'esbuild').
        project_root: Optional project root to search `node_modules/.bin`.

    Returns:
        Full path to the executable if found, None otherwise.
    """
    found = shutil.which(name)
    if found:
        return found

    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)

    return None


def run_tool(
    cmd: Sequence[str],
    *,
    cwd: Path | None = None,
    stdin: bytes | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[bytes]:
    """Run an external tool and return the completed process.

    A non-zero exit status is returned to the caller, which knows how to
    categorize it. Failing to start the tool at all is a ToolError.

    Args:
        cmd: Command line, executable first.
        cwd: Working directory.
        stdin: Bytes fed to the tool's standard input.
        env: Extra environment variables.
    """
    logger.debug("Running %s", " ".join(cmd))
    full_env = None
    if env:
        full_env = {**os.environ, **env}
    try:
        return subprocess.run(
            list(cmd),
            cwd=cwd,
            input=stdin,
            env=full_env,
            capture_output=True,
        )
    except OSError as exc:
        raise ToolError(f"Could not run {cmd[0]}: {exc}", None, exc) from exc
