"""Utility functions for assetflow.

Key functions:
    expand_braces: Expand `{a,b}` alternatives in a glob pattern.
    glob_to_regex: Compile a glob (with `**` and braces) to a regex.
    static_base: Return the directory part of a glob before any wildcard.
    resolve_globs: Find files matching glob patterns under a root.
    is_within: Check whether a path lies inside a directory.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Iterable
from pathlib import Path

_BRACE_RE = re.compile(r"\{([^{}]*)\}")
_WILDCARD_CHARS = set("*?[{")


def expand_braces(pattern: str) -> list[str]:
    """Expand brace alternatives in a glob pattern.

    Args:
        pattern: Glob pattern, possibly containing `{a,b,c}` groups.

    Returns:
        List of patterns without braces.

    Examples:
        >>> expand_braces("images/*.{png,jpg}")
        ['images/*.png', 'images/*.jpg']
    """
    match = _BRACE_RE.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return expanded


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern to a regular expression matching posix paths.

    `**/` matches zero or more directories, `*` and `?` never cross a `/`,
    and brace groups become alternations.

    Args:
        pattern: Glob pattern using forward slashes.

    Returns:
        Compiled regex anchored at both ends.
    """
    i = 0
    out: list[str] = []
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "{":
            end = pattern.find("}", i)
            if end == -1:
                out.append(re.escape(char))
            else:
                options = pattern[i + 1 : end].split(",")
                out.append("(?:" + "|".join(re.escape(o) for o in options) + ")")
                i = end
        elif char == "[":
            end = pattern.find("]", i)
            if end == -1:
                out.append(re.escape(char))
            else:
                out.append(pattern[i : end + 1])
                i = end
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(out) + "$")


def static_base(pattern: str) -> str:
    """Return the leading directory of a glob that contains no wildcards.

    Examples:
        >>> static_base("src/html/**/*.html")
        'src/html'
        >>> static_base("*.yaml")
        '.'
    """
    parts = pattern.split("/")
    base: list[str] = []
    for part in parts[:-1]:
        if _WILDCARD_CHARS & set(part):
            break
        base.append(part)
    return "/".join(base) or "."


def resolve_globs(root: Path, patterns: Iterable[str]) -> list[Path]:
    """Find files under root matching any of the patterns.

    Args:
        root: Directory the patterns are relative to.
        patterns: Glob patterns, brace alternatives allowed.

    Returns:
        Sorted, de-duplicated list of matching files.
    """
    found: set[Path] = set()
    for pattern in patterns:
        for expanded in expand_braces(pattern):
            for path in root.glob(expanded):
                if path.is_file():
                    found.add(path)
    return sorted(found)


def is_within(path: Path, directory: Path) -> bool:
    """Check whether path resolves to a location inside directory."""
    try:
        path.resolve().relative_to(directory.resolve())
    except ValueError:
        return False
    return True


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)
