"""Configuration loading for assetflow.

The configuration is a YAML mapping read once at startup and turned into an
immutable BuildConfig, which is handed explicitly to every component.

Lookup order:
1. An explicit path passed on the command line.
2. `assetflow.yaml` in the project root.
3. `assetflow.default.yaml` in the project root (with a warning).

Missing configuration is the one hard failure: ConfigError is raised and the
CLI exits non-zero before any task runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

PROJECT_CONFIG = "assetflow.yaml"
DEFAULT_CONFIG = "assetflow.default.yaml"

DEFAULTS: dict[str, Any] = {
    "sass_include": [],
    "compatibility": ["last 2 versions"],
    "vendor": [],
    "cache_dir": ".cache/assetflow",
    "server": {"port": 3000},
    "watch": {"debounce_ms": 100},
}


@dataclass(frozen=True)
class BuildConfig:
    """Resolved build configuration.

    Attributes:
        project_root: Directory all relative paths are resolved against.
        src: Source directory (relative to project_root).
        prod: Output directory (relative to project_root).
        sass_include: Extra load paths for the stylesheet compiler.
        compatibility: Browserslist queries for the autoprefixer.
        data_file: JSON document passed to templates.
        vendor: Files copied verbatim into the scripts output directory.
        cache_dir: Directory holding the image optimization cache.
        port: Preview HTTP port.
        ws_port: Live reload websocket port.
        debounce: Watch debounce window in seconds.
        production: Minify output and skip source maps.
        source: Config file this was loaded from.
    """

    project_root: Path
    src: str
    prod: str
    sass_include: tuple[str, ...] = ()
    compatibility: tuple[str, ...] = ("last 2 versions",)
    data_file: str | None = None
    vendor: tuple[str, ...] = ()
    cache_dir: str = ".cache/assetflow"
    port: int = 3000
    ws_port: int = 3001
    debounce: float = 0.1
    production: bool = False
    source: Path | None = field(default=None, compare=False)

    @property
    def src_dir(self) -> Path:
        return self.project_root / self.src

    @property
    def output_dir(self) -> Path:
        return self.project_root / self.prod

    @property
    def cache_path(self) -> Path:
        return self.project_root / self.cache_dir

    @property
    def data_path(self) -> Path:
        if self.data_file:
            return self.project_root / self.data_file
        return self.src_dir / "html" / "data" / "index.json"


def find_config(project_root: Path, explicit: Path | None = None) -> Path:
    """Locate the configuration file.

    Args:
        project_root: Root directory of the project.
        explicit: Optional path given by the user.

    Returns:
        Path to the configuration file.

    Raises:
        ConfigError: If no configuration file exists.
    """
    if explicit is not None:
        path = explicit if explicit.is_absolute() else project_root / explicit
        if not path.is_file():
            raise ConfigError("config file does not exist", path)
        return path

    custom = project_root / PROJECT_CONFIG
    if custom.is_file():
        logger.info("Loading config from %s", custom.name)
        return custom

    default = project_root / DEFAULT_CONFIG
    if default.is_file():
        logger.warning(
            "Loading %s. Copy it to %s and adjust it for this project.",
            DEFAULT_CONFIG,
            PROJECT_CONFIG,
        )
        return default

    raise ConfigError(
        f"No config file found; expected {PROJECT_CONFIG} or {DEFAULT_CONFIG} "
        f"in {project_root}"
    )


def load_config(
    project_root: Path,
    config_path: Path | None = None,
    production: bool = False,
) -> BuildConfig:
    """Load and validate the build configuration.

    Args:
        project_root: Root directory of the project.
        config_path: Optional explicit config file.
        production: Whether this is a production build.

    Returns:
        The resolved BuildConfig.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    path = find_config(project_root, config_path)
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML: {exc}", path) from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config: {exc}", path) from exc
    if not isinstance(loaded, dict):
        raise ConfigError("Top level of the config must be a mapping", path)
    return config_from_mapping(loaded, project_root, production=production, source=path)


def config_from_mapping(
    raw: dict[str, Any],
    project_root: Path,
    production: bool = False,
    source: Path | None = None,
) -> BuildConfig:
    """Build a BuildConfig from an already-parsed mapping."""
    merged = {**DEFAULTS, **raw}

    paths = merged.get("paths")
    if not isinstance(paths, dict):
        raise ConfigError("Missing 'paths' mapping", source)
    src = paths.get("src")
    prod = paths.get("prod") or paths.get("dist")
    if not src:
        raise ConfigError("Missing 'paths.src'", source)
    if not prod:
        raise ConfigError("Missing 'paths.prod' (or 'paths.dist')", source)
    src = _relative_path(src, "paths.src", source)
    prod = _relative_path(prod, "paths.prod", source)
    data = merged.get("data")
    if data is not None:
        data = _relative_path(data, "data", source)

    server = merged.get("server") or {}
    watch = merged.get("watch") or {}
    try:
        port = int(server.get("port", 3000))
        ws_port = int(server.get("ws_port", port + 1))
        debounce = float(watch.get("debounce_ms", 100)) / 1000.0
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid server or watch setting: {exc}", source) from exc

    return BuildConfig(
        project_root=project_root,
        src=src,
        prod=prod,
        sass_include=_string_tuple(merged, "sass_include", source),
        compatibility=_string_tuple(merged, "compatibility", source),
        data_file=data,
        vendor=_string_tuple(merged, "vendor", source),
        cache_dir=str(merged.get("cache_dir")),
        port=port,
        ws_port=ws_port,
        debounce=debounce,
        production=production,
        source=source,
    )


def _string_tuple(raw: dict[str, Any], key: str, source: Path | None) -> tuple[str, ...]:
    value = raw.get(key) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list", source)
    return tuple(str(item) for item in value)


def _relative_path(value: Any, key: str, source: Path | None) -> str:
    """Normalise a project-relative path setting to posix form."""
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a path string", source)
    path = PurePosixPath(value.replace("\\", "/"))
    if path.is_absolute() or PureWindowsPath(value).is_absolute():
        raise ConfigError(f"'{key}' must be relative to the project root", source)
    return path.as_posix()
