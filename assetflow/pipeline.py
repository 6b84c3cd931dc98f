"""Standard asset pipeline wiring for assetflow.

Builds the task graph and watch bindings for a conventional source tree:

    <src>/html/*.html            -> <prod>/            (html)
    <src>/scss/app.scss          -> <prod>/css/        (styles)
    <src>/js/app.js              -> <prod>/js/         (scripts)
    <src>/images/**/*.{...}      -> <prod>/images/     (images)
    vendor files                 -> <prod>/js/vendor/  (vendor)

`build` cleans the output directory (and, in production, the image cache)
and then runs the asset tasks as one parallel group.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from .config import BuildConfig
from .processors import (
    CleanOutput,
    ClearCache,
    ImageCache,
    ImageOptimizer,
    ScriptBundler,
    StyleCompiler,
    TemplateRenderer,
    ToolOptions,
    VendorCopier,
)
from .tasks import TaskRegistry
from .watcher import WatchBinding

IMAGE_GLOB = "images/**/*.{png,jpg,jpeg,gif,svg}"

BUILD_TASK = "build"
ASSETS_TASK = "assets"


@dataclass
class Pipeline:
    """A task graph plus the bindings that retrigger it.

    Attributes:
        registry: Registered tasks.
        bindings: Watch bindings used in watch mode.
        build_task: Name of the task building everything.
    """

    registry: TaskRegistry
    bindings: list[WatchBinding]
    build_task: str = BUILD_TASK


def create_pipeline(config: BuildConfig) -> Pipeline:
    """Register the standard tasks for a configuration.

    Args:
        config: Resolved build configuration.

    Returns:
        The Pipeline with a validated registry.
    """
    src = PurePosixPath(config.src).as_posix()
    options = ToolOptions.from_config(config)
    cache = ImageCache(config.cache_path / "images")
    registry = TaskRegistry()

    registry.leaf("clean", CleanOutput())
    registry.leaf("clean-cache", ClearCache(cache))
    registry.leaf(
        "html",
        TemplateRenderer(config.src_dir / "html", config.data_path),
        patterns=[f"{src}/html/*.html"],
    )
    registry.leaf(
        "styles",
        StyleCompiler(options),
        patterns=[f"{src}/scss/app.scss"],
        output="css",
    )
    registry.leaf(
        "scripts",
        ScriptBundler(options),
        patterns=[f"{src}/js/app.js"],
        output="js",
    )
    registry.leaf(
        "images",
        ImageOptimizer(config.src_dir / "images", cache),
        patterns=[f"{src}/{IMAGE_GLOB}"],
        output="images",
    )

    asset_tasks = ["html", "styles", "scripts", "images"]
    if config.vendor:
        registry.leaf(
            "vendor",
            VendorCopier(config.project_root, config.vendor),
            output="js/vendor",
        )
        asset_tasks.append("vendor")
    registry.parallel(ASSETS_TASK, *asset_tasks)

    steps = ["clean"]
    if config.production:
        steps.append("clean-cache")
    steps.append(ASSETS_TASK)
    registry.sequence(BUILD_TASK, *steps)
    registry.validate()

    data_binding = []
    if config.data_file:
        data_binding = [
            WatchBinding(PurePosixPath(config.data_file).as_posix(), ("html",))
        ]
    bindings = [
        WatchBinding(f"{src}/html/**/*.html", ("html",)),
        WatchBinding(f"{src}/html/**/*.json", ("html",)),
        *data_binding,
        WatchBinding(f"{src}/scss/**/*.scss", ("styles",)),
        WatchBinding(f"{src}/js/**/*.js", ("scripts",)),
        WatchBinding(f"{src}/{IMAGE_GLOB}", ("images",)),
    ]
    return Pipeline(registry=registry, bindings=bindings)
