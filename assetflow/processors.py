"""Default transform collaborators for assetflow.

Each collaborator handles one kind of asset and is bound to a leaf task.
They share a calling convention (see protocols.Transform): take the matched
source files and a TransformContext, write through the context, return the
written paths, and raise a categorized TransformError on failure.

Key classes:
- TemplateRenderer: Renders Jinja2 page templates to HTML.
- StyleCompiler: Compiles SCSS with the sass CLI, then autoprefixes.
- ScriptBundler: Bundles scripts with esbuild, or minifies with rjsmin.
- ImageOptimizer: Optimizes images with Pillow behind a content cache.
- VendorCopier: Copies prebuilt vendor files.
- CleanOutput / ClearCache: Housekeeping transforms.

The module-level functions (render, compile_styles, bundle_scripts,
optimize_image) are the bare collaborators the classes wrap.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)
from PIL import Image, UnidentifiedImageError
from rjsmin import jsmin

from .config import BuildConfig
from .errors import ParseError, ToolError, TransformIOError
from .executable_utils import find_executable, run_tool
from .transform import TransformContext
from .utils import ensure_clean_dir

logger = logging.getLogger(__name__)

# dart-sass exits with 65 on stylesheet compilation errors.
SASS_COMPILE_ERROR = 65


@dataclass(frozen=True)
class ToolOptions:
    """Options shared by the style and script collaborators.

    Attributes:
        project_root: Root used to find tools in node_modules.
        production: Minify and drop source maps.
        include_paths: Extra load paths for the stylesheet compiler.
        compatibility: Browserslist queries for the autoprefixer.
    """

    project_root: Path
    production: bool = False
    include_paths: tuple[Path, ...] = ()
    compatibility: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: BuildConfig) -> ToolOptions:
        return cls(
            project_root=config.project_root,
            production=config.production,
            include_paths=tuple(config.project_root / p for p in config.sass_include),
            compatibility=config.compatibility,
        )


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise TransformIOError(f"Cannot read input: {exc}", path, exc) from exc


# --- Templates ---


def load_template_data(path: Path) -> dict[str, Any]:
    """Load the JSON document passed to every template.

    A missing file yields an empty context.
    """
    if not path.exists():
        logger.debug("No template data at %s", path)
        return {}
    try:
        payload = json.loads(_read_bytes(path).decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(f"Invalid template data: {exc}", path, exc) from exc
    if not isinstance(payload, dict):
        raise ParseError("Template data must be a JSON object", path)
    return payload


def render(env: Environment, template_name: str, data: dict[str, Any]) -> str:
    """Render one template with the given data context.

    Raises:
        ParseError: On template syntax errors.
        TransformIOError: When an included template is missing.
    """
    try:
        return env.get_template(template_name).render(**data)
    except TemplateSyntaxError as exc:
        source = Path(exc.filename) if exc.filename else None
        raise ParseError(
            f"Template syntax error on line {exc.lineno}: {exc.message}", source, exc
        ) from exc
    except TemplateNotFound as exc:
        raise TransformIOError(f"Template not found: {exc.name}", None, exc) from exc


class TemplateRenderer:
    """Renders top-level page templates into the output root.

    Templates are looked up relative to the templates directory, so pages can
    extend layouts and include partials kept in subdirectories.
    """

    def __init__(self, templates_dir: Path, data_path: Path):
        self.templates_dir = templates_dir
        self.data_path = data_path

    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        data = load_template_data(self.data_path)
        env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        outputs = []
        for source in sources:
            name = source.relative_to(self.templates_dir).as_posix()
            html = render(env, name, data)
            outputs.append(context.write_text(name, html))
        return outputs


# --- Styles ---


def compile_styles(entry: Path, options: ToolOptions) -> bytes:
    """Compile a stylesheet entry point to CSS.

    Plain `.css` entries are passed through; anything else goes through the
    sass CLI. The result is autoprefixed when the postcss CLI is available.

    Raises:
        ParseError: On stylesheet syntax errors.
        ToolError: When the compiler is missing or crashes.
    """
    if entry.suffix.lower() == ".css":
        css = _read_bytes(entry)
    else:
        sass_bin = find_executable("sass", options.project_root)
        if not sass_bin:
            raise ToolError(
                "sass CLI not found. Install with `npm install -D sass`.", entry
            )
        cmd = [sass_bin]
        for include in options.include_paths:
            cmd.append(f"--load-path={include}")
        if options.production:
            cmd += ["--style=compressed", "--no-source-map"]
        else:
            cmd += ["--embed-source-map"]
        cmd.append(str(entry))
        result = run_tool(cmd, cwd=options.project_root)
        message = result.stderr.decode("utf-8", "replace").strip()
        if result.returncode == SASS_COMPILE_ERROR:
            raise ParseError(message or "Stylesheet compilation failed", entry)
        if result.returncode != 0:
            raise ToolError(message or f"sass exited with {result.returncode}", entry)
        css = result.stdout
    return autoprefix(css, options, entry)


def autoprefix(css: bytes, options: ToolOptions, entry: Path | None = None) -> bytes:
    """Add vendor prefixes for the configured browsers via postcss."""
    postcss_bin = find_executable("postcss", options.project_root)
    if not postcss_bin:
        logger.debug("postcss not found; skipping autoprefixer")
        return css
    cmd = [postcss_bin, "--use", "autoprefixer"]
    if options.production:
        cmd.append("--no-map")
    env = {"BROWSERSLIST": ", ".join(options.compatibility)} if options.compatibility else None
    result = run_tool(cmd, cwd=options.project_root, stdin=css, env=env)
    if result.returncode != 0:
        message = result.stderr.decode("utf-8", "replace").strip()
        raise ToolError(message or "autoprefixer failed", entry)
    return result.stdout


class StyleCompiler:
    def __init__(self, options: ToolOptions):
        self.options = options

    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        outputs = []
        for entry in sources:
            css = compile_styles(entry, self.options)
            outputs.append(context.write_bytes(entry.with_suffix(".css").name, css))
        return outputs


# --- Scripts ---


def bundle_scripts(entry: Path, options: ToolOptions) -> bytes:
    """Bundle a script entry point and its imports into one file.

    Uses esbuild when available. Without it the entry is emitted on its own
    (imports are not followed), minified with rjsmin in production.

    Raises:
        ToolError: When the bundler fails.
    """
    esbuild_bin = find_executable("esbuild", options.project_root)
    if not esbuild_bin:
        logger.warning("esbuild not found; emitting %s without bundling", entry.name)
        source = _read_bytes(entry).decode("utf-8")
        if options.production:
            source = jsmin(source)
        return source.encode("utf-8")

    cmd = [esbuild_bin, str(entry), "--bundle", "--format=iife", "--log-level=error"]
    if options.production:
        cmd.append("--minify")
    else:
        cmd.append("--sourcemap=inline")
    result = run_tool(cmd, cwd=options.project_root)
    if result.returncode != 0:
        message = result.stderr.decode("utf-8", "replace").strip()
        raise ToolError(message or f"esbuild exited with {result.returncode}", entry)
    return result.stdout


class ScriptBundler:
    def __init__(self, options: ToolOptions):
        self.options = options

    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        outputs = []
        for entry in sources:
            js = bundle_scripts(entry, self.options)
            outputs.append(context.write_bytes(entry.name, js))
        return outputs


# --- Images ---


def optimize_image(data: bytes) -> bytes:
    """Losslessly re-encode PNG, JPEG and GIF data, keeping the smaller result.

    Other formats (including SVG, which Pillow cannot read) are returned
    unchanged.

    Raises:
        ParseError: If the data looks like a raster image but can't be decoded.
    """
    if data.lstrip().startswith(b"<"):
        # SVG/XML markup
        return data
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            out = io.BytesIO()
            if fmt == "PNG":
                img.save(out, format="PNG", optimize=True)
            elif fmt == "JPEG":
                img.save(out, format="JPEG", optimize=True, progressive=True, quality="keep")
            elif fmt == "GIF":
                img.save(
                    out,
                    format="GIF",
                    optimize=True,
                    interlace=True,
                    save_all=getattr(img, "is_animated", False),
                )
            else:
                return data
    except UnidentifiedImageError as exc:
        raise ParseError(f"Unrecognized image data: {exc}", None, exc) from exc
    except OSError as exc:
        raise ParseError(f"Corrupt image: {exc}", None, exc) from exc
    optimized = out.getvalue()
    return optimized if len(optimized) < len(data) else data


class ImageCache:
    """Content-addressed store of optimized images.

    Attributes:
        directory: Where cached results live.
    """

    def __init__(self, directory: Path):
        self.directory = directory

    @staticmethod
    def key(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def _path(self, data: bytes) -> Path:
        return self.directory / self.key(data)

    def get(self, data: bytes) -> bytes | None:
        path = self._path(data)
        try:
            return path.read_bytes()
        except OSError:
            return None

    def put(self, data: bytes, optimized: bytes) -> None:
        path = self._path(data)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(optimized)
        except OSError as exc:
            logger.warning("Could not write image cache entry %s: %s", path, exc)

    def clear(self) -> None:
        if self.directory.exists():
            ensure_clean_dir(self.directory)


class ImageOptimizer:
    """Optimizes images, preserving their layout below the images directory."""

    def __init__(self, images_dir: Path, cache: ImageCache | None = None):
        self.images_dir = images_dir
        self.cache = cache

    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        outputs = []
        hits = 0
        for source in sources:
            data = _read_bytes(source)
            optimized = self.cache.get(data) if self.cache else None
            if optimized is None:
                try:
                    optimized = optimize_image(data)
                except ParseError as exc:
                    exc.source_path = source
                    raise
                if self.cache:
                    self.cache.put(data, optimized)
            else:
                hits += 1
            try:
                rel = source.relative_to(self.images_dir)
            except ValueError:
                rel = Path(source.name)
            outputs.append(context.write_bytes(rel, optimized))
        if hits:
            logger.debug("Image cache hits: %d/%d", hits, len(sources))
        return outputs


# --- Housekeeping ---


class VendorCopier:
    """Copies prebuilt vendor files (e.g. jquery.min.js) unchanged."""

    def __init__(self, project_root: Path, files: tuple[str, ...]):
        self.project_root = project_root
        self.files = files

    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        outputs = []
        for name in self.files:
            source = self.project_root / name
            if not source.is_file():
                raise TransformIOError("Vendor file not found", source)
            outputs.append(context.copy(source, source.name))
        return outputs


class CleanOutput:
    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        logger.debug("Cleaning %s", context.output_dir)
        context.clean()
        return []


class ClearCache:
    def __init__(self, cache: ImageCache):
        self.cache = cache

    def __call__(self, sources: list[Path], context: TransformContext) -> list[Path]:
        logger.debug("Clearing image cache at %s", self.cache.directory)
        self.cache.clear()
        return []
