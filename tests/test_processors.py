import io
import json
import subprocess

import pytest
from PIL import Image

from assetflow import processors
from assetflow.errors import ParseError, ToolError, TransformIOError
from assetflow.processors import (
    CleanOutput,
    ClearCache,
    ImageCache,
    ImageOptimizer,
    ScriptBundler,
    StyleCompiler,
    TemplateRenderer,
    ToolOptions,
    VendorCopier,
    bundle_scripts,
    compile_styles,
    load_template_data,
    optimize_image,
)


def png_bytes(size=(16, 16)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color="red").save(buffer, format="PNG", compress_level=0)
    return buffer.getvalue()


def fake_tools(monkeypatch, available, result=None, calls=None):
    """Pretend only the named tools exist and make run_tool return result."""

    monkeypatch.setattr(
        processors,
        "find_executable",
        lambda name, root=None: f"/bin/{name}" if name in available else None,
    )

    def fake_run(cmd, cwd=None, stdin=None, env=None):
        if calls is not None:
            calls.append({"cmd": cmd, "stdin": stdin, "env": env})
        return result

    monkeypatch.setattr(processors, "run_tool", fake_run)


# --- Templates ---


def write_templates(config):
    html = config.src_dir / "html"
    (html / "layouts").mkdir(parents=True)
    (html / "data").mkdir()
    (html / "layouts" / "base.html").write_text(
        "<html><body>{% block body %}{% endblock %}</body></html>", encoding="utf-8"
    )
    (html / "index.html").write_text(
        '{% extends "layouts/base.html" %}{% block body %}<h1>{{ title }}</h1>{% endblock %}',
        encoding="utf-8",
    )
    (html / "data" / "index.json").write_text(json.dumps({"title": "Hello"}), encoding="utf-8")
    return html


def test_template_renderer_writes_pages(config, context):
    html = write_templates(config)
    renderer = TemplateRenderer(html, config.data_path)

    outputs = renderer([html / "index.html"], context)

    assert outputs == [config.output_dir / "index.html"]
    assert outputs[0].read_text(encoding="utf-8") == "<html><body><h1>Hello</h1></body></html>"


def test_template_syntax_error_is_parse_error(config, context):
    html = write_templates(config)
    (html / "broken.html").write_text("line one\n{% if %}", encoding="utf-8")
    renderer = TemplateRenderer(html, config.data_path)

    with pytest.raises(ParseError) as exc:
        renderer([html / "broken.html"], context)
    assert "line 2" in exc.value.message


def test_missing_include_is_io_error(config, context):
    html = write_templates(config)
    (html / "page.html").write_text('{% include "nope.html" %}', encoding="utf-8")
    with pytest.raises(TransformIOError):
        TemplateRenderer(html, config.data_path)([html / "page.html"], context)


def test_template_data(tmp_path):
    assert load_template_data(tmp_path / "missing.json") == {}
    bad = tmp_path / "bad.json"
    bad.write_text("{nope", encoding="utf-8")
    with pytest.raises(ParseError):
        load_template_data(bad)
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ParseError):
        load_template_data(listing)


# --- Styles ---


def test_plain_css_passes_through_without_postcss(monkeypatch, tmp_path):
    entry = tmp_path / "app.css"
    entry.write_text("a{color:red}", encoding="utf-8")
    fake_tools(monkeypatch, available=set())
    assert compile_styles(entry, ToolOptions(project_root=tmp_path)) == b"a{color:red}"


def test_scss_without_sass_is_tool_error(monkeypatch, tmp_path):
    entry = tmp_path / "app.scss"
    entry.write_text("$c: red;", encoding="utf-8")
    fake_tools(monkeypatch, available=set())
    with pytest.raises(ToolError) as exc:
        compile_styles(entry, ToolOptions(project_root=tmp_path))
    assert "sass" in exc.value.message


def test_sass_compile_error_is_parse_error(monkeypatch, tmp_path):
    entry = tmp_path / "app.scss"
    entry.write_text("a {", encoding="utf-8")
    result = subprocess.CompletedProcess([], 65, b"", b"Error: expected \"}\".")
    fake_tools(monkeypatch, available={"sass"}, result=result)
    with pytest.raises(ParseError) as exc:
        compile_styles(entry, ToolOptions(project_root=tmp_path))
    assert "expected" in exc.value.message


def test_sass_crash_is_tool_error(monkeypatch, tmp_path):
    entry = tmp_path / "app.scss"
    entry.write_text("a {}", encoding="utf-8")
    result = subprocess.CompletedProcess([], 1, b"", b"segfault")
    fake_tools(monkeypatch, available={"sass"}, result=result)
    with pytest.raises(ToolError):
        compile_styles(entry, ToolOptions(project_root=tmp_path))


def test_production_sass_command(monkeypatch, config, context):
    scss = config.src_dir / "scss"
    scss.mkdir()
    entry = scss / "app.scss"
    entry.write_text("a { b: c }", encoding="utf-8")
    calls = []
    result = subprocess.CompletedProcess([], 0, b"a{b:c}", b"")
    fake_tools(monkeypatch, available={"sass", "postcss"}, result=result, calls=calls)
    options = ToolOptions(
        project_root=config.project_root,
        production=True,
        include_paths=(config.project_root / "node_modules/foundation/scss",),
        compatibility=("last 2 versions", "ie >= 9"),
    )

    outputs = StyleCompiler(options)([entry], context.scoped("css"))

    assert outputs == [config.output_dir / "css" / "app.css"]
    sass_cmd = calls[0]["cmd"]
    assert f"--load-path={config.project_root / 'node_modules/foundation/scss'}" in sass_cmd
    assert "--style=compressed" in sass_cmd
    assert "--no-source-map" in sass_cmd
    postcss = calls[1]
    assert postcss["cmd"][:3] == ["/bin/postcss", "--use", "autoprefixer"]
    assert postcss["stdin"] == b"a{b:c}"
    assert postcss["env"] == {"BROWSERSLIST": "last 2 versions, ie >= 9"}


def test_dev_sass_embeds_source_maps(monkeypatch, tmp_path):
    entry = tmp_path / "app.scss"
    entry.write_text("a {}", encoding="utf-8")
    calls = []
    fake_tools(
        monkeypatch,
        available={"sass"},
        result=subprocess.CompletedProcess([], 0, b"a{}", b""),
        calls=calls,
    )
    compile_styles(entry, ToolOptions(project_root=tmp_path))
    assert "--embed-source-map" in calls[0]["cmd"]


# --- Scripts ---


def test_scripts_fall_back_to_rjsmin_in_production(monkeypatch, tmp_path):
    entry = tmp_path / "app.js"
    entry.write_text("function test(){ return 1 + 1; }", encoding="utf-8")
    fake_tools(monkeypatch, available=set())

    dev = bundle_scripts(entry, ToolOptions(project_root=tmp_path))
    prod = bundle_scripts(entry, ToolOptions(project_root=tmp_path, production=True))

    assert dev == entry.read_bytes()
    assert b"return 1+1" in prod
    assert len(prod) < len(dev)


def test_esbuild_bundles(monkeypatch, config, context):
    js = config.src_dir / "js"
    js.mkdir()
    entry = js / "app.js"
    entry.write_text("import './a.js';", encoding="utf-8")
    calls = []
    fake_tools(
        monkeypatch,
        available={"esbuild"},
        result=subprocess.CompletedProcess([], 0, b"(()=>{})();", b""),
        calls=calls,
    )

    outputs = ScriptBundler(ToolOptions(project_root=config.project_root, production=True))(
        [entry], context.scoped("js")
    )

    assert outputs[0].read_bytes() == b"(()=>{})();"
    assert "--bundle" in calls[0]["cmd"]
    assert "--minify" in calls[0]["cmd"]


def test_esbuild_failure_is_tool_error(monkeypatch, tmp_path):
    entry = tmp_path / "app.js"
    entry.write_text("import 'missing';", encoding="utf-8")
    fake_tools(
        monkeypatch,
        available={"esbuild"},
        result=subprocess.CompletedProcess([], 1, b"", b"Could not resolve \"missing\""),
    )
    with pytest.raises(ToolError) as exc:
        bundle_scripts(entry, ToolOptions(project_root=tmp_path))
    assert "Could not resolve" in exc.value.message


# --- Images ---


def test_optimize_image_keeps_valid_png():
    data = png_bytes()
    optimized = optimize_image(data)
    assert len(optimized) <= len(data)
    with Image.open(io.BytesIO(optimized)) as img:
        assert img.size == (16, 16)


def test_optimize_image_passes_svg_through():
    svg = b'<svg xmlns="http://www.w3.org/2000/svg"></svg>'
    assert optimize_image(svg) == svg


def test_optimize_image_rejects_garbage():
    with pytest.raises(ParseError):
        optimize_image(b"\x00\x01not an image")


def test_image_optimizer_uses_cache(monkeypatch, config, context):
    images = config.src_dir / "images"
    (images / "icons").mkdir(parents=True)
    source = images / "icons" / "logo.png"
    source.write_bytes(png_bytes())
    cache = ImageCache(config.cache_path / "images")
    calls = []

    def counting(data):
        calls.append(len(data))
        return b"optimized"

    monkeypatch.setattr(processors, "optimize_image", counting)
    optimizer = ImageOptimizer(images, cache)
    scoped = context.scoped("images")

    first = optimizer([source], scoped)
    second = optimizer([source], scoped)

    assert first == second == [config.output_dir / "images" / "icons" / "logo.png"]
    assert first[0].read_bytes() == b"optimized"
    assert len(calls) == 1

    ClearCache(cache)([], context)
    optimizer([source], scoped)
    assert len(calls) == 2


def test_image_optimizer_reports_source_of_bad_image(config, context):
    images = config.src_dir / "images"
    images.mkdir()
    bad = images / "broken.png"
    bad.write_bytes(b"\x89PNG\r\n\x1a\nbroken")
    with pytest.raises(ParseError) as exc:
        ImageOptimizer(images)([bad], context)
    assert exc.value.source_path == bad


# --- Housekeeping ---


def test_vendor_copier(config, context):
    vendor = config.project_root / "node_modules" / "jquery" / "dist"
    vendor.mkdir(parents=True)
    (vendor / "jquery.min.js").write_text("/*! jquery */", encoding="utf-8")

    copier = VendorCopier(config.project_root, ("node_modules/jquery/dist/jquery.min.js",))
    outputs = copier([], context.scoped("js/vendor"))
    assert outputs == [config.output_dir / "js" / "vendor" / "jquery.min.js"]

    missing = VendorCopier(config.project_root, ("node_modules/nope.js",))
    with pytest.raises(TransformIOError):
        missing([], context)


def test_clean_output(config, context):
    config.output_dir.mkdir()
    (config.output_dir / "stale.html").write_text("old", encoding="utf-8")
    assert CleanOutput()([], context) == []
    assert config.output_dir.is_dir()
    assert list(config.output_dir.iterdir()) == []
