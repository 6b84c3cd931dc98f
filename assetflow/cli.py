"""Command-line interface for assetflow.

Commands:
- build: Build all assets once; exit non-zero if any task failed.
- watch: Build, then serve the output with live reload and rebuild on
  changes. This is the default when no command is given.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import click

from . import __version__
from .config import BuildConfig, load_config
from .errors import ConfigError, RegistryError
from .logging_setup import setup_logging
from .pipeline import Pipeline, create_pipeline
from .runs import TaskRun


def _common_options(func):
    func = click.option(
        "--config",
        "config_path",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        help="Config file (defaults to assetflow.yaml, then assetflow.default.yaml)",
    )(func)
    func = click.option(
        "--production", is_flag=True, help="Minify output and disable source maps"
    )(func)
    func = click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")(func)
    return func


@click.group(invoke_without_command=True)
@_common_options
@click.version_option(version=__version__, prog_name="assetflow")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, production: bool, verbose: bool):
    """assetflow asset build pipeline.

    Without a command, builds and then watches (same as `assetflow watch`).
    """
    ctx.obj = {"config_path": config_path, "production": production, "verbose": verbose}
    if ctx.invoked_subcommand is None:
        ctx.invoke(watch, config_path=config_path, production=production, verbose=verbose)


def _inherit(
    config_path: Path | None, production: bool, verbose: bool
) -> tuple[Path | None, bool, bool]:
    """Combine command options with those given before the command name."""
    group = click.get_current_context().find_root().obj or {}
    return (
        config_path or group.get("config_path"),
        production or group.get("production", False),
        verbose or group.get("verbose", False),
    )


@cli.command()
@_common_options
def build(config_path: Path | None, production: bool, verbose: bool):
    """Build all assets once."""
    config_path, production, verbose = _inherit(config_path, production, verbose)
    setup_logging(verbose)
    config, pipeline = _prepare(config_path, production)
    from .scheduler import Scheduler
    from .transform import TransformContext

    scheduler = Scheduler(pipeline.registry, TransformContext.for_config(config))
    try:
        run = scheduler.run_once(pipeline.build_task)
    finally:
        scheduler.shutdown()
    _report(run, config)
    if run.failed:
        raise SystemExit(1)


@cli.command()
@_common_options
@click.option("--port", type=int, required=False, help="Preview server port (overrides config)")
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Live reload websocket port (overrides config)",
)
def watch(
    config_path: Path | None = None,
    production: bool = False,
    verbose: bool = False,
    port: int | None = None,
    ws_port: int | None = None,
):
    """Build, serve with live reload, and rebuild on changes."""
    config_path, production, verbose = _inherit(config_path, production, verbose)
    setup_logging(verbose)
    config, pipeline = _prepare(config_path, production, port=port, ws_port=ws_port)
    from .scheduler import Scheduler
    from .server import DevServer
    from .transform import TransformContext

    scheduler = Scheduler(pipeline.registry, TransformContext.for_config(config))
    server = DevServer(config, pipeline, scheduler)
    server.start()


def _prepare(
    config_path: Path | None,
    production: bool,
    port: int | None = None,
    ws_port: int | None = None,
) -> tuple[BuildConfig, Pipeline]:
    """Load config and register tasks, exiting on fatal errors."""
    project_root = Path.cwd()
    try:
        config = load_config(project_root, config_path, production=production)
        if port is not None or ws_port is not None:
            http_port = port if port is not None else config.port
            config = replace(
                config,
                port=http_port,
                ws_port=ws_port if ws_port is not None else (
                    http_port + 1 if port is not None else config.ws_port
                ),
            )
        pipeline = create_pipeline(config)
    except ConfigError as exc:
        _fatal("Configuration error:", str(exc))
    except RegistryError as exc:
        _fatal("Task graph error:", str(exc))
    return config, pipeline


def _fatal(title: str, message: str) -> None:
    click.echo(click.style(title, fg="red", bold=True), err=True)
    click.echo(click.style(f"  {message}", fg="white"), err=True)
    raise SystemExit(1)


def _report(run: TaskRun, config: BuildConfig) -> None:
    """Print a per-task summary of a finished build."""
    for leaf in run.leaf_runs():
        if leaf.succeeded:
            click.echo(click.style("  ok    ", fg="green") + leaf.task)
        elif leaf.failed:
            error = leaf.error
            category = error.kind.value if error else "error"
            click.echo(
                click.style("  fail  ", fg="red", bold=True)
                + f"{leaf.task} "
                + click.style(f"[{category}]", fg="yellow")
                + f" {error if error else ''}",
                err=True,
            )
    if run.failed:
        click.echo(
            click.style(
                f"Build failed: {len(run.failures())} task(s) failed", fg="red", bold=True
            ),
            err=True,
        )
    else:
        click.echo(f"Built assets into {config.output_dir}")


def main():
    """Entry point for the CLI application."""
    cli()
