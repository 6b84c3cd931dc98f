"""assetflow asset build pipeline.

This package compiles templates to HTML, stylesheets to CSS and scripts to a
bundled JS file, optimizes images, and serves a live-reloading preview.

The core is an incremental build engine:
- TaskRegistry holds a task graph of leaves, sequences and parallel groups.
- Scheduler runs the graph once, or reruns tasks as files change, never
  overlapping two runs of the same task.
- Watcher turns debounced filesystem events into trigger batches.
- ReloadCoordinator tells preview clients to reload after successful reruns.

The main entry point is the CLI module, which provides the `build` and
`watch` commands.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
