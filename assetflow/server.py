"""Development preview server for assetflow.

Serves the build output with live reload:
- Injects a reload client script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches the sources, reruns the affected tasks and reloads clients after
  each successful rerun.

Key classes:
- DevServer: Wires Scheduler, Watcher and ReloadCoordinator together.
- _ReloadHandler: HTTP request handler that injects the reload script.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from .config import BuildConfig
from .pipeline import Pipeline
from .reload import ReloadCoordinator
from .runs import TaskRun
from .scheduler import Scheduler
from .watcher import Watcher

logger = logging.getLogger(__name__)


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects the live reload client into HTML pages.

    The client reconnects with a growing delay when the socket drops, so
    restarting the dev server doesn't strand open tabs.
    """

    reload_script_template = """
    <script>
    (() => {{
      let delay = 500;
      const connect = () => {{
        const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
        ws.onopen = () => {{ delay = 500; }};
        ws.onmessage = (event) => {{
          const data = JSON.parse(event.data || '{{}}');
          if (data.type === 'reload') location.reload();
        }};
        ws.onclose = () => {{
          setTimeout(connect, delay);
          delay = Math.min(delay * 2, 5000);
        }};
      }};
      connect();
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=3001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, encoded: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, self._inject(error_page.read_text(encoding="utf-8")))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, self._inject(path_obj.read_text(encoding="utf-8")))
            return None
        return super().send_head()


class DevServer:
    """Build once, then serve, watch and live-reload.

    Attributes:
        config: Build configuration.
        pipeline: Task graph and watch bindings.
        scheduler: Runs the initial build and triggered reruns.
        watcher: Turns file changes into trigger batches.
        coordinator: Pushes reload signals to preview clients.
    """

    def __init__(
        self,
        config: BuildConfig,
        pipeline: Pipeline,
        scheduler: Scheduler,
        watcher: Watcher | None = None,
        coordinator: ReloadCoordinator | None = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.output_dir = config.output_dir
        self.http_port = config.port
        self.ws_port = config.ws_port
        self.watcher = watcher or Watcher(
            config.project_root,
            debounce=config.debounce,
            ignore=[self.output_dir, config.cache_path],
        )
        self.coordinator = coordinator or ReloadCoordinator(
            self.ws_port, project_root=config.project_root
        )
        self.scheduler.add_listener(self.coordinator.notify)
        self._reload_script = _ReloadHandler.reload_script_template.format(
            ws_port=self.ws_port
        )
        self._httpd: ThreadingHTTPServer | None = None
        self._consumer: threading.Thread | None = None

    def start(self) -> TaskRun:  # pragma: no cover - integration path
        run = self.initial_build()
        threading.Thread(target=self._start_http, daemon=True).start()
        self.coordinator.start()
        self.watch()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping")
        finally:
            self.stop()
        return run

    def initial_build(self) -> TaskRun:
        run = self.scheduler.run_once(self.pipeline.build_task)
        if run.failed:
            logger.warning(
                "Initial build failed (%d task(s)); watching for fixes",
                len(run.failures()),
            )
        return run

    def watch(self) -> None:
        """Start the watcher and the thread feeding its batches to the scheduler."""
        self.watcher.watch(self.pipeline.bindings)
        self._consumer = threading.Thread(target=self.consume, daemon=True)
        self._consumer.start()

    def consume(self) -> None:
        for batch in self.watcher.batches():
            self.scheduler.run_for_trigger(sorted(batch.tasks), cause=batch.path)

    def stop(self) -> None:
        self.watcher.stop()
        if self._consumer is not None:
            self._consumer.join(timeout=2)
            self._consumer = None
        self.scheduler.shutdown(wait=True)
        self.coordinator.stop()
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd = None

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at http://localhost:%s", self.output_dir, self.http_port)
        self._httpd.serve_forever()
