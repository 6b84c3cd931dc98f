"""Live reload signalling for assetflow.

The ReloadCoordinator owns a websockets server on a private event loop
thread. Preview clients connect to it; after a triggered task run succeeds
the coordinator pushes a reload message to every connected client.

Failed runs never reload, so a half-built page is never pushed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path

import websockets

from .protocols import PreviewClient
from .runs import TaskRun

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReloadSignal:
    """Reload event broadcast to preview clients.

    Attributes:
        path: Changed file that led to the reload, if known.
    """

    path: str | None = None

    def to_json(self) -> str:
        return json.dumps({"type": "reload", "path": self.path})


class ReloadCoordinator:
    """Broadcasts reload signals after successful task runs.

    Attributes:
        host: Interface the websocket server binds to.
        port: Websocket server port.
        project_root: Used to shorten changed paths in signals.
    """

    def __init__(self, port: int, host: str = "0.0.0.0", project_root: Path | None = None):
        self.host = host
        self.port = port
        self.project_root = project_root
        self._clients: set[PreviewClient] = set()
        self._loop = asyncio.new_event_loop()
        self._thread: threading.Thread | None = None
        self._stop: asyncio.Future | None = None

    @property
    def clients(self) -> set[PreviewClient]:
        return self._clients

    def register(self, client: PreviewClient) -> None:
        self._clients.add(client)
        logger.debug("Preview client connected (%d total)", len(self._clients))

    def unregister(self, client: PreviewClient) -> None:
        self._clients.discard(client)

    def notify(self, run: TaskRun) -> bool:
        """Signal clients to reload after a finished run.

        Args:
            run: A run in its terminal state.

        Returns:
            True if a reload was broadcast.
        """
        if not run.succeeded:
            logger.info("'%s' did not succeed; skipping reload", run.task)
            return False
        signal = ReloadSignal(path=self._display_path(run.cause))
        self._broadcast(signal.to_json())
        return True

    __call__ = notify

    def start(self) -> None:  # pragma: no cover - integration path
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._stop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._stop.cancel)
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

    def _display_path(self, path: Path | None) -> str | None:
        if path is None:
            return None
        if self.project_root is not None:
            try:
                return path.relative_to(self.project_root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def _serve(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_server())
        except OSError as exc:
            logger.error("Reload server failed to start (port %s): %s", self.port, exc)
        except asyncio.CancelledError:
            pass

    async def _run_server(self) -> None:  # pragma: no cover - integration path
        self._stop = self._loop.create_future()
        async with websockets.serve(self._handler, self.host, self.port):
            logger.info("Live reload listening on ws://localhost:%s", self.port)
            await self._stop

    async def _handler(self, websocket):
        self.register(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self.unregister(websocket)

    def _broadcast(self, message: str) -> Future | None:
        if not self._loop.is_running():
            logger.debug("Reload server not running; dropping reload signal")
            return None
        return asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str) -> None:
        stale = set()
        for client in list(self._clients):
            try:
                await client.send(message)
            except Exception as exc:
                logger.warning("Dropping preview client after failed send: %s", exc)
                stale.add(client)
        for client in stale:
            self._clients.discard(client)
