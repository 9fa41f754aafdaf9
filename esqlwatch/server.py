"""HTTP ingestion endpoint for esqlwatch.

The log shipper POSTs one JSON document per query run.  Each accepted body is
parsed into a :class:`~esqlwatch.record.Record` and published into the shared
:class:`~esqlwatch.state.DisplaySlot`.  The application is served by uvicorn on
a background thread so that the terminal can stay on the main thread.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, HTTPException, Request

from . import __version__
from .config import Settings, coerce_log_level
from .record import ParseError, parse
from .state import DisplaySlot, SlotClosedError

__all__ = [
    "BindError",
    "IngestServer",
    "OversizeError",
    "create_app",
    "read_bounded_body",
]


class OversizeError(ValueError):
    """Raised when a request body exceeds the configured maximum size."""

    def __init__(self, limit: int, size: int) -> None:
        super().__init__(f"request body of at least {size} bytes exceeds limit of {limit} bytes")
        self.limit = limit
        self.size = size


class BindError(RuntimeError):
    """Raised when the listener cannot acquire its address."""


async def read_bounded_body(request: Request, limit: int) -> bytes:
    """Read the request body, failing as soon as it grows past ``limit``."""

    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            length = int(declared)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid Content-Length header")
        if length > limit:
            raise OversizeError(limit, length)

    chunks: List[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise OversizeError(limit, total)
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(slot: DisplaySlot, settings: Settings) -> FastAPI:
    app = FastAPI(title="esqlwatch", version=__version__)
    logger = logging.getLogger("esqlwatch.server")

    @app.post(settings.path)
    async def ingest(request: Request) -> Dict[str, Any]:
        received_at = datetime.now(timezone.utc)
        try:
            body = await read_bounded_body(request, settings.max_body_bytes)
        except OversizeError as exc:
            logger.warning("Rejected oversize payload: %s", exc)
            raise HTTPException(status_code=413, detail=str(exc))
        try:
            record = parse(body, received_at=received_at)
        except ParseError as exc:
            logger.warning("Rejected payload: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc))
        try:
            version = slot.publish(record)
        except SlotClosedError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        logger.debug(
            "Published version %d (%d columns, %d rows)",
            version,
            len(record.columns),
            len(record.rows),
        )
        return {"status": "accepted", "version": version}

    return app


class IngestServer:
    """Run the ingestion app with uvicorn on a daemon thread."""

    def __init__(
        self,
        app: FastAPI,
        settings: Settings,
        *,
        startup_timeout: float = 5.0,
    ) -> None:
        self._app = app
        self._settings = settings
        self._startup_timeout = startup_timeout
        self._logger = logging.getLogger("esqlwatch.server")
        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        """Bound ``(host, port)``; resolves port 0 to the assigned port."""

        if self._socket is None:
            raise RuntimeError("server is not started")
        host, port = self._socket.getsockname()[:2]
        return host, port

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        sock = self._bind()
        config = uvicorn.Config(
            self._app,
            log_config=None,
            log_level=coerce_log_level(self._settings.log_level),
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._socket = sock
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [sock]},
            name="esqlwatch-http",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + self._startup_timeout
        while not self._server.started:
            if not self._thread.is_alive():
                self._close_socket()
                raise BindError(f"HTTP server on {self._settings.listen} exited during startup")
            if time.monotonic() > deadline:
                self.stop()
                raise BindError(f"HTTP server on {self._settings.listen} did not start in time")
            time.sleep(0.01)
        host, port = self.address
        self._logger.info("Listening on http://%s:%d%s", host, port, self._settings.path)

    def request_stop(self) -> None:
        """Ask uvicorn to exit without waiting for it."""

        if self._server is not None:
            self._server.should_exit = True

    def stop(self, timeout: float = 5.0) -> None:
        self.request_stop()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self._logger.warning("HTTP server thread did not exit within %.1fs", timeout)
            self._thread = None
        self._close_socket()
        self._server = None

    def _bind(self) -> socket.socket:
        host, port = self._settings.host, self._settings.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(128)
        except OSError as exc:
            sock.close()
            raise BindError(f"cannot listen on {host}:{port}: {exc.strerror or exc}") from exc
        return sock

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
