"""Logging setup shared by the esqlwatch entry points."""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from .config import coerce_log_level

__all__ = ["LOG_FORMAT", "DeferredHandler", "configure_logging", "flush_deferred_logs"]

LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# Loggers routed through the same handler as the package logger.
_ROUTED_LOGGERS = ("esqlwatch", "uvicorn", "uvicorn.error")

_BUFFER_CAPACITY = 10_000


class DeferredHandler(logging.handlers.MemoryHandler):
    """Hold records until closed, keeping only the newest ``capacity`` of them."""

    def shouldFlush(self, record: logging.LogRecord) -> bool:  # noqa: N802
        overflow = len(self.buffer) - self.capacity
        if overflow > 0:
            del self.buffer[:overflow]
        return False


def configure_logging(
    level: int | str = logging.WARNING,
    log_file: Optional[Path] = None,
    *,
    defer: bool = False,
) -> logging.Handler:
    """Attach a single formatted handler to the esqlwatch and uvicorn loggers.

    With ``log_file`` records are appended to that file.  Otherwise they go to
    stderr; ``defer=True`` holds them in memory until
    :func:`flush_deferred_logs` so they do not draw over the terminal display.
    """

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(formatter)
    else:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        handler = stream
        if defer:
            handler = DeferredHandler(_BUFFER_CAPACITY, target=stream, flushOnClose=True)

    resolved = coerce_log_level(level)
    for name in _ROUTED_LOGGERS:
        logger = logging.getLogger(name)
        for existing in list(logger.handlers):
            logger.removeHandler(existing)
        logger.addHandler(handler)
        logger.setLevel(resolved)
        logger.propagate = False
    return handler


def flush_deferred_logs(handler: logging.Handler) -> None:
    """Emit buffered records once the terminal has been restored."""

    handler.flush()
    handler.close()
