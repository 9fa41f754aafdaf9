"""Command line entry point: serve the ingestion endpoint and watch the display."""

from __future__ import annotations

import argparse
import curses
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from . import __version__
from .config import LOG_LEVELS, Settings
from .logs import configure_logging, flush_deferred_logs
from .render import CTRL_C, RenderLoop
from .server import BindError, IngestServer, create_app
from .state import DisplaySlot
from .terminal import CursesScreen

LOGGER = logging.getLogger("esqlwatch.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="esqlwatch",
        description="Receive ES|QL results pushed over HTTP and show the latest one in the terminal.",
        epilog="Every option can also be set through an ESQLWATCH_<NAME> environment variable.",
    )
    parser.add_argument("--host", type=str, default=None, help="Bind address (default 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default 33433)")
    parser.add_argument("--path", type=str, default=None, help="Ingestion path (default /data)")
    parser.add_argument(
        "--tick",
        dest="tick_interval",
        type=float,
        default=None,
        help="Seconds between render ticks (default 0.25)",
    )
    parser.add_argument(
        "--max-body",
        dest="max_body_bytes",
        type=int,
        default=None,
        help="Largest accepted request body in bytes (default 4 MiB)",
    )
    parser.add_argument("--quit-key", type=str, default=None, help="Key that quits the display (default q)")
    parser.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging verbosity (default WARNING)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Append logs to this file instead of printing them after exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_settings(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Settings:
    overrides = {name: getattr(args, name) for name in Settings.model_fields if hasattr(args, name)}
    try:
        return Settings.from_env(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        parser.error(f"invalid configuration: {problems}")
        raise  # pragma: no cover - parser.error exits


def display_header(settings: Settings, address: tuple[str, int]) -> str:
    host, port = address
    return f"esqlwatch {__version__}  POST http://{host}:{port}{settings.path}  [{settings.quit_key}] quit"


def quit_keys(settings: Settings) -> frozenset[str]:
    key = settings.quit_key
    return frozenset({key, key.swapcase(), CTRL_C})


def _run_display(stdscr, slot: DisplaySlot, server: IngestServer, settings: Settings) -> None:
    loop = RenderLoop(
        slot,
        CursesScreen(stdscr),
        tick_interval=settings.tick_interval,
        quit_keys=quit_keys(settings),
        header=display_header(settings, server.address),
        on_stop=server.request_stop,
    )
    try:
        loop.run()
    except KeyboardInterrupt:
        loop.stop()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = resolve_settings(args, parser)

    handler = configure_logging(settings.log_level, settings.log_file, defer=settings.log_file is None)
    slot = DisplaySlot()
    server = IngestServer(create_app(slot, settings), settings)
    try:
        try:
            server.start()
        except BindError as exc:
            LOGGER.error("%s", exc)
            print(f"esqlwatch: {exc}", file=sys.stderr)
            return 1
        try:
            curses.wrapper(_run_display, slot, server, settings)
        except KeyboardInterrupt:
            LOGGER.info("Interrupted")
        finally:
            slot.close()
            server.stop()
    finally:
        flush_deferred_logs(handler)
    return 0
