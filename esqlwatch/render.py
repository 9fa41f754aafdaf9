"""Tick-driven render loop for the latest published record.

The loop runs on the main thread.  Each tick it drains pending key presses,
then reads the :class:`~esqlwatch.state.DisplaySlot` and redraws only when the
slot version moved since the last successful draw.  All terminal access goes
through a :class:`Screen` so the loop can be driven without a real terminal.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from .record import Record
from .state import DisplaySlot, Snapshot

__all__ = [
    "CTRL_C",
    "RESIZE_KEY",
    "RenderLoop",
    "RenderState",
    "Screen",
    "TerminalIOError",
    "format_cell",
    "format_snapshot",
]

CTRL_C = "\x03"
RESIZE_KEY = "<resize>"

MAX_KEYS_PER_TICK = 64
MAX_CELL_WIDTH = 40
FALLBACK_MARKER = "(received)"
MISMATCH_MARKER = "!"


class TerminalIOError(OSError):
    """Transient failure while talking to the terminal."""


class RenderState(enum.Enum):
    WAITING_FOR_TICK = "waiting_for_tick"
    CHECKING_INPUT = "checking_input"
    RENDERING = "rendering"
    STOPPED = "stopped"


class Screen(Protocol):
    def poll_key(self) -> Optional[str]:
        """Return the next pending key without waiting, or ``None``."""

    def size(self) -> Tuple[int, int]:
        """Return ``(height, width)`` in character cells."""

    def draw(self, lines: Sequence[str]) -> None:
        """Replace the screen contents with ``lines``."""


class RenderLoop:
    """State machine that mirrors the display slot onto a :class:`Screen`."""

    def __init__(
        self,
        slot: DisplaySlot,
        screen: Screen,
        *,
        tick_interval: float = 0.25,
        quit_keys: Iterable[str] = ("q", "Q", CTRL_C),
        header: str = "esqlwatch",
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._slot = slot
        self._screen = screen
        self._tick_interval = tick_interval
        self._quit_keys = frozenset(quit_keys)
        self._header = header
        self._on_stop = on_stop
        self._logger = logging.getLogger("esqlwatch.render")
        self._state = RenderState.WAITING_FOR_TICK
        self._last_version: Optional[int] = None
        self._force_redraw = False

    @property
    def state(self) -> RenderState:
        return self._state

    @property
    def last_rendered_version(self) -> Optional[int]:
        return self._last_version

    def tick(self) -> RenderState:
        """Run one input check and, unless stopped, one render step."""

        if self._state is RenderState.STOPPED:
            return self._state
        self._state = RenderState.CHECKING_INPUT
        if self._check_input():
            self.stop()
            return self._state
        self._state = RenderState.RENDERING
        self.render()
        self._state = RenderState.WAITING_FOR_TICK
        return self._state

    def render(self) -> bool:
        """Redraw if the slot version changed; return whether a draw happened."""

        snapshot = self._slot.read()
        if snapshot.version == self._last_version and not self._force_redraw:
            return False
        try:
            height, width = self._screen.size()
            lines = format_snapshot(snapshot, width=width, height=height, header=self._header)
            self._screen.draw(lines)
        except TerminalIOError as exc:
            # Leave the version unrecorded so the next tick retries.
            self._logger.warning("Redraw of version %d failed: %s", snapshot.version, exc)
            return False
        self._last_version = snapshot.version
        self._force_redraw = False
        return True

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        event = stop_event or threading.Event()
        while self._state is not RenderState.STOPPED:
            self.tick()
            if self._state is RenderState.STOPPED:
                break
            if event.wait(self._tick_interval):
                self.stop()

    def stop(self) -> None:
        """Stop the loop, close the slot and notify the driver once."""

        if self._state is RenderState.STOPPED:
            return
        self._slot.close()
        self._state = RenderState.STOPPED
        self._logger.info("Render loop stopped at version %s", self._last_version)
        if self._on_stop is not None:
            self._on_stop()

    def _check_input(self) -> bool:
        for _ in range(MAX_KEYS_PER_TICK):
            try:
                key = self._screen.poll_key()
            except TerminalIOError as exc:
                self._logger.warning("Keyboard poll failed: %s", exc)
                return False
            if key is None:
                return False
            if key in self._quit_keys:
                return True
            if key == RESIZE_KEY:
                self._force_redraw = True
        return False


# ----------------------------------------------------------------------
# Formatting


def format_snapshot(
    snapshot: Snapshot,
    *,
    width: int = 80,
    height: Optional[int] = None,
    header: str = "esqlwatch",
) -> List[str]:
    """Build the screen lines for ``snapshot``."""

    lines = [header, "-" * max(0, width - 1)]
    record = snapshot.record
    if record is None:
        lines.append("Waiting for data...")
    else:
        lines.extend(_summary_lines(snapshot.version, record))
        lines.append("")
        if record.columns:
            lines.extend(_table_lines(record))
        else:
            lines.extend(_raw_lines(record))

    if height is not None and height > 0 and len(lines) > height:
        hidden = len(lines) - (height - 1)
        lines = lines[: height - 1] + [f"... {hidden} more lines"]
    return [line[: max(0, width - 1)] for line in lines]


def _summary_lines(version: int, record: Record) -> List[str]:
    timestamp, fallback = record.display_timestamp
    time_text = _format_time(timestamp)
    if fallback:
        time_text = f"{time_text} {FALLBACK_MARKER}"
    lines = [
        f"@timestamp: {time_text}",
        f"received:   {_format_time(record.received_at)}  version: {version}",
        f"host.name:  {record.host or 'unknown'}",
        f"agent.id:   {record.agent_id or 'unknown'}",
    ]
    for key, value in record.extras.items():
        lines.append(f"{key}: {format_cell(value)}")
    if record.took_ms is not None:
        lines.append(f"took:       {record.took_ms} ms")
    return lines


def _table_lines(record: Record) -> List[str]:
    headers = []
    for index, name in enumerate(record.columns):
        column_type = record.column_types[index] if index < len(record.column_types) else None
        headers.append(f"{name} ({column_type})" if column_type else name)

    cells = [[_clip(format_cell(value)) for value in row] for row in record.rows]
    widths = [len(_clip(text)) for text in headers]
    for row in cells:
        for index, text in enumerate(row[: len(widths)]):
            widths[index] = max(widths[index], len(text))

    def join(values: Sequence[str]) -> str:
        return "  ".join(text.ljust(widths[i]) if i < len(widths) else text for i, text in enumerate(values))

    lines = ["  " + join([_clip(text) for text in headers]).rstrip()]
    lines.append("  " + "  ".join("-" * w for w in widths))
    if not record.rows:
        lines.append("  (no rows)")
    for index, row in enumerate(cells):
        original = record.mismatched_rows.get(index, len(row))
        if index in record.mismatched_rows or len(row) != len(record.columns):
            note = f"  <- row has {original} values for {len(record.columns)} columns"
            lines.append(f"{MISMATCH_MARKER} " + join(row).rstrip() + note)
        else:
            lines.append("  " + join(row).rstrip())
    return lines


def _raw_lines(record: Record) -> List[str]:
    text = json.dumps(dict(record.raw), indent=2, ensure_ascii=False, default=str)
    return text.splitlines()


def format_cell(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        text = value
    elif isinstance(value, (int, float)):
        text = str(value)
    else:
        text = json.dumps(value, ensure_ascii=False, default=str)
    return text.replace("\r", "\\r").replace("\n", "\\n")


def _clip(text: str) -> str:
    if len(text) <= MAX_CELL_WIDTH:
        return text
    return text[: MAX_CELL_WIDTH - 3] + "..."


def _format_time(value: datetime) -> str:
    return value.isoformat()
