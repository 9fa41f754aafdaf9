"""Live terminal view of ES|QL results pushed over HTTP."""

__version__ = "0.1.0"

from .config import Settings
from .record import ParseError, Record, parse
from .render import RenderLoop, RenderState, TerminalIOError, format_snapshot
from .server import BindError, IngestServer, OversizeError, create_app
from .state import DisplaySlot, SlotClosedError, Snapshot

__all__ = [
    "BindError",
    "DisplaySlot",
    "IngestServer",
    "OversizeError",
    "ParseError",
    "Record",
    "RenderLoop",
    "RenderState",
    "Settings",
    "SlotClosedError",
    "Snapshot",
    "TerminalIOError",
    "create_app",
    "format_snapshot",
    "parse",
    "__version__",
]
