"""Record model for payloads pushed by the log shipper.

A payload is usually the body of an ES|QL query response forwarded by a
Logstash ``http`` output::

    {"took": 12, "columns": [{"name": "@timestamp", "type": "date"}, ...],
     "values": [["2024-01-01T00:00:00Z", ...]]}

Only a handful of well-known fields are promoted to attributes.  Everything
else stays reachable through :attr:`Record.raw`.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

__all__ = [
    "ParseError",
    "Record",
    "parse",
    "TIMESTAMP_PATHS",
    "HOST_PATHS",
    "AGENT_PATHS",
    "EXTRA_PATHS",
]

TIMESTAMP_PATHS: Tuple[str, ...] = ("@timestamp", "timestamp", "event.created")
HOST_PATHS: Tuple[str, ...] = ("host.name", "host.hostname", "hostname", "host")
AGENT_PATHS: Tuple[str, ...] = ("agent.id", "agent_id")
EXTRA_PATHS: Tuple[str, ...] = ("host.os.name", "user.name", "host.ip")

COLUMNAR_ROW_KEYS: Tuple[str, ...] = ("values", "rows")
OBJECT_LIST_PATHS: Tuple[str, ...] = ("hits.hits", "documents", "results", "events", "data")

# Epoch values above this are treated as milliseconds.
_EPOCH_MILLIS_THRESHOLD = 1e11

# date_nanos values carry up to nine fractional digits; datetime keeps six.
_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")

_MISSING = object()


class ParseError(ValueError):
    """Raised when a payload is not JSON or not a JSON object."""


@dataclass(frozen=True)
class Record:
    """One decoded payload, immutable once built."""

    received_at: datetime
    source_timestamp: Optional[datetime] = None
    host: Optional[str] = None
    agent_id: Optional[str] = None
    columns: Tuple[str, ...] = ()
    column_types: Tuple[Optional[str], ...] = ()
    rows: Tuple[Tuple[Any, ...], ...] = ()
    # row index -> cell count before padding or truncation
    mismatched_rows: Mapping[int, int] = field(default_factory=dict)
    took_ms: Optional[int] = None
    extras: Mapping[str, Any] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def display_timestamp(self) -> Tuple[datetime, bool]:
        """Timestamp to show and whether it fell back to the receipt time."""

        if self.source_timestamp is not None:
            return self.source_timestamp, False
        return self.received_at, True


def parse(payload: bytes | str, *, received_at: Optional[datetime] = None) -> Record:
    """Decode ``payload`` into a :class:`Record`.

    Fails only when the payload is not JSON or its top level is not an object.
    Missing or malformed optional fields leave the matching attribute unset.
    """

    try:
        decoded = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
        raise ParseError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(decoded, dict):
        raise ParseError(f"payload must be a JSON object, got {type(decoded).__name__}")

    columns, column_types, rows, mismatched = _extract_table(decoded)
    first_row = dict(zip(columns, rows[0])) if columns and rows else {}

    timestamp = None
    for value in _candidates(decoded, first_row, TIMESTAMP_PATHS):
        timestamp = _coerce_timestamp(value)
        if timestamp is not None:
            break

    extras: Dict[str, Any] = {}
    for path in EXTRA_PATHS:
        for value in _candidates(decoded, first_row, (path,)):
            if value is not None:
                extras[path] = value
                break

    took = decoded.get("took")
    return Record(
        received_at=received_at or datetime.now(timezone.utc),
        source_timestamp=timestamp,
        host=_first_text(decoded, first_row, HOST_PATHS),
        agent_id=_first_text(decoded, first_row, AGENT_PATHS),
        columns=columns,
        column_types=column_types,
        rows=rows,
        mismatched_rows=MappingProxyType(mismatched),
        took_ms=took if isinstance(took, int) and not isinstance(took, bool) else None,
        extras=MappingProxyType(extras),
        raw=MappingProxyType(decoded),
    )


# ----------------------------------------------------------------------
# Field lookup


def _lookup(document: Mapping[str, Any], path: str) -> Any:
    """Resolve ``path`` as a nested path, then as a flat dotted key."""

    node: Any = document
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            node = _MISSING
            break
        node = node[part]
    if node is not _MISSING:
        return node
    return document.get(path, _MISSING) if "." in path else _MISSING


def _candidates(document: Mapping[str, Any], first_row: Mapping[str, Any], paths: Sequence[str]):
    for path in paths:
        value = _lookup(document, path)
        if value is not _MISSING:
            yield value
    for path in paths:
        if path in first_row:
            yield first_row[path]


def _first_text(document: Mapping[str, Any], first_row: Mapping[str, Any], paths: Sequence[str]) -> Optional[str]:
    for value in _candidates(document, first_row, paths):
        if isinstance(value, bool):
            continue
        if isinstance(value, str) and value:
            return value
        if isinstance(value, (int, float)):
            return str(value)
    return None


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > _EPOCH_MILLIS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda m: f"{m.group(1)}.{(m.group(2) + '00000')[:6]}", text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


# ----------------------------------------------------------------------
# Result shapes


def _extract_table(document: Mapping[str, Any]):
    columnar = _columnar_table(document)
    if columnar is not None:
        return columnar
    for path in OBJECT_LIST_PATHS:
        table = _object_table(_lookup(document, path))
        if table is not None:
            return table
    return (), (), (), {}


def _columnar_table(document: Mapping[str, Any]):
    descriptors = document.get("columns")
    if not isinstance(descriptors, list):
        return None
    names: List[str] = []
    types: List[Optional[str]] = []
    for descriptor in descriptors:
        if isinstance(descriptor, str):
            names.append(descriptor)
            types.append(None)
        elif isinstance(descriptor, dict) and isinstance(descriptor.get("name"), str):
            names.append(descriptor["name"])
            column_type = descriptor.get("type")
            types.append(column_type if isinstance(column_type, str) else None)
        else:
            return None

    raw_rows: Any = []
    for key in COLUMNAR_ROW_KEYS:
        if key in document:
            raw_rows = document[key]
            break
    if not isinstance(raw_rows, list):
        return None

    width = len(names)
    rows: List[Tuple[Any, ...]] = []
    mismatched: Dict[int, int] = {}
    for index, row in enumerate(raw_rows):
        cells = list(row) if isinstance(row, list) else [row]
        if not isinstance(row, list) or len(cells) != width:
            mismatched[index] = len(cells)
            cells = (cells + [None] * width)[:width]
        rows.append(tuple(cells))
    return tuple(names), tuple(types), tuple(rows), mismatched


def _object_table(items: Any):
    if not isinstance(items, list) or not items:
        return None
    objects: List[Mapping[str, Any]] = []
    for item in items:
        if not isinstance(item, dict):
            return None
        source = item.get("_source")
        objects.append(source if isinstance(source, dict) else item)

    names: List[str] = []
    for obj in objects:
        for key in obj:
            if key not in names:
                names.append(key)
    rows = tuple(tuple(obj.get(name) for name in names) for obj in objects)
    return tuple(names), (None,) * len(names), rows, {}
