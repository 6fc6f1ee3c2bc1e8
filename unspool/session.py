"""Row sources, envelope accessors, settings, and shared helpers."""
from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from unspool.models import RawRow

logger = logging.getLogger(__name__)


# ── Settings ──────────────────────────────────────────────────────────

def output_format() -> str | None:
    """Default output format from the environment, or None to auto-detect."""
    fmt = os.environ.get("UNSPOOL_FORMAT", "").strip().lower()
    if fmt in ("human", "json"):
        return fmt
    return None


def log_level() -> int:
    name = os.environ.get("UNSPOOL_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else logging.WARNING
    if not isinstance(level, int):
        return logging.WARNING
    return level


# ── JSON helpers ──────────────────────────────────────────────────────

def iter_jsonl(path: Path) -> Iterator[dict]:
    """Yield parsed objects from a JSONL file, skipping bad lines."""
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                yield obj


def parse_object(text: str) -> dict | None:
    """Parse ``text`` as a JSON object; anything else returns None."""
    try:
        obj = json.loads(text)
    except (TypeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


# ── Envelope ──────────────────────────────────────────────────────────

class Envelope:
    """Thin wrapper over a decoded payload dict with typed property accessors."""

    __slots__ = ("raw",)

    def __init__(self, raw: dict):
        self.raw = raw

    @property
    def type(self) -> str:
        t = self.raw.get("type")
        return t.lower() if isinstance(t, str) else ""

    @property
    def role(self) -> str:
        r = self.raw.get("role")
        return r.lower() if isinstance(r, str) else ""

    @property
    def raw_json(self) -> str | None:
        r = self.raw.get("raw_json")
        return r if isinstance(r, str) else None

    @property
    def message(self) -> dict:
        m = self.raw.get("message")
        return m if isinstance(m, dict) else {}

    @property
    def message_text(self) -> str:
        m = self.raw.get("message")
        return m if isinstance(m, str) else ""

    @property
    def message_role(self) -> str:
        r = self.message.get("role")
        return r.lower() if isinstance(r, str) else ""

    @property
    def content(self) -> Any:
        return self.message.get("content")

    @property
    def items(self) -> list[Any] | None:
        """``message.content`` when it is a list, else None."""
        c = self.content
        return c if isinstance(c, list) else None

    @property
    def parent_tool_use_id(self) -> str | None:
        p = self.raw.get("parent_tool_use_id")
        return p if isinstance(p, str) and p else None

    @property
    def is_error(self) -> bool:
        return self.raw.get("is_error") is True

    @property
    def result(self) -> str:
        r = self.raw.get("result")
        return r if isinstance(r, str) else ""

    @property
    def tool_uses(self) -> list[dict]:
        return [b for b in self.items or [] if isinstance(b, dict) and b.get("type") == "tool_use"]

    @property
    def tool_results(self) -> list[dict]:
        return [b for b in self.items or [] if isinstance(b, dict) and b.get("type") == "tool_result"]


# ── Row source ────────────────────────────────────────────────────────

class FixtureError(ValueError):
    """A row file could not be read as a list of rows."""


def row_from_dict(obj: dict) -> RawRow | None:
    """Build a RawRow from a loosely keyed row object, or None if unusable."""
    row_id = obj.get("id")
    payload = obj.get("payload", obj.get("content"))
    if row_id is None or not isinstance(payload, str):
        return None
    seq = obj.get("sequence_number", obj.get("sequenceNumber", 0))
    if isinstance(seq, bool):
        return None
    try:
        seq = int(seq)
    except (TypeError, ValueError):
        return None
    ts = obj.get("created_at", obj.get("createdAt", obj.get("timestamp")))
    return RawRow(
        id=str(row_id),
        sequence_number=seq,
        created_at=parse_ts(ts) if isinstance(ts, str) else None,
        payload=payload,
    )


def _rows_from_objects(objects, path: Path) -> list[RawRow]:
    rows = []
    for i, obj in enumerate(objects):
        row = row_from_dict(obj) if isinstance(obj, dict) else None
        if row is None:
            logger.warning("Skipping malformed row %d in %s", i, path)
            continue
        rows.append(row)
    return rows


def load_rows(path: Path) -> list[RawRow]:
    """Load rows from a JSONL file, a JSON list, or an exported session fixture."""
    path = Path(path)
    if not path.is_file():
        raise FixtureError(f"No such row file: {path}")

    if path.suffix == ".jsonl":
        return _rows_from_objects(iter_jsonl(path), path)

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise FixtureError(f"Cannot read {path}: {e}") from e

    if isinstance(data, list):
        return _rows_from_objects(data, path)
    if isinstance(data, dict) and isinstance(data.get("messages"), list):
        return _rows_from_objects(data["messages"], path)
    raise FixtureError(f"{path} is neither a row list nor a session fixture")


# ── Formatting helpers ────────────────────────────────────────────────

def short_id(full_id: str) -> str:
    return full_id[:8]


def parse_ts(ts: str | None) -> datetime | None:
    if not ts:
        return None
    try:
        return datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


def relative_delta(a: datetime | None, b: datetime | None) -> str:
    if not a or not b:
        return ""
    delta = (b - a).total_seconds()
    if delta < 1:
        return ""
    if delta < 60:
        return f"{delta:.0f}s"
    if delta < 3600:
        return f"{delta / 60:.0f}m"
    return f"{delta / 3600:.1f}h"


def compact_json(obj: Any, max_len: int | None = 120) -> str:
    try:
        s = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        s = str(obj)
    if max_len is not None and len(s) > max_len:
        s = s[:max_len] + "..."
    return s


def shorten_path(path: str) -> str:
    """Keep the last two components of a slash-separated path."""
    parts = [p for p in path.split("/") if p]
    if len(parts) <= 2:
        return path
    return "/".join(parts[-2:])


def truncate_lines(text: str, max_lines: int = 3) -> str:
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text
    kept = "\n".join(lines[:max_lines])
    remaining = len(lines) - max_lines
    return f"{kept}\n... ({remaining} more lines)"


_WS_RE = re.compile(r"\s+")


def preview(text: str, max_len: int = 80) -> str:
    """Single-line preview of a text block."""
    text = _WS_RE.sub(" ", text).strip()
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text
