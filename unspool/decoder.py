"""Payload decoder: one row payload in, at most one timeline entry out.

Payloads are opaque JSON envelopes emitted by an agent session. Some are
wrapped one or more times in ``{"raw_json": "<escaped payload>"}``. The
decoder unwraps them, resolves the speaker role, and turns the envelope into
an ordered tuple of content blocks:

- ``assistant``/``user`` envelopes carry ``message.content`` items
  (``text``, ``tool_use``, ``tool_result``). ``Task`` tool uses become
  sub-agent activities and sibling tool uses pointing at them are nested.
- command envelopes (``user_prompt_command`` ...) carry a ``message`` string.
- ``result`` envelopes are hidden unless ``is_error`` is set.
- ``terminal_output`` is rendered as ``[stream] content``.
- anything else gets best-effort text extraction.

Nothing here raises on bad input. Unparsable top-level payloads become plain
user text; unparsable nested payloads are dropped.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from unspool.models import (
    ErrorBlock, Role, SubAgentBlock, SubAgentRecord, TextBlock, TimelineEntry,
    ToolResultRecord, ToolStatus, ToolUseBlock, ToolUseRecord,
)
from unspool.session import Envelope, compact_json, parse_object, shorten_path

logger = logging.getLogger(__name__)

MAX_DEPTH = 8

DEFAULT_SUBAGENT_TYPE = "general-purpose"

COMMAND_TYPES = ("user_prompt_command", "user_confirmation_command", "mcq_response_command")
USER_TYPES = ("user",) + COMMAND_TYPES
ASSISTANT_TYPES = ("assistant", "result", "output_chunk", "streaming_thinking", "streaming_generating")

PROTOCOL_TYPES = frozenset({
    "assistant", "mcq_response_command", "output_chunk", "result", "stream_event",
    "streaming_generating", "streaming_thinking", "system", "terminal_output",
    "tool_result", "user", "user_confirmation_command", "user_prompt_command",
})

_TOOL_MARKERS = ('"tool_use"', '"tool_result"', '"tool_use_id"', '"raw_json"')

_STATUS_ALIASES = {
    "running": ToolStatus.RUNNING,
    "in_progress": ToolStatus.RUNNING,
    "pending": ToolStatus.RUNNING,
    "completed": ToolStatus.COMPLETED,
    "success": ToolStatus.COMPLETED,
    "done": ToolStatus.COMPLETED,
    "failed": ToolStatus.FAILED,
    "error": ToolStatus.FAILED,
}


class DecodeError(Exception):
    """A wrapped payload could not be unwrapped."""


# ── Entry points ──────────────────────────────────────────────────────

def decode_payload(payload: str) -> TimelineEntry | None:
    """Decode one row payload into a timeline entry, or None if hidden."""
    obj = parse_object(payload)
    if obj is None:
        text = payload.strip() if isinstance(payload, str) else ""
        if not text:
            return None
        return TimelineEntry(Role.USER, (TextBlock(text),))

    try:
        inner, wrapper_role = unwrap(obj)
    except DecodeError as e:
        logger.debug("Dropping wrapped payload: %s", e)
        return None
    return _decode_envelope(Envelope(inner), wrapper_role)


def extract_tool_results(payload: str) -> list[ToolResultRecord]:
    """Collect ``tool_result`` observations carried by a payload."""
    obj = parse_object(payload)
    if obj is None:
        return []
    try:
        inner, _role = unwrap(obj)
    except DecodeError:
        return []

    results = []
    for item in Envelope(inner).tool_results:
        tool_use_id = item.get("tool_use_id")
        if not isinstance(tool_use_id, str) or not tool_use_id:
            continue
        output = "\n".join(_fragments(item.get("content"))) or None
        results.append(ToolResultRecord(
            tool_use_id=tool_use_id,
            is_error=item.get("is_error") is True,
            output=output,
        ))
    return results


def unwrap(obj: dict) -> tuple[dict, Role | None]:
    """Follow ``raw_json`` wrappers down to the innermost envelope.

    Returns the innermost object and the first explicit role declared by
    any wrapper around it (None when no wrapper declares one).
    """
    wrapper_role = None
    for depth in range(MAX_DEPTH + 1):
        env = Envelope(obj)
        nested = env.raw_json
        if nested is None:
            return obj, wrapper_role
        if wrapper_role is None:
            wrapper_role = explicit_role(env)
        inner = parse_object(nested)
        if inner is None:
            raise DecodeError(f"raw_json at depth {depth} is not a JSON object")
        obj = inner
    raise DecodeError(f"raw_json nested deeper than {MAX_DEPTH}")


# ── Role resolution ───────────────────────────────────────────────────

def explicit_role(env: Envelope) -> Role | None:
    for value in (env.role, env.message_role):
        if value in ("user", "assistant", "system"):
            return Role(value)
    return None


def type_role(envelope_type: str) -> Role:
    if envelope_type in USER_TYPES:
        return Role.USER
    if envelope_type in ASSISTANT_TYPES:
        return Role.ASSISTANT
    return Role.SYSTEM


def resolve_role(payload: str) -> Role:
    """Role a payload speaks with, without decoding its content."""
    obj = parse_object(payload)
    if obj is None:
        return Role.SYSTEM
    try:
        inner, wrapper_role = unwrap(obj)
    except DecodeError:
        return Role.SYSTEM
    env = Envelope(inner)
    return wrapper_role or explicit_role(env) or type_role(env.type)


# ── Envelope dispatch ─────────────────────────────────────────────────

def _decode_envelope(env: Envelope, wrapper_role: Role | None) -> TimelineEntry | None:
    etype = env.type
    role = wrapper_role or explicit_role(env) or type_role(etype)

    if etype == "assistant":
        return _decode_assistant(env, role)
    if etype == "user":
        return _decode_user(env, role)
    if etype in COMMAND_TYPES:
        return _decode_command(env, role)
    if etype == "result":
        return _decode_result(env)
    if etype == "terminal_output":
        return _decode_terminal(env, role)
    if etype == "system":
        return None
    text = extract_visible_text(env.raw) or compact_json(env.raw, max_len=None)
    return TimelineEntry(role, (TextBlock(text),))


def _decode_assistant(env: Envelope, role: Role) -> TimelineEntry | None:
    items = env.items
    blocks = scan_items(items, env.parent_tool_use_id) if items is not None else []
    if not blocks:
        text = extract_visible_text(env.raw)
        if text is None:
            return None
        blocks = [TextBlock(text)]
    return TimelineEntry(role, tuple(blocks))


def _decode_user(env: Envelope, role: Role) -> TimelineEntry | None:
    items = env.items
    if items is None:
        text = extract_visible_text(env.raw)
        if text is None or looks_like_envelope(text):
            return None
        return TimelineEntry(role, (TextBlock(text),))

    # tool_result items never surface; embedded envelopes are not user text
    blocks = [
        b for b in scan_items(items, env.parent_tool_use_id)
        if not (isinstance(b, TextBlock) and looks_like_envelope(b.text))
    ]
    if not any(isinstance(b, TextBlock) for b in blocks):
        return None
    return TimelineEntry(role, tuple(blocks))


def _decode_command(env: Envelope, role: Role) -> TimelineEntry | None:
    text = env.message_text.strip() or extract_visible_text(env.raw)
    if not text:
        return None
    return TimelineEntry(role, (TextBlock(text),))


def _decode_result(env: Envelope) -> TimelineEntry | None:
    if not env.is_error:
        return None
    message = env.result.strip() or compact_json(env.raw, max_len=None)
    return TimelineEntry(Role.SYSTEM, (ErrorBlock(message),))


def _decode_terminal(env: Envelope, role: Role) -> TimelineEntry | None:
    stream = env.raw.get("stream")
    content = env.raw.get("content")
    if not isinstance(stream, str) or not isinstance(content, str):
        return None
    content = content.strip()
    if not content:
        return None
    return TimelineEntry(role, (TextBlock(f"[{stream}] {content}"),))


# ── Content items ─────────────────────────────────────────────────────

def scan_items(items: list[Any], message_parent: str | None = None) -> list:
    """Turn ``message.content`` items into content blocks.

    Tool uses whose parent is a ``Task`` in the same list are nested under
    that sub-agent; all others stay standalone. Repeated ids collapse to one
    block at the first-seen position carrying the latest fields.
    """
    parsed: list = []
    task_ids: set[str] = set()
    for item in items:
        if isinstance(item, str):
            if item.strip():
                parsed.append(TextBlock(item))
            continue
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "text":
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                parsed.append(TextBlock(text))
        elif kind == "tool_use":
            record = parse_tool_use(item, message_parent)
            if record is None:
                continue
            if isinstance(record, SubAgentRecord):
                task_ids.add(record.parent_tool_use_id)
            parsed.append(record)

    blocks: list = []
    agent_at: dict[str, int] = {}
    tool_at: dict[str, int] = {}
    nested: dict[str, list[ToolUseRecord]] = {}
    for entry in parsed:
        if isinstance(entry, TextBlock):
            blocks.append(entry)
        elif isinstance(entry, SubAgentRecord):
            idx = agent_at.get(entry.parent_tool_use_id)
            if idx is None:
                agent_at[entry.parent_tool_use_id] = len(blocks)
                blocks.append(SubAgentBlock(entry))
            else:
                blocks[idx] = SubAgentBlock(entry)
        elif entry.parent_tool_use_id in task_ids:
            nested.setdefault(entry.parent_tool_use_id, []).append(entry)
        elif entry.tool_use_id is None:
            blocks.append(ToolUseBlock(entry))
        else:
            idx = tool_at.get(entry.tool_use_id)
            if idx is None:
                tool_at[entry.tool_use_id] = len(blocks)
                blocks.append(ToolUseBlock(entry))
            else:
                blocks[idx] = ToolUseBlock(entry)

    for task_id, idx in agent_at.items():
        children = nested.get(task_id)
        if children:
            activity = blocks[idx].activity
            blocks[idx] = SubAgentBlock(replace(activity, tools=dedupe_tools(children)))
    return blocks


def dedupe_tools(tools) -> tuple[ToolUseRecord, ...]:
    """Collapse repeated tool ids: latest fields win, first position is kept."""
    out: list[ToolUseRecord] = []
    at: dict[str, int] = {}
    for tool in tools:
        if tool.tool_use_id is None:
            out.append(tool)
        elif tool.tool_use_id in at:
            out[at[tool.tool_use_id]] = tool
        else:
            at[tool.tool_use_id] = len(out)
            out.append(tool)
    return tuple(out)


def parse_tool_use(item: dict, message_parent: str | None = None):
    """Parse a ``tool_use`` item into a ToolUseRecord or SubAgentRecord."""
    name = item.get("name")
    if not isinstance(name, str) or not name:
        return None
    tool_use_id = _str_or_none(item.get("id"))
    inp = item.get("input")
    if not isinstance(inp, dict):
        inp = None
    status = parse_status(item)

    if name == "Task" and tool_use_id:
        return SubAgentRecord(
            parent_tool_use_id=tool_use_id,
            subagent_type=_input_str(inp, "subagent_type") or DEFAULT_SUBAGENT_TYPE,
            description=_input_str(inp, "description"),
            status=status,
            result=_text_or_none(item.get("result")),
        )

    return ToolUseRecord(
        tool_name=name,
        summary=tool_summary(name, inp),
        status=status,
        tool_use_id=tool_use_id,
        parent_tool_use_id=_str_or_none(item.get("parent_tool_use_id")) or message_parent,
        input=compact_json(inp, max_len=None) if inp is not None else None,
        output=_text_or_none(item.get("result")) or _text_or_none(item.get("output")),
    )


def parse_status(item: dict) -> ToolStatus:
    """Status of a tool snapshot; a snapshot without one is already finished."""
    if item.get("is_error") is True:
        return ToolStatus.FAILED
    raw = item.get("status")
    if isinstance(raw, str):
        return _STATUS_ALIASES.get(raw.strip().lower(), ToolStatus.COMPLETED)
    return ToolStatus.COMPLETED


def tool_summary(name: str, inp: dict | None) -> str:
    if not inp:
        return name

    def field(key: str) -> str:
        return _input_str(inp, key)

    if name in ("Read", "Write", "Edit") and field("file_path"):
        return f"{name} {shorten_path(field('file_path'))}"
    if name == "Bash" and field("command"):
        command = field("command")
        return command[:60] + "..." if len(command) > 60 else command
    if name in ("Grep", "Glob") and field("pattern"):
        return f"{name} {field('pattern')}"
    if name == "WebSearch" and field("query"):
        return f"Search: {field('query')}"
    if name == "WebFetch" and field("url"):
        return f"Fetch {field('url')}"
    if name == "Task" and field("description"):
        return field("description")
    if name == "NotebookEdit" and field("notebook_path"):
        return f"Edit {shorten_path(field('notebook_path'))}"
    return name


# ── Text extraction ───────────────────────────────────────────────────

def extract_visible_text(obj: dict) -> str | None:
    """Best-effort text from an envelope of unknown shape."""
    for key in ("text", "message"):
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()

    message = obj.get("message")
    if isinstance(message, dict):
        text = message.get("text")
        if isinstance(text, str) and text.strip():
            return text.strip()
        fragments = _fragments(message.get("content"))
        if fragments:
            return "\n".join(fragments)

    fragments = _fragments(obj.get("content"))
    if fragments:
        return "\n".join(fragments)
    return None


def looks_like_envelope(text: str) -> bool:
    """True when ``text`` is a serialized protocol payload, not human text."""
    s = text.strip()
    if not (s.startswith("{") and s.endswith("}")):
        return False

    obj = parse_object(s)
    if obj is None:
        lowered = s.lower()
        return '"type"' in lowered and any(m in lowered for m in _TOOL_MARKERS)

    env = Envelope(obj)
    if env.raw_json is not None or env.type in PROTOCOL_TYPES:
        return True
    return any(
        isinstance(b, dict) and b.get("type") in ("tool_use", "tool_result")
        for b in env.items or []
    )


def _fragments(value: Any) -> list[str]:
    """Non-blank strings found in a value, looking one level into containers."""
    if isinstance(value, str):
        candidates = [value]
    elif isinstance(value, list):
        candidates = []
        for item in value:
            if isinstance(item, str):
                candidates.append(item)
            elif isinstance(item, dict):
                candidates.append(_dict_text(item))
    elif isinstance(value, dict):
        candidates = [_dict_text(value)]
    else:
        return []
    return [c.strip() for c in candidates if isinstance(c, str) and c.strip()]


def _dict_text(obj: dict) -> str | None:
    for key in ("text", "content"):
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _input_str(inp: dict | None, key: str) -> str:
    if not inp:
        return ""
    value = inp.get(key)
    return value if isinstance(value, str) else ""


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _text_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None
