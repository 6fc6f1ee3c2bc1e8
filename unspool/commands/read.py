"""Read command — merged timeline as a canonical dict."""
from __future__ import annotations

from pathlib import Path

from unspool.display import plan_display
from unspool.merger import merge_rows
from unspool.models import (
    ErrorBlock, Message, ParallelSubAgentGroup, Passthrough, StandaloneToolGroup,
    SubAgentBlock, SubAgentRecord, TextBlock, ToolUseBlock, ToolUseRecord,
)
from unspool.session import load_rows


def tool_dict(tool: ToolUseRecord) -> dict:
    d: dict = {
        "tool_name": tool.tool_name,
        "summary": tool.summary,
        "status": tool.status.value,
    }
    if tool.tool_use_id:
        d["tool_use_id"] = tool.tool_use_id
    if tool.parent_tool_use_id:
        d["parent_tool_use_id"] = tool.parent_tool_use_id
    if tool.input is not None:
        d["input"] = tool.input
    if tool.output is not None:
        d["output"] = tool.output
    return d


def subagent_dict(activity: SubAgentRecord) -> dict:
    d: dict = {
        "parent_tool_use_id": activity.parent_tool_use_id,
        "subagent_type": activity.subagent_type,
        "description": activity.description,
        "status": activity.status.value,
        "tools": [tool_dict(t) for t in activity.tools],
    }
    if activity.result is not None:
        d["result"] = activity.result
    return d


def block_dict(block) -> dict:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ErrorBlock):
        return {"type": "error", "message": block.message}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", **tool_dict(block.tool)}
    if isinstance(block, SubAgentBlock):
        return {"type": "subagent", **subagent_dict(block.activity)}
    raise TypeError(f"Unknown content block: {block!r}")


def display_dict(group) -> dict:
    if isinstance(group, Passthrough):
        return {"kind": "block", "block": block_dict(group.block)}
    if isinstance(group, ParallelSubAgentGroup):
        return {"kind": "parallel_subagents",
                "activities": [subagent_dict(a) for a in group.activities]}
    if isinstance(group, StandaloneToolGroup):
        return {"kind": "tool_group", "tools": [tool_dict(t) for t in group.tools]}
    raise TypeError(f"Unknown display block: {group!r}")


def message_dict(msg: Message) -> dict:
    return {
        "id": msg.id,
        "role": msg.role.value,
        "sequence_number": msg.sequence_number,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
        "content": msg.content,
        "blocks": [block_dict(b) for b in msg.parsed_content],
        "display": [display_dict(g) for g in plan_display(msg.parsed_content)],
    }


def cmd_read(path: Path, expected_count: int | None = None) -> dict:
    """Return the merged conversation as canonical dict (for JSON output)."""
    path = Path(path)
    rows = load_rows(path)
    result = merge_rows(rows, expected_count=expected_count)
    return {
        "source": str(path),
        "rows": len(rows),
        "decrypted_message_count": result.decrypted_message_count,
        "messages": [message_dict(m) for m in result.messages],
    }
