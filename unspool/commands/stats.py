"""Timeline statistics command."""
from __future__ import annotations

from collections import Counter
from pathlib import Path

from unspool.merger import dedupe_rows, merge_rows
from unspool.models import ErrorBlock, SubAgentBlock, TextBlock, ToolUseBlock
from unspool.session import load_rows


def cmd_stats(path: Path) -> dict:
    """Extract statistics from a row file and return as a structured dict."""
    path = Path(path)
    rows = load_rows(path)
    unique = dedupe_rows(rows)
    result = merge_rows(rows)

    # Message counts
    by_role: Counter[str] = Counter()
    blocks: Counter[str] = Counter()

    # Tool aggregation, nested tools included
    tool_by_name: Counter[str] = Counter()
    tool_status: Counter[str] = Counter()

    # Sub-agents
    agent_by_type: Counter[str] = Counter()
    agent_status: Counter[str] = Counter()

    for msg in result.messages:
        by_role[msg.role.value] += 1
        for block in msg.parsed_content:
            if isinstance(block, TextBlock):
                blocks["text"] += 1
            elif isinstance(block, ErrorBlock):
                blocks["error"] += 1
            elif isinstance(block, ToolUseBlock):
                blocks["tool_use"] += 1
                tool_by_name[block.tool.tool_name] += 1
                tool_status[block.tool.status.value] += 1
            elif isinstance(block, SubAgentBlock):
                blocks["subagent"] += 1
                activity = block.activity
                agent_by_type[activity.subagent_type] += 1
                agent_status[activity.status.value] += 1
                for tool in activity.tools:
                    tool_by_name[tool.tool_name] += 1
                    tool_status[tool.status.value] += 1

    # Timing
    stamps = [r.created_at for r in unique if r.created_at is not None]
    if stamps:
        duration_secs = int((max(stamps) - min(stamps)).total_seconds())
    else:
        duration_secs = 0

    total_calls = sum(tool_by_name.values())
    failed = tool_status.get("failed", 0)

    return {
        "source": str(path),
        "duration_secs": duration_secs,
        "rows": {
            "total": len(rows),
            "unique": len(unique),
            "duplicates": len(rows) - len(unique),
            "without_message": len(unique) - len(result.messages),
        },
        "messages": {
            "total": len(result.messages),
            "by_role": dict(by_role),
        },
        "blocks": dict(blocks),
        "tools": {
            "total_calls": total_calls,
            "by_name": dict(tool_by_name),
            "by_status": dict(tool_status),
            "error_rate": failed / total_calls if total_calls > 0 else 0.0,
        },
        "subagents": {
            "count": sum(agent_by_type.values()),
            "by_type": dict(agent_by_type),
            "by_status": dict(agent_status),
        },
    }
