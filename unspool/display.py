"""Display planner: cluster one message's blocks for grouped rendering."""
from __future__ import annotations

from typing import Iterable

from unspool.models import (
    ContentBlock, DisplayBlock, ParallelSubAgentGroup, Passthrough,
    StandaloneToolGroup, SubAgentBlock, ToolUseBlock,
)


def plan_display(blocks: Iterable[ContentBlock]) -> tuple[DisplayBlock, ...]:
    """Collapse consecutive sub-agents and consecutive tool uses into groups.

    Text and error blocks pass through one by one and break any run. Block
    order is preserved.
    """
    out: list[DisplayBlock] = []
    run_kind: type | None = None
    run: list = []

    def close_run():
        nonlocal run_kind
        if run_kind is SubAgentBlock:
            out.append(ParallelSubAgentGroup(tuple(run)))
        elif run_kind is ToolUseBlock:
            out.append(StandaloneToolGroup(tuple(run)))
        run.clear()
        run_kind = None

    for block in blocks:
        if isinstance(block, SubAgentBlock):
            if run_kind is not SubAgentBlock:
                close_run()
                run_kind = SubAgentBlock
            run.append(block.activity)
        elif isinstance(block, ToolUseBlock):
            if run_kind is not ToolUseBlock:
                close_run()
                run_kind = ToolUseBlock
            run.append(block.tool)
        else:
            close_run()
            out.append(Passthrough(block))
    close_run()
    return tuple(out)
