"""Row merger: raw rows in, deduplicated and ordered messages out.

The merge is recomputed from the full row set on every call. Rows are
deduplicated by id (latest ``created_at`` wins), ordered by
``(sequence_number, created_at, id)``, decoded one by one, and folded:
repeated observations of the same sub-agent (by ``parent_tool_use_id``) or
standalone tool (by ``tool_use_id``) collapse into the block owned by the
first message that showed it. Messages are only built once the fold is done.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable

from unspool.decoder import DEFAULT_SUBAGENT_TYPE, decode_payload, extract_tool_results
from unspool.models import (
    MergeResult, Message, RawRow, SubAgentBlock, SubAgentRecord, TimelineEntry,
    ToolResultRecord, ToolStatus, ToolUseBlock, ToolUseRecord, flatten_text,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_SUBAGENT_TYPES = frozenset({
    "", "unknown", "general-purpose", "general purpose", "general",
})


# ── Ordering and deduplication ────────────────────────────────────────

def _ts_key(ts: datetime | None) -> float:
    return ts.timestamp() if ts is not None else float("-inf")


def row_sort_key(row: RawRow) -> tuple[int, float, str]:
    return (row.sequence_number, _ts_key(row.created_at), row.id)


def dedupe_rows(rows: Iterable[RawRow]) -> list[RawRow]:
    """Keep one row per id: the one with the latest ``created_at``.

    On equal ``created_at`` the row seen later in ``rows`` wins.
    """
    latest: dict[str, RawRow] = {}
    for row in rows:
        current = latest.get(row.id)
        if current is None or _ts_key(row.created_at) >= _ts_key(current.created_at):
            latest[row.id] = row
    return list(latest.values())


# ── Field merge policy ────────────────────────────────────────────────

def is_placeholder_type(value: str) -> bool:
    return value.strip().lower() in PLACEHOLDER_SUBAGENT_TYPES


def merge_tool(existing: ToolUseRecord, incoming: ToolUseRecord) -> ToolUseRecord:
    return ToolUseRecord(
        tool_name=incoming.tool_name or existing.tool_name,
        summary=incoming.summary if incoming.summary.strip() else existing.summary,
        status=existing.status.join(incoming.status),
        tool_use_id=existing.tool_use_id or incoming.tool_use_id,
        parent_tool_use_id=incoming.parent_tool_use_id or existing.parent_tool_use_id,
        input=incoming.input if incoming.input is not None else existing.input,
        output=incoming.output if incoming.output is not None else existing.output,
    )


def merge_tools(existing: tuple[ToolUseRecord, ...],
                incoming: Iterable[ToolUseRecord]) -> tuple[ToolUseRecord, ...]:
    """Union by ``tool_use_id``; new ids append, known ids update in place."""
    merged = list(existing)
    at = {t.tool_use_id: i for i, t in enumerate(merged) if t.tool_use_id is not None}
    for tool in incoming:
        idx = at.get(tool.tool_use_id) if tool.tool_use_id is not None else None
        if idx is None:
            if tool.tool_use_id is not None:
                at[tool.tool_use_id] = len(merged)
            merged.append(tool)
        else:
            merged[idx] = merge_tool(merged[idx], tool)
    return tuple(merged)


def merge_subagent(existing: SubAgentRecord, incoming: SubAgentRecord) -> SubAgentRecord:
    if is_placeholder_type(incoming.subagent_type) and not is_placeholder_type(existing.subagent_type):
        subagent_type = existing.subagent_type
    else:
        subagent_type = incoming.subagent_type
    return SubAgentRecord(
        parent_tool_use_id=existing.parent_tool_use_id,
        subagent_type=subagent_type,
        description=incoming.description if incoming.description.strip() else existing.description,
        status=existing.status.join(incoming.status),
        result=incoming.result if incoming.result is not None else existing.result,
        tools=merge_tools(existing.tools, incoming.tools),
    )


def new_subagent(parent_tool_use_id: str) -> SubAgentRecord:
    """Accumulator for an activity not yet observed: nothing is finished."""
    return SubAgentRecord(
        parent_tool_use_id=parent_tool_use_id,
        subagent_type=DEFAULT_SUBAGENT_TYPE,
        description="",
        status=ToolStatus.RUNNING,
    )


def apply_result(tool: ToolUseRecord, result: ToolResultRecord) -> ToolUseRecord:
    status = ToolStatus.FAILED if result.is_error else ToolStatus.COMPLETED
    return replace(
        tool,
        status=tool.status.join(status),
        output=result.output if result.output is not None else tool.output,
    )


# ── Fold ──────────────────────────────────────────────────────────────

class TimelineFold:
    """Accumulates the best-known state of every identified activity.

    Each folded entry becomes a list of slots: literal blocks, or references
    to an agent/tool key owned by that entry. References resolve against the
    accumulators only when messages are materialized.
    """

    def __init__(self, subagent_ids: set[str]):
        self.subagent_ids = subagent_ids
        self.agents: dict[str, SubAgentRecord] = {}
        self.tools: dict[str, ToolUseRecord] = {}
        self.tool_owner: dict[str, str] = {}
        self.placed_agents: set[str] = set()
        self.entries: list[tuple[RawRow, TimelineEntry, list]] = []

    def _agent(self, parent_tool_use_id: str) -> SubAgentRecord:
        agent = self.agents.get(parent_tool_use_id)
        if agent is None:
            agent = new_subagent(parent_tool_use_id)
        return agent

    def add(self, row: RawRow, entry: TimelineEntry) -> None:
        slots: list = []
        for block in entry.blocks:
            if isinstance(block, SubAgentBlock):
                key = block.activity.parent_tool_use_id
                self.agents[key] = merge_subagent(self._agent(key), block.activity)
                for tool in block.activity.tools:
                    if tool.tool_use_id is not None:
                        self.tool_owner[tool.tool_use_id] = key
                # children may have created the accumulator already
                if key not in self.placed_agents:
                    self.placed_agents.add(key)
                    slots.append(("agent", key))
            elif isinstance(block, ToolUseBlock):
                slot = self._add_tool(block.tool)
                if slot is not None:
                    slots.append(slot)
            else:
                slots.append(("block", block))
        self.entries.append((row, entry, slots))

    def _add_tool(self, tool: ToolUseRecord):
        parent = tool.parent_tool_use_id
        if parent is not None and parent in self.subagent_ids:
            agent = self._agent(parent)
            self.agents[parent] = replace(agent, tools=merge_tools(agent.tools, [tool]))
            if tool.tool_use_id is not None:
                self.tool_owner[tool.tool_use_id] = parent
            return None
        if tool.tool_use_id is None:
            return ("block", ToolUseBlock(tool))
        existing = self.tools.get(tool.tool_use_id)
        if existing is None:
            self.tools[tool.tool_use_id] = tool
            return ("tool", tool.tool_use_id)
        self.tools[tool.tool_use_id] = merge_tool(existing, tool)
        return None

    def apply(self, result: ToolResultRecord) -> None:
        key = result.tool_use_id
        if key in self.tools:
            self.tools[key] = apply_result(self.tools[key], result)
        elif key in self.tool_owner:
            agent = self.agents[self.tool_owner[key]]
            tools = tuple(
                apply_result(t, result) if t.tool_use_id == key else t
                for t in agent.tools
            )
            self.agents[agent.parent_tool_use_id] = replace(agent, tools=tools)
        elif key in self.agents:
            agent = self.agents[key]
            status = ToolStatus.FAILED if result.is_error else ToolStatus.COMPLETED
            self.agents[key] = replace(
                agent,
                status=agent.status.join(status),
                result=agent.result if agent.result is not None else result.output,
            )

    def _resolve(self, slot):
        kind, value = slot
        if kind == "agent":
            return SubAgentBlock(self.agents[value])
        if kind == "tool":
            return ToolUseBlock(self.tools[value])
        return value

    def messages(self) -> list[Message]:
        out = []
        for row, entry, slots in self.entries:
            if not slots:
                continue
            blocks = tuple(self._resolve(s) for s in slots)
            out.append(Message(
                id=row.id,
                role=entry.role,
                content=flatten_text(blocks),
                parsed_content=blocks,
                sequence_number=row.sequence_number,
                created_at=row.created_at,
            ))
        return out


def _subagent_ids(entries: Iterable[TimelineEntry]) -> set[str]:
    ids = set()
    for entry in entries:
        for block in entry.blocks:
            if isinstance(block, SubAgentBlock):
                ids.add(block.activity.parent_tool_use_id)
    return ids


# ── Entry point ───────────────────────────────────────────────────────

def merge_rows(rows: Iterable[RawRow], expected_count: int | None = None) -> MergeResult:
    """Rebuild the display timeline from every row seen so far.

    ``expected_count`` is reported back as ``decrypted_message_count`` when
    given; otherwise the count is the number of distinct row ids.
    """
    survivors = sorted(dedupe_rows(rows), key=row_sort_key)

    decoded: list[tuple[RawRow, TimelineEntry]] = []
    results: list[ToolResultRecord] = []
    for row in survivors:
        entry = decode_payload(row.payload)
        results.extend(extract_tool_results(row.payload))
        if entry is None:
            logger.debug("Row %s (seq %d) has no visible content", row.id, row.sequence_number)
            continue
        decoded.append((row, entry))

    fold = TimelineFold(_subagent_ids(entry for _row, entry in decoded))
    for row, entry in decoded:
        fold.add(row, entry)
    for result in results:
        fold.apply(result)

    messages = fold.messages()
    logger.debug("Merged %d rows into %d messages", len(survivors), len(messages))
    return MergeResult(
        messages=tuple(messages),
        decrypted_message_count=expected_count if expected_count is not None else len(survivors),
    )
