"""Timeline data model: rows, content blocks, records, and display groups."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


# ── Status lattice ────────────────────────────────────────────────────

class ToolStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ToolStatus.RUNNING

    def join(self, other: ToolStatus) -> ToolStatus:
        """Least upper bound of two observations.

        ``running`` is the bottom. A terminal status never goes back to
        ``running``; when the two terminals disagree ``failed`` wins.
        """
        if self is other:
            return self
        if self is ToolStatus.RUNNING:
            return other
        if other is ToolStatus.RUNNING:
            return self
        return ToolStatus.FAILED


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# ── Records ───────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ToolUseRecord:
    tool_name: str
    summary: str
    status: ToolStatus = ToolStatus.COMPLETED
    tool_use_id: str | None = None
    parent_tool_use_id: str | None = None
    input: str | None = None
    output: str | None = None


@dataclass(frozen=True, slots=True)
class SubAgentRecord:
    parent_tool_use_id: str
    subagent_type: str
    description: str
    status: ToolStatus = ToolStatus.RUNNING
    result: str | None = None
    tools: tuple[ToolUseRecord, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolResultRecord:
    """A ``tool_result`` observation, used to settle tool status."""

    tool_use_id: str
    is_error: bool = False
    output: str | None = None


# ── Content blocks ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ErrorBlock:
    message: str


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    tool: ToolUseRecord


@dataclass(frozen=True, slots=True)
class SubAgentBlock:
    activity: SubAgentRecord


ContentBlock = Union[TextBlock, ErrorBlock, ToolUseBlock, SubAgentBlock]


@dataclass(frozen=True, slots=True)
class TimelineEntry:
    role: Role
    blocks: tuple[ContentBlock, ...] = ()


# ── Rows and messages ─────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class RawRow:
    id: str
    sequence_number: int
    created_at: datetime | None
    payload: str


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    role: Role
    content: str
    parsed_content: tuple[ContentBlock, ...]
    sequence_number: int
    created_at: datetime | None


@dataclass(frozen=True, slots=True)
class MergeResult:
    messages: tuple[Message, ...] = ()
    decrypted_message_count: int = 0


# ── Display groups ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Passthrough:
    block: ContentBlock


@dataclass(frozen=True, slots=True)
class ParallelSubAgentGroup:
    activities: tuple[SubAgentRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class StandaloneToolGroup:
    tools: tuple[ToolUseRecord, ...] = field(default_factory=tuple)


DisplayBlock = Union[Passthrough, ParallelSubAgentGroup, StandaloneToolGroup]


def flatten_text(blocks) -> str:
    """Join the visible text of Text and Error blocks, one per line."""
    parts = []
    for block in blocks:
        if isinstance(block, TextBlock):
            text = block.text.strip()
        elif isinstance(block, ErrorBlock):
            text = block.message.strip()
        else:
            continue
        if text:
            parts.append(text)
    return "\n".join(parts).strip()
