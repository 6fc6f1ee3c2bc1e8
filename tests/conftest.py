"""Shared fixtures for unspool tests."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from unspool.models import RawRow

BASE_TS = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_row():
    """Factory: build a RawRow; dict payloads are JSON-encoded, ``t`` is seconds past BASE_TS."""
    def _make(row_id: str, seq: int, payload, t: int | None = None) -> RawRow:
        if not isinstance(payload, str):
            payload = json.dumps(payload)
        created_at = BASE_TS + timedelta(seconds=t) if t is not None else None
        return RawRow(id=row_id, sequence_number=seq, created_at=created_at, payload=payload)
    return _make


@pytest.fixture
def tmp_jsonl(tmp_path):
    """Factory: write a list of dicts as a JSONL file, return path."""
    def _make(records: list[dict], name: str = "rows.jsonl") -> Path:
        p = tmp_path / name
        with open(p, "w") as f:
            for rec in records:
                f.write(json.dumps(rec) + "\n")
        return p
    return _make


def _ts(t: int) -> str:
    return (BASE_TS + timedelta(seconds=t)).isoformat().replace("+00:00", "Z")


@pytest.fixture
def sample_records():
    """Row objects for a short session: prompt, delegation, tool failure, error, duplicate."""
    return [
        {
            "id": "u1",
            "sequence_number": 1,
            "created_at": _ts(0),
            "payload": json.dumps({"type": "user_prompt_command", "message": "Find the config loader"}),
        },
        {
            "id": "a2",
            "sequence_number": 2,
            "created_at": _ts(10),
            "payload": json.dumps({
                "type": "assistant",
                "message": {"role": "assistant", "content": [
                    {"type": "text", "text": "On it."},
                    {"type": "tool_use", "id": "t1", "name": "Task",
                     "input": {"subagent_type": "Explore", "description": "Search for config"}},
                    {"type": "tool_use", "id": "r1", "name": "Read", "parent_tool_use_id": "t1",
                     "input": {"file_path": "/repo/src/config.py"}},
                    {"type": "tool_use", "id": "b1", "name": "Bash",
                     "input": {"command": "ls /repo/missing"}},
                ]},
            }),
        },
        {
            "id": "u3",
            "sequence_number": 3,
            "created_at": _ts(20),
            "payload": json.dumps({
                "type": "user",
                "message": {"role": "user", "content": [
                    {"type": "tool_result", "tool_use_id": "b1", "is_error": True,
                     "content": "ls: cannot access '/repo/missing'"},
                ]},
            }),
        },
        {
            "id": "r4",
            "sequence_number": 4,
            "created_at": _ts(30),
            "payload": json.dumps({"type": "result", "is_error": True, "result": "Session crashed"}),
        },
        {
            "id": "u1",
            "sequence_number": 1,
            "created_at": _ts(5),
            "payload": json.dumps({"type": "user_prompt_command", "message": "Find the config loader, please"}),
        },
    ]


@pytest.fixture
def sample_file(tmp_jsonl, sample_records):
    return tmp_jsonl(sample_records)
