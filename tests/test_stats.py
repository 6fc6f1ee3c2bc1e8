"""Tests for unspool.commands.stats."""
from __future__ import annotations

import pytest

from unspool.commands.stats import cmd_stats


class TestCmdStats:
    def test_full_stats(self, sample_file):
        data = cmd_stats(sample_file)
        assert data["source"] == str(sample_file)
        assert data["duration_secs"] == 25
        assert data["messages"]["total"] == 3

    def test_row_counts(self, sample_file):
        rows = cmd_stats(sample_file)["rows"]
        assert rows == {"total": 5, "unique": 4, "duplicates": 1, "without_message": 1}

    def test_roles(self, sample_file):
        by_role = cmd_stats(sample_file)["messages"]["by_role"]
        assert by_role == {"user": 1, "assistant": 1, "system": 1}

    def test_blocks(self, sample_file):
        blocks = cmd_stats(sample_file)["blocks"]
        assert blocks == {"text": 2, "subagent": 1, "tool_use": 1, "error": 1}

    def test_tools_include_nested(self, sample_file):
        tools = cmd_stats(sample_file)["tools"]
        assert tools["by_name"] == {"Read": 1, "Bash": 1}
        assert tools["total_calls"] == 2
        assert tools["by_status"] == {"completed": 1, "failed": 1}
        assert tools["error_rate"] == pytest.approx(0.5)

    def test_subagents(self, sample_file):
        agents = cmd_stats(sample_file)["subagents"]
        assert agents["count"] == 1
        assert agents["by_type"] == {"Explore": 1}
        assert agents["by_status"] == {"completed": 1}

    def test_empty_file(self, tmp_jsonl):
        data = cmd_stats(tmp_jsonl([]))
        assert data["duration_secs"] == 0
        assert data["messages"]["total"] == 0
        assert data["tools"]["error_rate"] == 0.0
