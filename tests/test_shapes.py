"""Tests for unspool.commands.shapes."""
from __future__ import annotations

import json

import pytest

from unspool.commands.shapes import cmd_shapes, deep_walk, fingerprint

ASSISTANT = {"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}}


@pytest.fixture
def shapes_file(tmp_jsonl):
    return tmp_jsonl([
        {"id": "p1", "sequence_number": 1, "payload": "plain words"},
        {"id": "w2", "sequence_number": 2, "payload": json.dumps({"raw_json": json.dumps(ASSISTANT)})},
        {"id": "a3", "sequence_number": 3, "payload": json.dumps(ASSISTANT)},
        {"id": "b4", "sequence_number": 4, "payload": json.dumps({"raw_json": "{broken"})},
        {"id": "u5", "sequence_number": 5,
         "payload": json.dumps({"type": "user_prompt_command", "message": "go"})},
    ])


class TestFingerprint:
    def test_deterministic(self):
        rec = {"type": "user", "message": {"content": "hi"}}
        assert fingerprint(rec) == fingerprint(rec)

    def test_different_types_differ(self):
        assert fingerprint({"type": "user"}) != fingerprint({"type": "assistant"})

    def test_different_keys_differ(self):
        assert fingerprint({"type": "user", "a": 1}) != fingerprint({"type": "user", "b": 1})

    def test_content_blocks_influence(self):
        r1 = {"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}}
        r2 = {"type": "assistant", "message": {"content": [
            {"type": "text", "text": "hi"},
            {"type": "tool_use", "name": "Read"},
        ]}}
        assert fingerprint(r1) != fingerprint(r2)

    def test_values_ignored(self):
        r1 = {"type": "assistant", "message": {"content": [{"type": "text", "text": "a"}]}}
        r2 = {"type": "assistant", "message": {"content": [{"type": "text", "text": "b"}]}}
        assert fingerprint(r1) == fingerprint(r2)

    def test_length(self):
        assert len(fingerprint({"type": "user"})) == 12


class TestDeepWalk:
    def test_simple_dict(self):
        path_dict = dict(deep_walk({"a": 1, "b": "hello"}))
        assert path_dict["$"] == "dict"
        assert path_dict["$.a"] == "int"
        assert path_dict["$.b"] == "str"

    def test_list_collapse(self):
        path_dict = dict(deep_walk({"items": [{"x": 1}, {"x": 2}]}))
        assert path_dict["$.items"] == "list"
        assert path_dict["$.items[*]"] == "dict"
        assert path_dict["$.items[*].x"] == "int"

    def test_max_depth(self):
        deep = {"a": {"b": {"c": {"d": {"e": {"f": 1}}}}}}
        path_strs = [p for p, _ in deep_walk(deep, max_depth=3)]
        assert "$.a.b.c" in path_strs
        assert "$.a.b.c.d.e.f" not in path_strs

    def test_empty_list(self):
        path_dict = dict(deep_walk({"items": []}))
        assert "$.items[*]" not in path_dict


class TestCmdShapes:
    def test_inventory(self, shapes_file):
        data = cmd_shapes(shapes_file)
        assert data["payloads"] == {"plain": 1, "broken": 1, "wrapped": 1}
        by_type = {s["type"]: s for s in data["shapes"]}
        assert set(by_type) == {"assistant", "user_prompt_command"}
        assert by_type["assistant"]["count"] == 2
        assert by_type["assistant"]["role"] == "assistant"
        assert by_type["assistant"]["example_id"] == "w2"
        assert by_type["user_prompt_command"]["role"] == "user"

    def test_most_common_first(self, shapes_file):
        shapes = cmd_shapes(shapes_file)["shapes"]
        assert shapes[0]["type"] == "assistant"

    def test_deep_mode(self, shapes_file):
        data = cmd_shapes(shapes_file, deep=True)
        for shape in data["shapes"]:
            assert {"path": "$", "type": "dict"} in shape["paths"]

    def test_verify_roundtrip(self, shapes_file, tmp_path):
        verify_file = tmp_path / "shapes.json"
        verify_file.write_text(json.dumps(cmd_shapes(shapes_file)))
        cov = cmd_shapes(shapes_file, verify_file=str(verify_file))["coverage"]
        assert cov["coverage_ratio"] == 1.0
        assert cov["matched"] == cov["source_shapes"] == 2
        assert cov["missing_from_file"] == []

    def test_verify_envelope_list(self, shapes_file, tmp_path):
        verify_file = tmp_path / "envelopes.json"
        verify_file.write_text(json.dumps([ASSISTANT, {"type": "terminal_output"}]))
        cov = cmd_shapes(shapes_file, verify_file=str(verify_file))["coverage"]
        assert cov["matched"] == 1
        assert cov["coverage_ratio"] == 0.5
        assert len(cov["missing_from_file"]) == 1
        assert len(cov["extra_in_file"]) == 1

    def test_verify_bad_file(self, shapes_file, tmp_path):
        verify_file = tmp_path / "bad.json"
        verify_file.write_text('"just a string"')
        with pytest.raises(ValueError):
            cmd_shapes(shapes_file, verify_file=str(verify_file))
