"""Tests for parse_partial_json on truncated tool input streams."""

import unittest

from agent_relay.core.partial_json import parse_partial_json


class TestCompleteInput(unittest.TestCase):
    def test_complete_object(self):
        assert parse_partial_json('{"command": "ls", "timeout": 30}') == {
            "command": "ls",
            "timeout": 30,
        }

    def test_complete_scalar(self):
        assert parse_partial_json("42") == 42

    def test_empty_and_blank(self):
        assert parse_partial_json("") is None
        assert parse_partial_json("   ") is None
        assert parse_partial_json(None) is None


class TestTruncatedInput(unittest.TestCase):
    def test_open_string_is_closed(self):
        assert parse_partial_json('{"command": "ls -la') == {"command": "ls -la"}

    def test_trailing_comma_dropped(self):
        assert parse_partial_json('{"a": 1,') == {"a": 1}
        assert parse_partial_json("[1, 2,") == [1, 2]

    def test_nested_containers_closed(self):
        assert parse_partial_json('{"a": [1, 2') == {"a": [1, 2]}
        assert parse_partial_json('{"a": {"b": 1}, "c": "d') == {"a": {"b": 1}, "c": "d"}

    def test_key_without_value_cut_back(self):
        assert parse_partial_json('{"a": 1, "b') == {"a": 1}
        assert parse_partial_json('{"a": ') == {}

    def test_partial_literal_cut_back(self):
        assert parse_partial_json('{"a": tr') == {}

    def test_dangling_unicode_escape(self):
        assert parse_partial_json('{"s": "x\\u00') == {"s": "x"}

    def test_dangling_backslash(self):
        assert parse_partial_json('"abc\\') == "abc"

    def test_escaped_quote_inside_string(self):
        assert parse_partial_json('{"s": "say \\"hi') == {"s": 'say "hi'}

    def test_unrecoverable(self):
        assert parse_partial_json("tru") is None


class TestGrowingPrefix(unittest.TestCase):
    def test_every_prefix_yields_an_object(self):
        full = '{"command": "echo hi", "timeout": 30, "tags": ["a", "b"]}'
        for end in range(1, len(full) + 1):
            value = parse_partial_json(full[:end])
            assert isinstance(value, dict), full[:end]
        assert parse_partial_json(full) == {"command": "echo hi", "timeout": 30, "tags": ["a", "b"]}

    def test_repair_is_deterministic(self):
        text = '{"path": "/tmp/x", "content": "line one\\nline'
        assert parse_partial_json(text) == parse_partial_json(text)
        assert parse_partial_json(text) == {"path": "/tmp/x", "content": "line one\nline"}


class TestPathologicalInput(unittest.TestCase):
    def test_deep_nesting_returns_none(self):
        assert parse_partial_json("[" * 100000) is None
        assert parse_partial_json('{"a": ' * 50000) is None

    def test_moderate_nesting_still_repaired(self):
        expected: object = 1
        for _ in range(20):
            expected = [expected]
        assert parse_partial_json("[" * 20 + "1") == expected
