# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Tests for Transcript: delta application, placeholders and turn closing."""

import unittest

from agent_relay.core.transcript import (
    Message,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    Transcript,
)


class FakeClock:
    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestMessages(unittest.TestCase):
    def test_ids_are_sequential(self):
        t = Transcript()
        user = t.append_user_message("hi")
        t.append_text("hello")
        second = t.append_user_message("again")
        assert [m.id for m in t.messages] == ["0", "1", "2"]
        assert user.content == "hi"
        assert second.id == "2"

    def test_text_deltas_concatenate_into_one_block(self):
        t = Transcript()
        t.append_user_message("hi")
        t.append_text("Hel")
        t.append_text("lo!")
        assistant = t.messages[-1]
        assert assistant.role == "assistant"
        assert len(assistant.blocks()) == 1
        assert assistant.text() == "Hello!"

    def test_text_after_tool_starts_new_block(self):
        t = Transcript()
        t.append_text("before")
        t.start_tool_use("t1", "Bash", {"command": "ls"}, 1)
        t.append_text("after")
        blocks = t.messages[-1].blocks()
        assert [b.type for b in blocks] == ["text", "tool_use", "text"]

    def test_user_message_ends_open_turn(self):
        t = Transcript()
        t.append_text("first")
        t.append_user_message("interjection")
        t.append_text("second")
        assert [m.role for m in t.messages] == ["assistant", "user", "assistant"]
        assert t.messages[0].text() == "first"
        assert t.messages[2].text() == "second"

    def test_blocks_converts_plain_text(self):
        message = Message(id="9", role="assistant", content="plain")
        blocks = message.blocks()
        assert isinstance(blocks[0], TextBlock)
        assert message.content == blocks
        assert message.text() == "plain"

    def test_wire_shape_is_camel_case(self):
        t = Transcript(clock_ms=FakeClock())
        t.start_thinking(0)
        wire = t.to_wire()[0]["content"][0]
        assert wire["type"] == "thinking"
        assert wire["thinkingStreamIndex"] == 0
        assert wire["thinkingStartedAt"] == 1_000
        assert wire["isComplete"] is False
        assert "thinkingDurationMs" not in wire


class TestThinking(unittest.TestCase):
    def test_thinking_lifecycle(self):
        clock = FakeClock()
        t = Transcript(clock_ms=clock)
        t.start_thinking(0)
        t.append_thinking(0, "let me ")
        t.append_thinking(0, "see")
        clock.now += 250
        assert t.close_thinking(0) is True
        block = t.messages[-1].blocks()[0]
        assert isinstance(block, ThinkingBlock)
        assert block.thinking == "let me see"
        assert block.is_complete
        assert block.thinking_duration_ms == 250

    def test_close_without_open_block(self):
        t = Transcript()
        t.append_text("x")
        assert t.close_thinking(3) is False

    def test_delta_for_unknown_index_is_ignored(self):
        t = Transcript()
        t.start_thinking(0)
        t.append_thinking(5, "lost")
        assert t.messages[-1].blocks()[0].thinking == ""

    def test_duration_never_negative(self):
        clock = FakeClock(5_000)
        t = Transcript(clock_ms=clock)
        t.start_thinking(0)
        clock.now = 4_000
        t.close_thinking(0)
        assert t.messages[-1].blocks()[0].thinking_duration_ms == 0


class TestToolCalls(unittest.TestCase):
    def test_streamed_input_is_parsed_progressively(self):
        t = Transcript()
        t.start_tool_use("t1", "Bash", {}, 1)
        t.append_tool_input("t1", '{"command": "ls')
        assert t.find_tool("t1").parsed_input == {"command": "ls"}
        t.append_tool_input("t1", ' -la"}')
        t.close_tool_block("t1")
        tool = t.find_tool("t1")
        assert tool.input_json == '{"command": "ls -la"}'
        assert tool.parsed_input == {"command": "ls -la"}

    def test_close_by_stream_index(self):
        t = Transcript()
        t.start_tool_use("t1", "Bash", {}, 2)
        t.find_tool("t1").input_json = '{"a": 1}'
        t.close_tool_block(stream_index=2)
        assert t.find_tool("t1").parsed_input == {"a": 1}

    def test_deeply_nested_input_does_not_raise(self):
        t = Transcript()
        t.start_tool_use("t1", "Write", {}, 0)
        t.append_tool_input("t1", "[" * 100000)
        t.close_tool_block("t1")
        tool = t.find_tool("t1")
        assert tool.parsed_input is None
        assert len(tool.input_json) == 100000

    def test_input_for_unknown_tool_is_ignored(self):
        t = Transcript()
        t.append_tool_input("missing", '{"a": 1}')
        assert t.messages == []

    def test_result_before_start_creates_placeholder(self):
        t = Transcript()
        t.append_tool_result("t9", "out")
        t.append_tool_result("t9", "put")
        tool = t.find_tool("t9")
        assert tool.name == ""
        assert tool.result == "output"
        assert isinstance(t.messages[-1].blocks()[0], ToolUseBlock)

    def test_set_result_overwrites(self):
        t = Transcript()
        t.start_tool_use("t1", "Read")
        t.append_tool_result("t1", "partial")
        t.set_tool_result("t1", "final", is_error=True)
        tool = t.find_tool("t1")
        assert tool.result == "final"
        assert tool.is_error is True

    def test_result_reaches_tool_in_earlier_message(self):
        t = Transcript()
        t.start_tool_use("t1", "Bash")
        t.append_user_message("next")
        t.set_tool_result("t1", "late")
        assert t.messages[0].blocks()[0].tool.result == "late"
        assert len(t.messages) == 2


class TestSubagentCalls(unittest.TestCase):
    def test_calls_nest_under_parent(self):
        t = Transcript()
        t.start_tool_use("task", "Task", {"prompt": "p"}, 0)
        t.start_subagent_tool_use("task", "c1", "Bash", {"command": "pwd"})
        t.set_subagent_tool_result("task", "c1", "/tmp", is_error=False)
        parent = t.find_tool("task")
        assert [c.id for c in parent.subagent_calls] == ["c1"]
        call = t.find_subagent_call("task", "c1")
        assert call.result == "/tmp"
        assert call.is_error is False

    def test_result_before_any_start_creates_both_placeholders(self):
        t = Transcript()
        t.append_subagent_tool_result("task", "c1", "a")
        t.append_subagent_tool_result("task", "c1", "b")
        parent = t.find_tool("task")
        assert parent is not None
        assert parent.name == ""
        assert parent.subagent_calls[0].result == "ab"

    def test_streamed_subagent_input(self):
        t = Transcript()
        t.start_tool_use("task", "Task")
        t.start_subagent_tool_use("task", "c1", "Write", {}, 0)
        t.append_subagent_tool_input("task", "c1", '{"path": "a.txt", "content": "x')
        t.close_subagent_tool_block("task", "c1")
        call = t.find_subagent_call("task", "c1")
        assert call.parsed_input == {"path": "a.txt", "content": "x"}


class TestClosing(unittest.TestCase):
    def test_completed_leaves_content(self):
        t = Transcript()
        t.append_text("done")
        assert t.close_open_assistant_message("completed") is None
        assert t.open_message is None
        t.append_text("new turn")
        assert len(t.messages) == 2

    def test_stopped_completes_open_thinking(self):
        clock = FakeClock()
        t = Transcript(clock_ms=clock)
        t.start_thinking(0)
        t.append_thinking(0, "hmm")
        clock.now += 40
        t.close_open_assistant_message("stopped")
        block = t.messages[0].blocks()[0]
        assert block.is_complete
        assert block.thinking_duration_ms == 40

    def test_errored_appends_error_message(self):
        t = Transcript()
        t.append_text("partial")
        error_message = t.close_open_assistant_message("errored", "boom")
        assert error_message is t.messages[-1]
        assert error_message.role == "assistant"
        assert error_message.content == "Error: boom"
        assert t.messages[0].text() == "partial"

    def test_close_with_nothing_open(self):
        t = Transcript()
        assert t.close_open_assistant_message("stopped") is None
        assert t.messages == []
