# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for orphaned tool result repair."""

from agentctx.models import ContentBlock, Message
from agentctx.schemas.session import ContentBlockType, MessageRole
from agentctx.services.compaction.repair import repair_tool_use_result_pairing


class TestRepairToolUseResultPairing:
    """Tests for repair_tool_use_result_pairing."""

    def test_paired_results_kept(self, assistant_message, tool_result_message, user_message):
        """Verify tool results with a matching tool call survive."""
        messages = [user_message(10), assistant_message(10, tool_call_id="c1"), tool_result_message("c1", 10)]
        report = repair_tool_use_result_pairing(messages)
        assert report.dropped_orphan_count == 0
        assert report.messages == messages

    def test_orphan_dropped(self, user_message, tool_result_message):
        """Verify a tool result without its tool call is removed."""
        user = user_message(10)
        report = repair_tool_use_result_pairing([tool_result_message("gone", 10), user])
        assert report.dropped_orphan_count == 1
        assert report.messages == [user]

    def test_missing_tool_call_id_is_orphan(self, assistant_message, tool_result_message):
        """Verify a tool result with no tool_call_id is dropped."""
        assistant = assistant_message(10, tool_call_id="c1")
        report = repair_tool_use_result_pairing([assistant, tool_result_message(None, 10)])
        assert report.dropped_orphan_count == 1
        assert report.messages == [assistant]

    def test_all_tool_call_spellings_recognized(self):
        """Verify toolCall, toolUse and functionCall blocks all pair results."""
        calls = Message(
            role=MessageRole.ASSISTANT,
            content=[
                ContentBlock(type=ContentBlockType.TOOL_CALL.value, id="a", name="x"),
                ContentBlock(type=ContentBlockType.TOOL_USE.value, id="b", name="y"),
                ContentBlock(type=ContentBlockType.FUNCTION_CALL.value, id="c", name="z"),
            ],
        )
        results = [Message(role=MessageRole.TOOL_RESULT, content="ok", tool_call_id=i) for i in "abc"]
        report = repair_tool_use_result_pairing([calls, *results])
        assert report.dropped_orphan_count == 0
        assert len(report.messages) == 4

    def test_input_not_mutated(self, tool_result_message):
        """Verify the input list is left untouched."""
        messages = [tool_result_message("x", 10)]
        report = repair_tool_use_result_pairing(messages)
        assert len(messages) == 1
        assert report.messages == []

    def test_no_tool_results_returns_copy(self, user_message):
        """Verify a history without tool results is returned as a new list."""
        messages = [user_message(10)]
        report = repair_tool_use_result_pairing(messages)
        assert report.messages == messages
        assert report.messages is not messages

    def test_empty_input(self):
        """Verify an empty history is a no-op."""
        report = repair_tool_use_result_pairing([])
        assert report.messages == []
        assert report.dropped_orphan_count == 0
