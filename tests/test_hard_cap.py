# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for the hard byte/line cap on text and nested tool payloads."""

import json
import sys

import pytest
from agentctx.services.compaction.hard_cap import (
    CIRCULAR_MARKER,
    OBJECT_MARKER,
    CapOutcome,
    count_lines,
    hard_cap_tool_output,
    hard_truncate_text,
    utf8_len,
)
from agentctx.services.compaction.settings import TOOL_OUTPUT_HARD_MAX_BYTES, TOOL_OUTPUT_HARD_MAX_LINES
from agentctx.services.prompts.base import HARD_CAP_SUFFIX


def _serialized_bytes(value) -> int:
    return utf8_len(json.dumps(value, ensure_ascii=False))


# ===========================================================================
# hard_truncate_text
# ===========================================================================


class TestCountLines:
    """Tests for count_lines."""

    def test_empty_string_has_no_lines(self):
        """Verify the empty string counts as zero lines."""
        assert count_lines("") == 0

    def test_single_line(self):
        """Verify text without newlines is one line."""
        assert count_lines("abc") == 1

    def test_trailing_newline_starts_a_line(self):
        """Verify a trailing newline counts as an extra (empty) line."""
        assert count_lines("a\n") == 2
        assert count_lines("a\nb\nc") == 3


class TestHardTruncateText:
    """Tests for hard_truncate_text."""

    def test_within_limits_unchanged(self):
        """Verify text inside both limits is returned untouched."""
        result = hard_truncate_text("hello\nworld")
        assert result.text == "hello\nworld"
        assert result.truncated is False

    def test_byte_limit_enforced(self):
        """Verify oversized text is cut to the byte ceiling with the marker."""
        result = hard_truncate_text("x" * 60_000)
        assert result.truncated is True
        assert utf8_len(result.text) <= TOOL_OUTPUT_HARD_MAX_BYTES
        assert result.text.endswith("\n" + HARD_CAP_SUFFIX)
        assert result.text.startswith("x" * 1000)

    def test_line_limit_enforced(self):
        """Verify text with too many lines is cut to the line ceiling."""
        result = hard_truncate_text("\n" * 3000)
        assert result.truncated is True
        assert count_lines(result.text) <= TOOL_OUTPUT_HARD_MAX_LINES
        assert "truncated" in result.text

    def test_line_limit_keeps_leading_lines(self):
        """Verify the kept lines are the first ones, in order."""
        text = "\n".join(f"line {i}" for i in range(5000))
        result = hard_truncate_text(text)
        assert result.text.startswith("line 0\nline 1\nline 2\n")
        assert "line 4999" not in result.text
        assert count_lines(result.text) == TOOL_OUTPUT_HARD_MAX_LINES

    def test_multibyte_text_fits_byte_budget(self):
        """Verify multi-byte characters are never split."""
        result = hard_truncate_text("é" * 40_000)
        assert utf8_len(result.text) <= TOOL_OUTPUT_HARD_MAX_BYTES
        body = result.text[: -len("\n" + HARD_CAP_SUFFIX)]
        assert set(body) == {"é"}

    def test_never_ends_on_high_surrogate(self):
        """Verify a cut between a surrogate pair steps back to the pair start."""
        text = "\ud83d\ude00" * 10
        # Each lone surrogate takes 3 bytes; 9 bytes would end on a high surrogate.
        result = hard_truncate_text(text, max_bytes=9, max_lines=10, suffix="")
        assert result.text == "\ud83d\ude00"
        assert result.truncated is True

    def test_idempotent(self):
        """Verify clamping already clamped text is a no-op."""
        once = hard_truncate_text("y" * 100_000)
        twice = hard_truncate_text(once.text)
        assert twice.text == once.text
        assert twice.truncated is False

    def test_only_marker_when_no_room_for_content(self):
        """Verify the bare marker is returned when it fills the whole budget."""
        budget = utf8_len(HARD_CAP_SUFFIX) + 1
        result = hard_truncate_text("x" * 1000, max_bytes=budget)
        assert result.text == HARD_CAP_SUFFIX

    def test_marker_larger_than_budget_is_clamped(self):
        """Verify the ceiling holds even when the marker alone does not fit."""
        result = hard_truncate_text("x" * 1000, max_bytes=10, max_lines=5)
        assert result.truncated is True
        assert result.text == HARD_CAP_SUFFIX[:10]

    def test_multiline_suffix_reserves_its_lines(self):
        """Verify a multi-line marker's lines are reserved up front."""
        result = hard_truncate_text("1\n2\n3\n4\n5", max_bytes=1000, max_lines=3, suffix="A\nB")
        assert result.text == "1\nA\nB"
        assert count_lines(result.text) == 3

    def test_zero_lines_budget(self):
        """Verify a zero line budget yields empty text."""
        result = hard_truncate_text("abc", max_bytes=100, max_lines=0)
        assert result.text == ""
        assert result.truncated is True


# ===========================================================================
# hard_cap_tool_output
# ===========================================================================


class TestHardCapToolOutput:
    """Tests for hard_cap_tool_output."""

    def test_small_payload_unchanged(self):
        """Verify a small payload passes through with an OK outcome."""
        payload = {"status": "ok", "items": [1, 2, 3], "nested": {"flag": True, "none": None}}
        result = hard_cap_tool_output(payload)
        assert result.outcome is CapOutcome.OK
        assert result.value == payload

    def test_strings_are_clamped(self):
        """Verify nested strings are clamped to the line ceiling."""
        payload = {"out": "\n".join(["l"] * 3000)}
        result = hard_cap_tool_output(payload)
        assert result.outcome is CapOutcome.OK
        assert count_lines(result.value["out"]) <= TOOL_OUTPUT_HARD_MAX_LINES
        assert result.value["out"].endswith(HARD_CAP_SUFFIX)

    def test_long_list_is_capped(self):
        """Verify lists keep 400 items plus an omission record."""
        result = hard_cap_tool_output(list(range(450)))
        assert result.outcome is CapOutcome.OK
        assert len(result.value) == 401
        assert result.value[:400] == list(range(400))
        assert result.value[-1] == {"omitted": True, "items": 50}

    def test_wide_dict_is_capped(self):
        """Verify dicts keep 400 keys plus an omitted-key count."""
        payload = {f"k{i}": i for i in range(410)}
        result = hard_cap_tool_output(payload)
        assert len(result.value) == 401
        assert result.value["_omittedKeys"] == 10
        assert "k399" in result.value
        assert "k409" not in result.value

    def test_tuple_becomes_list(self):
        """Verify tuples are walked like lists."""
        result = hard_cap_tool_output({"pair": (1, "two")})
        assert result.value == {"pair": [1, "two"]}

    def test_deep_dict_replaced_by_marker(self):
        """Verify dicts nested past the depth cap become a marker."""
        payload = {"a": {"a": {"a": {"a": {"a": {"a": {"a": 1}}}}}}}
        value = hard_cap_tool_output(payload).value
        assert value["a"]["a"]["a"]["a"]["a"]["a"] == OBJECT_MARKER

    def test_deep_list_replaced_by_marker(self):
        """Verify lists nested past the depth cap become an array marker."""
        value = hard_cap_tool_output([[[[[[[1, 2]]]]]]]).value
        assert value[0][0][0][0][0][0] == "[Array(2)]"

    def test_cycle_replaced_by_marker(self):
        """Verify a self-referencing dict does not recurse forever."""
        payload = {"name": "x"}
        payload["self"] = payload
        result = hard_cap_tool_output(payload)
        assert result.outcome is CapOutcome.OK
        assert result.value == {"name": "x", "self": CIRCULAR_MARKER}

    def test_cycle_through_list(self):
        """Verify a cycle through a list is broken."""
        items = [1]
        items.append({"back": items})
        result = hard_cap_tool_output(items)
        assert result.value == [1, {"back": CIRCULAR_MARKER}]

    def test_repeated_container_marked(self):
        """Verify a container reached twice in one walk is marked on the second visit."""
        shared = [1, 2]
        result = hard_cap_tool_output({"a": shared, "b": shared})
        assert result.value == {"a": [1, 2], "b": CIRCULAR_MARKER}

    def test_seen_set_is_per_call(self):
        """Verify separate calls do not share visited containers."""
        shared = {"k": "v"}
        assert hard_cap_tool_output(shared).value == {"k": "v"}
        assert hard_cap_tool_output(shared).value == {"k": "v"}

    def test_oversized_payload_falls_back_to_preview(self):
        """Verify a payload still over the byte cap becomes a preview dict."""
        payload = {"a": "x" * 30_000, "b": "y" * 30_000}
        result = hard_cap_tool_output(payload)
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert result.value["truncated"] is True
        assert result.value["bytes"] == _serialized_bytes(payload)
        assert result.value["preview"].startswith('{"a": "xxx')
        assert _serialized_bytes(result.value) <= TOOL_OUTPUT_HARD_MAX_BYTES

    def test_escaping_overhead_is_shrunk(self):
        """Verify previews whose escaping doubles their size still fit."""
        result = hard_cap_tool_output({"q": '"' * 40_000})
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert _serialized_bytes(result.value) <= TOOL_OUTPUT_HARD_MAX_BYTES

    def test_custom_limits(self):
        """Verify explicit limits override the defaults."""
        result = hard_cap_tool_output({"text": "z" * 5000}, max_bytes=1000, max_lines=10)
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert _serialized_bytes(result.value) <= 1000

    def test_unserializable_payload_never_raises(self):
        """Verify values json cannot encode yield a string preview."""
        result = hard_cap_tool_output({"when": object()})
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert result.value["truncated"] is True
        assert "bytes" not in result.value
        assert "object" in result.value["preview"]

    def test_set_leaf_falls_back(self):
        """Verify sets, which json rejects, fall back to a preview."""
        result = hard_cap_tool_output({"tags": {"a", "b"}})
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert "tags" in result.value["preview"]

    def test_scalar_payloads(self):
        """Verify scalars pass through."""
        assert hard_cap_tool_output(42).value == 42
        assert hard_cap_tool_output(None).value is None
        assert hard_cap_tool_output("short").value == "short"

    @pytest.mark.skipif(not hasattr(sys, "set_int_max_str_digits"), reason="no int string conversion limit")
    def test_oversized_int_never_raises(self):
        """Verify ints too long for str() yield a type marker preview."""
        result = hard_cap_tool_output({"n": 10**5000})
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert result.value == {"truncated": True, "preview": "[dict]"}

    def test_failing_repr_never_raises(self):
        """Verify objects whose repr raises do not escape the capper."""

        class BrokenRepr:
            def __repr__(self):
                raise RuntimeError("repr failed")

        result = hard_cap_tool_output({"x": BrokenRepr()})
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert result.value["preview"] == "[dict]"

    def test_unserializable_preview_fits_byte_cap(self):
        """Verify escaping in a string preview is shrunk under the byte cap."""
        result = hard_cap_tool_output({"s": {1}, "a": "\\" * 30_000})
        assert result.outcome is CapOutcome.FALLBACK_PREVIEW
        assert _serialized_bytes(result.value) <= TOOL_OUTPUT_HARD_MAX_BYTES
