# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Tool result truncation.

Caps individual tool result messages before they enter the context. Two
limits apply:

  - a per-model character limit, a share of the context window, and
  - the fixed byte/line hard cap from ``hard_cap``, applied last.

Only text blocks are measured and rewritten. A truncated tool result is
collapsed to a single text block; its other fields are preserved.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from agentctx.models import ContentBlock, Message
from agentctx.schemas.session import ContentBlockType
from agentctx.services.compaction.hard_cap import count_lines, hard_truncate_text, utf8_len
from agentctx.services.compaction.settings import CompactionSettings, get_compaction_settings
from agentctx.services.prompts.base import PERSISTENCE_NORMALIZED_NOTE, PERSISTENCE_SUFFIX, TRUNCATION_SUFFIX

NEWLINE_SNAP_RATIO = 0.8

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextMetrics:
    """Size of a tool result's text content.

    Attributes:
        chars (int): Total characters across text blocks.
        bytes (int): UTF-8 bytes across text blocks, plus one per join.
        lines (int): Total lines across text blocks.
    """

    chars: int
    bytes: int
    lines: int


@dataclass
class TruncationReport:
    """Result of an in-memory truncation pass.

    Attributes:
        messages (List[Message]): New message list; unchanged messages are
            the original objects.
        truncated_count (int): Number of tool results that were truncated.
    """

    messages: List[Message]
    truncated_count: int


def _text_parts(msg: Message) -> List[str]:
    if isinstance(msg.content, str):
        return [msg.content] if msg.content else []
    return [
        block.text
        for block in msg.content
        if block.type == ContentBlockType.TEXT.value and isinstance(block.text, str) and block.text
    ]


def calculate_max_tool_result_chars(settings: CompactionSettings) -> int:
    """Max allowed characters for a single tool result.

    = min(floor(context_window * share) * chars_per_token, hard_max)

    Args:
        settings (CompactionSettings): Compaction configuration providing
            context window size, share ratio, and hard maximum.

    Returns:
        int: Maximum character count allowed for a single tool result.
    """
    max_tokens = int(settings.context_window_tokens * settings.max_tool_result_context_share)
    max_chars = max_tokens * settings.chars_per_token
    return min(max_chars, settings.hard_max_tool_result_chars)


def get_tool_result_text_metrics(msg: Message) -> TextMetrics:
    """Measure the text content of a tool result.

    Args:
        msg (Message): Message to measure. Non tool results measure as zero.

    Returns:
        TextMetrics: Character, byte and line totals.
    """
    if not msg.is_tool_result:
        return TextMetrics(chars=0, bytes=0, lines=0)
    parts = _text_parts(msg)
    byte_count = sum(utf8_len(part) for part in parts)
    if len(parts) > 1:
        byte_count += len(parts) - 1
    return TextMetrics(
        chars=sum(len(part) for part in parts),
        bytes=byte_count,
        lines=sum(count_lines(part) for part in parts),
    )


def truncate_tool_result_text(text: str, max_chars: int, settings: Optional[CompactionSettings] = None) -> str:
    """Truncate a single text string, trying to cut at a newline boundary.

    At least ``min_keep_chars`` characters are kept. If a newline falls in
    the last 20% of the kept region the cut moves back to it. The result is
    then clamped to the hard byte/line cap.

    Args:
        text (str): Text to truncate.
        max_chars (int): Maximum allowed character count.
        settings (Optional[CompactionSettings]): Compaction configuration.
            Defaults to settings from the environment.

    Returns:
        str: The original text if within all limits, otherwise the
            truncated text ending with the truncation marker.
    """
    settings = settings or get_compaction_settings()
    suffix_text = f"\n{TRUNCATION_SUFFIX}"

    out = text
    if len(text) > max_chars:
        keep_chars = max(settings.min_keep_chars, max_chars - len(suffix_text))
        cut_point = keep_chars
        last_newline = text.rfind("\n", 0, keep_chars + 1)
        if last_newline > keep_chars * NEWLINE_SNAP_RATIO:
            cut_point = last_newline
        out = text[:cut_point] + suffix_text

    return hard_truncate_text(
        out,
        settings.hard_cap.max_bytes,
        settings.hard_cap.max_lines,
        suffix=TRUNCATION_SUFFIX,
    ).text


def is_oversized_tool_result(msg: Message, settings: Optional[CompactionSettings] = None) -> bool:
    """Check whether a tool result exceeds the per-model or hard limit.

    Args:
        msg (Message): Message to check.
        settings (Optional[CompactionSettings]): Compaction configuration.

    Returns:
        bool: ``True`` for tool results whose text is longer than
            ``calculate_max_tool_result_chars`` or over the hard cap.
    """
    if not msg.is_tool_result:
        return False
    settings = settings or get_compaction_settings()
    metrics = get_tool_result_text_metrics(msg)
    if metrics.chars > calculate_max_tool_result_chars(settings):
        return True
    return metrics.bytes > settings.hard_cap.max_bytes or metrics.lines > settings.hard_cap.max_lines


def truncate_tool_result_message(
    msg: Message,
    max_chars: int,
    settings: Optional[CompactionSettings] = None,
) -> Message:
    """Truncate a tool result's text blocks into a single text block.

    Does not mutate *msg*. Messages without text are returned as-is.

    Args:
        msg (Message): Tool result to truncate.
        max_chars (int): Character limit for the combined text.
        settings (Optional[CompactionSettings]): Compaction configuration.

    Returns:
        Message: A copy whose content is one truncated text block.
    """
    parts = _text_parts(msg)
    if not parts:
        return msg
    truncated = truncate_tool_result_text("\n".join(parts), max_chars, settings)
    return msg.model_copy(update={"content": [ContentBlock(type=ContentBlockType.TEXT.value, text=truncated)]})


def truncate_oversized_tool_results_in_messages(
    messages: List[Message],
    settings: Optional[CompactionSettings] = None,
) -> TruncationReport:
    """Truncate oversized tool results in-memory (does not mutate originals).

    Used as a guard before messages are sent to the model, without touching
    the persisted session.

    Args:
        messages (List[Message]): Conversation message list to process.
        settings (Optional[CompactionSettings]): Compaction configuration.

    Returns:
        TruncationReport: New message list and number of truncated results.
    """
    settings = settings or get_compaction_settings()
    max_chars = calculate_max_tool_result_chars(settings)
    truncated_count = 0
    result: List[Message] = []

    for msg in messages:
        if not is_oversized_tool_result(msg, settings):
            result.append(msg)
            continue
        original_len = get_tool_result_text_metrics(msg).chars
        truncated = truncate_tool_result_message(msg, max_chars, settings)
        result.append(truncated)
        truncated_count += 1
        logger.info(
            "Truncated tool result: %d chars -> %d chars",
            original_len,
            get_tool_result_text_metrics(truncated).chars,
        )

    return TruncationReport(messages=result, truncated_count=truncated_count)


def session_likely_has_oversized_tool_results(
    messages: List[Message],
    settings: Optional[CompactionSettings] = None,
) -> bool:
    """Check whether any tool result exceeds the size limit.

    Used after a context overflow to decide whether rewriting the session's
    tool results is worth attempting.

    Args:
        messages (List[Message]): Conversation message list to check.
        settings (Optional[CompactionSettings]): Compaction configuration.

    Returns:
        bool: ``True`` if at least one tool result is oversized.
    """
    settings = settings or get_compaction_settings()
    return any(is_oversized_tool_result(msg, settings) for msg in messages)


def cap_tool_result_for_persistence(msg: Message, settings: Optional[CompactionSettings] = None) -> Message:
    """Apply the hard cap to a tool result before it is stored.

    Text blocks are flattened into one. Non-text blocks are dropped, with a
    normalization note, when the message has any or when its serialized
    form exceeds the hard byte cap. Returns *msg* itself when nothing needs
    to change.

    Args:
        msg (Message): Message about to be persisted.
        settings (Optional[CompactionSettings]): Compaction configuration.

    Returns:
        Message: The message to persist.
    """
    if not msg.is_tool_result or isinstance(msg.content, str):
        combined = msg.content if msg.is_tool_result else ""
        non_text_blocks = 0
    else:
        combined = "\n".join(_text_parts(msg))
        non_text_blocks = sum(1 for block in msg.content if block.type != ContentBlockType.TEXT.value)

    if not combined:
        return msg

    settings = settings or get_compaction_settings()
    force_text_only = non_text_blocks > 0
    if not force_text_only:
        try:
            serialized = json.dumps(msg.model_dump(mode="json"), ensure_ascii=False)
            force_text_only = utf8_len(serialized) > settings.hard_cap.max_bytes
        except (TypeError, ValueError):
            force_text_only = True

    prefix = f"{combined}\n{PERSISTENCE_NORMALIZED_NOTE}" if force_text_only else combined
    capped = hard_truncate_text(
        prefix,
        settings.hard_cap.max_bytes,
        settings.hard_cap.max_lines,
        suffix=PERSISTENCE_SUFFIX,
    )

    if not force_text_only and not capped.truncated:
        return msg

    logger.info(
        "Capped tool result for persistence: tool_call_id=%s non_text_blocks=%d truncated=%s",
        msg.tool_call_id,
        non_text_blocks,
        capped.truncated,
    )
    return msg.model_copy(update={"content": [ContentBlock(type=ContentBlockType.TEXT.value, text=capped.text)]})
