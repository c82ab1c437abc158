# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Token and character estimation utilities.

Uses tiktoken when its encoding can be loaded, otherwise falls back to the
chars/4 heuristic. Estimates are approximate; callers absorb the bias
through ``CompactionSettings.safety_margin``.

Tool call arguments count towards a message's size, so an assistant turn
that issues large tool calls is not treated as empty.
"""

from __future__ import annotations

import json
import logging
import math
from functools import lru_cache
from typing import Any, Callable, List, Optional

import tiktoken

from agentctx.config import settings
from agentctx.models import Message

TOOL_CALL_FALLBACK_CHARS = 128
CHARS_PER_TOKEN_FALLBACK = 4
TOKENS_AFTER_SANITY_RATIO = 1.1

TokenEstimator = Callable[[Message], int]

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _get_encoding(model: str) -> Optional[Any]:
    """Load the tiktoken encoding for *model*, or ``None`` when unavailable.

    Encodings are fetched on first use; offline hosts and unknown model
    names fall back to the character heuristic.
    """
    try:
        return tiktoken.encoding_for_model(model)
    except Exception as e:
        logger.info(
            "tiktoken encoding for %s unavailable (%s), using chars/%d heuristic",
            model,
            e,
            CHARS_PER_TOKEN_FALLBACK,
        )
        return None


def estimate_tokens(text: str) -> int:
    """Estimate token count for a text.

    Args:
        text (str): Text to estimate tokens for.

    Returns:
        int: Token count from tiktoken, or ``len(text) // 4`` (at least 1
            for non-empty text) when no encoding is available.
    """
    if not text:
        return 0
    encoding = _get_encoding(settings.TOKENIZER_MODEL)
    if encoding is not None:
        return len(encoding.encode(text, disallowed_special=()))
    return max(1, len(text) // CHARS_PER_TOKEN_FALLBACK)


def _tool_calls_chars(msg: Message) -> int:
    """Extra characters contributed by tool call blocks.

    Args:
        msg (Message): Message whose tool calls to measure.

    Returns:
        int: Serialized length of each tool call's name and arguments.
    """
    chars = 0
    for block in msg.tool_calls:
        chars += len(block.name or "")
        try:
            chars += len(json.dumps(block.arguments if block.arguments is not None else {}, ensure_ascii=False))
        except (TypeError, ValueError):
            chars += TOOL_CALL_FALLBACK_CHARS
    return chars


def estimate_message_tokens(msg: Message) -> int:
    """Estimate token count for a single message.

    Includes text content and serialized tool call arguments.

    Args:
        msg (Message): Message to estimate tokens for.

    Returns:
        int: Estimated token count.
    """
    extra = _tool_calls_chars(msg)
    tokens = estimate_tokens(msg.text)
    if extra:
        tokens += math.ceil(extra / CHARS_PER_TOKEN_FALLBACK)
    return tokens


def estimate_messages_tokens(
    messages: List[Message],
    estimator: Optional[TokenEstimator] = None,
) -> int:
    """Estimate total token count for a list of messages.

    Args:
        messages (List[Message]): Messages to estimate tokens for.
        estimator (Optional[TokenEstimator]): Per-message estimator.
            Defaults to ``estimate_message_tokens``.

    Returns:
        int: Sum of estimated token counts across all messages.
    """
    estimate = estimator or estimate_message_tokens
    return sum(estimate(m) for m in messages)


def estimate_message_chars(msg: Message) -> int:
    """Character count for a single message including tool calls.

    Args:
        msg (Message): Message to measure.

    Returns:
        int: Text length plus serialized tool call length.
    """
    return len(msg.text) + _tool_calls_chars(msg)


def sanitize_tokens_after_estimate(tokens_after: float, tokens_before: float) -> int:
    """Guard a post-operation estimate against implausible values.

    An estimate that is negative, not finite, or more than 10% above the
    pre-operation total is logged and replaced by the pre-operation total.

    Args:
        tokens_after (float): Estimate after pruning or compaction.
        tokens_before (float): Total before the operation.

    Returns:
        int: The value to report.
    """
    if not math.isfinite(tokens_after) or tokens_after < 0:
        logger.warning("Implausible token estimate %s after operation; using %s", tokens_after, tokens_before)
        return int(tokens_before)
    if not math.isfinite(tokens_before) or tokens_before <= 0:
        return int(tokens_after)
    if tokens_after > tokens_before * TOKENS_AFTER_SANITY_RATIO:
        logger.warning(
            "Token estimate grew from %d to %d after operation; using the prior total",
            tokens_before,
            tokens_after,
        )
        return int(tokens_before)
    return int(tokens_after)


def resolve_context_window_tokens(model_context_window: Optional[float] = None) -> int:
    """Resolve the effective context window of a model.

    Args:
        model_context_window (Optional[float]): Window reported by the model
            metadata, if known.

    Returns:
        int: ``floor(model_context_window)`` or the configured default,
            never below 1.
    """
    if model_context_window is None or not math.isfinite(model_context_window):
        return max(1, settings.CONTEXT_WINDOW_TOKENS)
    return max(1, int(math.floor(model_context_window)))
