# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Hard byte/line caps for tool output.

The hard cap is a fixed safety ceiling independent of the model's context
window. It is applied to tool output before it is emitted or stored, and as
the last step of every context-aware truncation.

  hard_truncate_text:   clamp one string to ``max_bytes`` UTF-8 bytes and
                         ``max_lines`` lines, appending a truncation marker.
  hard_cap_tool_output: walk an arbitrary nested payload, clamp its strings,
                         bound container sizes and depth, break cycles, and
                         fall back to a string preview when the serialized
                         payload is still too large.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Set

from agentctx.services.compaction.settings import TOOL_OUTPUT_HARD_MAX_BYTES, TOOL_OUTPUT_HARD_MAX_LINES
from agentctx.services.prompts.base import HARD_CAP_SUFFIX

MAX_CONTAINER_ITEMS = 400
MAX_PAYLOAD_DEPTH = 6
MAX_SHRINK_PASSES = 6
SHRINK_FACTOR = 0.9

CIRCULAR_MARKER = "[Circular]"
OBJECT_MARKER = "[Object]"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TruncatedText:
    """Result of a byte/line clamp.

    Attributes:
        text (str): The clamped text, or the input when it already fit.
        truncated (bool): Whether the input was modified.
    """

    text: str
    truncated: bool


class CapOutcome(str, Enum):
    """How a payload was capped."""

    OK = "ok"
    FALLBACK_PREVIEW = "fallback_preview"


@dataclass(frozen=True)
class CappedPayload:
    """Result of capping a tool payload.

    Attributes:
        outcome (CapOutcome): ``OK`` when the mapped structure fit the byte
            cap, ``FALLBACK_PREVIEW`` when it was replaced by a preview dict.
        value (Any): The capped payload.
    """

    outcome: CapOutcome
    value: Any


def count_lines(text: str) -> int:
    """Count lines; the empty string has zero lines."""
    if not text:
        return 0
    return text.count("\n") + 1


def utf8_len(text: str) -> int:
    """UTF-8 encoded length, tolerating lone surrogates."""
    return len(text.encode("utf-8", "surrogatepass"))


def _is_high_surrogate(ch: str) -> bool:
    return "\ud800" <= ch <= "\udbff"


def _slice_to_max_lines(text: str, max_lines: int) -> str:
    if max_lines <= 0:
        return ""
    if count_lines(text) <= max_lines:
        return text
    cut = -1
    for _ in range(max_lines):
        cut = text.index("\n", cut + 1)
    return text[:cut]


def _slice_to_max_bytes(text: str, max_bytes: int) -> str:
    """Longest prefix of *text* whose UTF-8 length fits in *max_bytes*.

    The prefix never ends on the high half of a surrogate pair.
    """
    if max_bytes <= 0:
        return ""
    if utf8_len(text) <= max_bytes:
        return text
    # Every code point is at least one byte, so the answer is <= max_bytes.
    lo, hi = 0, min(len(text), max_bytes)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if utf8_len(text[:mid]) <= max_bytes:
            lo = mid
        else:
            hi = mid - 1
    if lo > 0 and _is_high_surrogate(text[lo - 1]):
        lo -= 1
    return text[:lo]


def _clamp_prefix(text: str, max_bytes: int, max_lines: int) -> str:
    return _slice_to_max_bytes(_slice_to_max_lines(text, max_lines), max_bytes)


def hard_truncate_text(
    text: str,
    max_bytes: int = TOOL_OUTPUT_HARD_MAX_BYTES,
    max_lines: int = TOOL_OUTPUT_HARD_MAX_LINES,
    suffix: str = HARD_CAP_SUFFIX,
) -> TruncatedText:
    """Clamp text to a UTF-8 byte and line ceiling.

    Room for ``"\\n" + suffix`` is reserved first, the text is cut to the
    remaining line budget, then to the remaining byte budget. When the
    marker alone does not fit the ceiling, the marker itself is clamped and
    no content is kept. The result always satisfies both limits, so
    clamping clamped text is a no-op.

    Args:
        text (str): Text to clamp.
        max_bytes (int): Maximum UTF-8 encoded length of the result.
        max_lines (int): Maximum line count of the result.
        suffix (str): Marker appended after truncated content.

    Returns:
        TruncatedText: The clamped text and whether it was modified.
    """
    max_bytes = max(0, int(max_bytes))
    max_lines = max(0, int(max_lines))

    if utf8_len(text) <= max_bytes and count_lines(text) <= max_lines:
        return TruncatedText(text=text, truncated=False)

    if not suffix:
        return TruncatedText(text=_clamp_prefix(text, max_bytes, max_lines), truncated=True)

    if utf8_len(suffix) > max_bytes or count_lines(suffix) > max_lines:
        return TruncatedText(text=_clamp_prefix(suffix, max_bytes, max_lines), truncated=True)

    # lines(prefix + "\n" + suffix) == lines(prefix) + lines(suffix)
    available_bytes = max(0, max_bytes - utf8_len("\n" + suffix))
    available_lines = max(0, max_lines - count_lines(suffix))
    trimmed = _clamp_prefix(text, available_bytes, available_lines)

    if trimmed:
        return TruncatedText(text=f"{trimmed}\n{suffix}", truncated=True)
    return TruncatedText(text=suffix, truncated=True)


def _cap_container_size(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        if len(value) <= MAX_CONTAINER_ITEMS:
            return value
        return [*value[:MAX_CONTAINER_ITEMS], {"omitted": True, "items": len(value) - MAX_CONTAINER_ITEMS}]
    if len(value) <= MAX_CONTAINER_ITEMS:
        return value
    keys = list(value.keys())
    out: Dict[Any, Any] = {key: value[key] for key in keys[:MAX_CONTAINER_ITEMS]}
    out["_omittedKeys"] = len(keys) - MAX_CONTAINER_ITEMS
    return out


def _serialize(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _safe_str(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return f"[{type(value).__name__}]"


def _fit_preview(base: Dict[str, Any], source: str, max_bytes: int, max_lines: int) -> Dict[str, Any]:
    """Attach the longest clamped *source* preview that keeps ``base`` under *max_bytes*.

    JSON escaping can make the serialized preview larger than its clamped
    text, so the budget is shrunk over at most ``MAX_SHRINK_PASSES`` passes.
    An empty preview is used when the passes run out.
    """
    overhead = utf8_len(_serialize({**base, "preview": ""}))
    budget = max(0, max_bytes - overhead)
    out = {**base, "preview": hard_truncate_text(source, budget, max_lines).text}

    for _ in range(MAX_SHRINK_PASSES):
        out_bytes = utf8_len(_serialize(out))
        if out_bytes <= max_bytes or budget <= 0:
            break
        budget = max(0, min(int(budget * SHRINK_FACTOR), budget - (out_bytes - max_bytes)))
        out = {**base, "preview": hard_truncate_text(source, budget, max_lines).text}

    if utf8_len(_serialize(out)) > max_bytes:
        out = {**base, "preview": ""}
    return out


def hard_cap_tool_output(
    value: Any,
    max_bytes: int = TOOL_OUTPUT_HARD_MAX_BYTES,
    max_lines: int = TOOL_OUTPUT_HARD_MAX_LINES,
) -> CappedPayload:
    """Cap an arbitrary tool payload to the hard byte/line ceiling.

    Strings are clamped with ``hard_truncate_text``. Lists and dicts keep at
    most 400 items with a record of how many were omitted. Containers nested
    deeper than six levels are replaced by ``"[Array(n)]"`` or
    ``"[Object]"``, and any container reached a second time during the walk
    becomes ``"[Circular]"``.

    When the mapped payload still serializes to more than ``max_bytes``, a
    ``{"truncated": True, "bytes": n, "preview": ...}`` dict is returned
    instead, its preview shrunk over at most six passes. Payloads that
    cannot be serialized yield ``{"truncated": True, "preview": ...}``.
    This function never raises.

    Args:
        value (Any): Tool payload to cap.
        max_bytes (int): Maximum serialized UTF-8 size.
        max_lines (int): Maximum line count for strings and previews.

    Returns:
        CappedPayload: The capped value and how it was produced.
    """
    seen: Set[int] = set()

    def walk(node: Any, depth: int) -> Any:
        if isinstance(node, str):
            return hard_truncate_text(node, max_bytes, max_lines).text
        if not isinstance(node, (list, tuple, dict)):
            return node

        if id(node) in seen:
            return CIRCULAR_MARKER
        seen.add(id(node))

        node = _cap_container_size(node)

        if isinstance(node, (list, tuple)):
            if depth <= 0:
                return f"[Array({len(node)})]"
            return [walk(item, depth - 1) for item in node]

        if depth <= 0:
            return OBJECT_MARKER
        return {key: walk(item, depth - 1) for key, item in node.items()}

    mapped = walk(value, MAX_PAYLOAD_DEPTH)

    try:
        serialized = _serialize(mapped)
    except Exception as e:
        logger.info("Tool output not serializable (%s), falling back to a string preview", e)
        out = _fit_preview({"truncated": True}, _safe_str(mapped), max_bytes, max_lines)
        return CappedPayload(CapOutcome.FALLBACK_PREVIEW, out)

    total_bytes = utf8_len(serialized)
    if total_bytes <= max_bytes:
        return CappedPayload(CapOutcome.OK, mapped)

    out = _fit_preview({"truncated": True, "bytes": total_bytes}, serialized, max_bytes, max_lines)
    logger.info("Tool output capped: %d bytes -> preview of %d bytes", total_bytes, utf8_len(out["preview"]))
    return CappedPayload(CapOutcome.FALLBACK_PREVIEW, out)
