# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Overflow recovery by rewriting oversized tool results in a session log.

When a provider rejects a request because the context overflowed and the
session holds oversized tool results, the log is rewritten:

  1. Walk the current branch and find oversized tool results.
  2. Branch from the parent of the first one (or reset to the root).
  3. Re-append every entry from that point on, truncating the oversized
     tool results and copying everything else unchanged.

The whole rewrite runs under the session write lock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from agentctx.models import LogEntry
from agentctx.services.compaction.session_log import SessionLog, get_session_write_lock
from agentctx.services.compaction.settings import CompactionSettings, get_compaction_settings
from agentctx.services.compaction.truncation import (
    calculate_max_tool_result_chars,
    get_tool_result_text_metrics,
    is_oversized_tool_result,
    truncate_tool_result_message,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionTruncationResult:
    """Outcome of a session rewrite.

    Attributes:
        truncated (bool): Whether the log was rewritten.
        truncated_count (int): Number of tool results truncated.
        reason (Optional[str]): Why nothing was rewritten, when ``truncated``
            is ``False``.
    """

    truncated: bool
    truncated_count: int = 0
    reason: Optional[str] = None


def _find_oversized_indices(
    branch: List[LogEntry],
    settings: CompactionSettings,
    session_key: str,
) -> List[int]:
    max_chars = calculate_max_tool_result_chars(settings)
    indices: List[int] = []
    for i, entry in enumerate(branch):
        msg = entry.message
        if msg is None or not is_oversized_tool_result(msg, settings):
            continue
        metrics = get_tool_result_text_metrics(msg)
        logger.info(
            "Found oversized tool result: entry=%s chars=%d bytes=%d lines=%d max_chars=%d session=%s",
            entry.id,
            metrics.chars,
            metrics.bytes,
            metrics.lines,
            max_chars,
            session_key,
        )
        indices.append(i)
    return indices


def _rewrite_branch(session_log: SessionLog, settings: CompactionSettings, session_key: str) -> SessionTruncationResult:
    branch = session_log.read_branch()
    if not branch:
        return SessionTruncationResult(truncated=False, reason="empty session")

    oversized = _find_oversized_indices(branch, settings, session_key)
    if not oversized:
        return SessionTruncationResult(truncated=False, reason="no oversized tool results")

    first = oversized[0]
    session_log.branch_from(branch[first].parent_id)

    max_chars = calculate_max_tool_result_chars(settings)
    oversized_set = set(oversized)
    truncated_count = 0

    for i in range(first, len(branch)):
        entry = branch[i]
        payload = entry.payload
        if i in oversized_set:
            message = truncate_tool_result_message(entry.message, max_chars, settings)
            payload = {**entry.payload, "message": message.model_dump(mode="json")}
            truncated_count += 1
            logger.info(
                "Truncated tool result: original_entry=%s new_chars=%d session=%s",
                entry.id,
                get_tool_result_text_metrics(message).chars,
                session_key,
            )
        session_log.append_entry(entry.type, payload)

    logger.info(
        "Truncated %d tool result(s) in session (context_window=%d max_chars=%d) session=%s",
        truncated_count,
        settings.context_window_tokens,
        max_chars,
        session_key,
    )
    return SessionTruncationResult(truncated=True, truncated_count=truncated_count)


async def truncate_oversized_tool_results_in_session(
    session_log: SessionLog,
    context_window_tokens: int,
    *,
    settings: Optional[CompactionSettings] = None,
    lock: Optional[asyncio.Lock] = None,
    session_key: Optional[str] = None,
) -> SessionTruncationResult:
    """Rewrite oversized tool results in a persisted session log.

    Entries after the first oversized tool result are re-appended in order.
    Only oversized tool results change; compactions, labels, branch
    summaries and every other entry are copied with their original payload.

    This function does not raise on failure; the error message is returned
    in ``reason`` instead. Cancellation still propagates.

    Args:
        session_log (SessionLog): The log to rewrite.
        context_window_tokens (int): Context window of the model that
            rejected the request.
        settings (Optional[CompactionSettings]): Compaction configuration;
            its window is replaced by *context_window_tokens*.
        lock (Optional[asyncio.Lock]): Session write lock. Defaults to the
            registry lock for *session_key*.
        session_key (Optional[str]): Lock key and log label. Defaults to the
            log's ``session_id``.

    Returns:
        SessionTruncationResult: Whether the log was rewritten and how many
            tool results were truncated.
    """
    key = session_key or getattr(session_log, "session_id", None) or "unknown"
    if settings is None:
        effective = get_compaction_settings(context_window_tokens)
    else:
        effective = replace(settings, context_window_tokens=max(1, int(context_window_tokens)))
    write_lock = lock if lock is not None else get_session_write_lock(key)

    async with write_lock:
        try:
            return _rewrite_branch(session_log, effective, key)
        except Exception as e:
            logger.warning("Failed to truncate tool results in session %s: %s", key, e)
            return SessionTruncationResult(truncated=False, reason=str(e) or type(e).__name__)
