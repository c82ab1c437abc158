# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Context budget management.

Keeps message history and tool output inside a model's context window
without breaking tool call pairing or silently losing history:

  Hard cap  (hard_cap.py)
      Clamp any text, or any nested tool payload, to a fixed byte/line
      ceiling.

  Tool result truncation  (truncation.py)
      Cap individual tool results to a share of the context window, and
      cap tool results before they are persisted.

  Turn-aware pruning  (pruning.py, repair.py)
      Drop the oldest history at a turn boundary so the rest fits the
      history budget, then remove orphaned tool results.

  Summarization  (summarizer.py)
      Summarize the dropped history with adaptive chunking, a fallback
      ladder, and multi-stage merge.

  Overflow recovery  (recovery.py, session_log.py)
      Rewrite oversized tool results in a persisted session log after a
      provider rejected a request.

Usage:

    settings = CompactionSettings(context_window_tokens=128_000)

    capped = hard_cap_tool_output(tool_output)
    report = truncate_oversized_tool_results_in_messages(messages, settings)
    result = await compact_history(report.messages, LangChainSummarizer(llm), SummarizerCall(), settings)

    # after a provider rejected the request
    if is_context_overflow_error(err):
        await truncate_oversized_tool_results_in_session(session_log, settings.context_window_tokens)
"""

from agentctx.services.compaction.errors import (
    CompactionAbortedError,
    CompactionError,
    EmptySummaryError,
    SummaryUnavailableError,
    is_abort_error,
    is_context_overflow_error,
)
from agentctx.services.compaction.hard_cap import (
    CapOutcome,
    CappedPayload,
    TruncatedText,
    count_lines,
    hard_cap_tool_output,
    hard_truncate_text,
)
from agentctx.services.compaction.pruning import (
    PruneResult,
    choose_turn_aware_cut_index,
    prune_history_for_context_share,
)
from agentctx.services.compaction.recovery import (
    SessionTruncationResult,
    truncate_oversized_tool_results_in_session,
)
from agentctx.services.compaction.repair import RepairReport, repair_tool_use_result_pairing
from agentctx.services.compaction.session_log import (
    InMemorySessionLog,
    SessionLog,
    get_session_write_lock,
)
from agentctx.services.compaction.settings import (
    ByteLineBudget,
    CompactionSettings,
    clamp_max_history_share,
    get_compaction_settings,
)
from agentctx.services.compaction.summarizer import (
    CompactionResult,
    LangChainSummarizer,
    Summarizer,
    SummarizerCall,
    chunk_messages_by_max_tokens,
    compact_history,
    compute_adaptive_chunk_ratio,
    is_oversized_for_summary,
    split_messages_by_token_share,
    summarize_chunks,
    summarize_in_stages,
    summarize_with_fallback,
)
from agentctx.services.compaction.tokens import (
    estimate_message_chars,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
    resolve_context_window_tokens,
    sanitize_tokens_after_estimate,
)
from agentctx.services.compaction.truncation import (
    TruncationReport,
    calculate_max_tool_result_chars,
    cap_tool_result_for_persistence,
    is_oversized_tool_result,
    session_likely_has_oversized_tool_results,
    truncate_oversized_tool_results_in_messages,
    truncate_tool_result_message,
    truncate_tool_result_text,
)

__all__ = [
    "CompactionSettings",
    "ByteLineBudget",
    "clamp_max_history_share",
    "get_compaction_settings",
    "CompactionError",
    "SummaryUnavailableError",
    "EmptySummaryError",
    "CompactionAbortedError",
    "is_abort_error",
    "is_context_overflow_error",
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_message_chars",
    "sanitize_tokens_after_estimate",
    "resolve_context_window_tokens",
    "count_lines",
    "hard_truncate_text",
    "hard_cap_tool_output",
    "TruncatedText",
    "CappedPayload",
    "CapOutcome",
    "calculate_max_tool_result_chars",
    "truncate_tool_result_text",
    "truncate_tool_result_message",
    "truncate_oversized_tool_results_in_messages",
    "is_oversized_tool_result",
    "session_likely_has_oversized_tool_results",
    "cap_tool_result_for_persistence",
    "TruncationReport",
    "repair_tool_use_result_pairing",
    "RepairReport",
    "choose_turn_aware_cut_index",
    "prune_history_for_context_share",
    "PruneResult",
    "Summarizer",
    "SummarizerCall",
    "LangChainSummarizer",
    "chunk_messages_by_max_tokens",
    "split_messages_by_token_share",
    "compute_adaptive_chunk_ratio",
    "is_oversized_for_summary",
    "summarize_chunks",
    "summarize_with_fallback",
    "summarize_in_stages",
    "compact_history",
    "CompactionResult",
    "SessionLog",
    "InMemorySessionLog",
    "get_session_write_lock",
    "SessionTruncationResult",
    "truncate_oversized_tool_results_in_session",
]
