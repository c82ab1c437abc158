# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
LLM-based compaction.

Summarizes conversation history that pruning dropped, so the model keeps
the gist of earlier turns. Supports chunked rolling summarization, a
fallback ladder for oversized messages, and multi-stage merge.

The summarization call itself is injected through the ``Summarizer``
protocol; ``LangChainSummarizer`` adapts any ``langchain_core`` chat model.
Summaries are never replaced by a placeholder: when nothing can be
summarized, ``SummaryUnavailableError`` is raised and history is left
untouched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Protocol

from agentctx.models import Message, SummaryMessage
from agentctx.schemas.session import MessageRole
from agentctx.services.compaction.errors import (
    CompactionAbortedError,
    EmptySummaryError,
    SummaryUnavailableError,
    is_abort_error,
)
from agentctx.services.compaction.pruning import prune_history_for_context_share
from agentctx.services.compaction.settings import (
    CompactionSettings,
    clamp_max_history_share,
    get_compaction_settings,
)
from agentctx.services.compaction.tokens import TokenEstimator, estimate_message_tokens, sanitize_tokens_after_estimate
from agentctx.services.prompts.base import (
    COMPACTION_PREFIX,
    COMPACTION_SYSTEM_PROMPT,
    DEFAULT_SUMMARY_FALLBACK,
    MERGE_SUMMARIES_INSTRUCTIONS,
    build_summary_prompt,
)
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

DEFAULT_PARTS = 2
DEFAULT_MIN_MESSAGES_FOR_SPLIT = 4
OVERSIZED_SUMMARY_SHARE = 0.5
ADAPTIVE_RATIO_THRESHOLD = 0.1

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    """Produces a summary of a batch of messages."""

    async def __call__(
        self,
        messages: List[Message],
        *,
        model: Any,
        reserve_tokens: int,
        credentials: Any,
        cancel_signal: Optional[asyncio.Event],
        instructions: Optional[str] = None,
        previous_summary: Optional[str] = None,
    ) -> str:
        ...


@dataclass(frozen=True)
class SummarizerCall:
    """Per-operation arguments forwarded to every summarizer call.

    Attributes:
        model (Any): Model handle understood by the summarizer.
        reserve_tokens (int): Completion tokens reserved for the summary.
        credentials (Any): Provider credentials, if the summarizer needs them.
        cancel_signal (Optional[asyncio.Event]): Set to cancel the operation.
    """

    model: Any = None
    reserve_tokens: int = 0
    credentials: Any = None
    cancel_signal: Optional[asyncio.Event] = None


@dataclass
class CompactionResult:
    """Result of compacting a history.

    Attributes:
        messages (List[Message]): New history; starts with the summary when
            compaction happened.
        summary (Optional[SummaryMessage]): The summary message, if any.
        compacted (bool): Whether any history was replaced.
        dropped_messages (int): Messages removed from the history, including
            repaired orphans.
        tokens_before (int): Estimated tokens before compaction.
        tokens_after (int): Estimated tokens after compaction.
    """

    messages: List[Message]
    summary: Optional[SummaryMessage] = None
    compacted: bool = False
    dropped_messages: int = 0
    tokens_before: int = 0
    tokens_after: int = 0


def _check_cancelled(cancel_signal: Optional[asyncio.Event]) -> None:
    if cancel_signal is not None and cancel_signal.is_set():
        raise CompactionAbortedError()


def messages_to_text(
    messages: List[Message],
    max_chars_per_message: int = 2_000,
) -> str:
    """Serialize messages to text for summarization.

    The text-only format keeps the summarizer from treating the content as
    a conversation to continue.

    Format:
        [User]: ...
        [Assistant]: ...          (text content only)
        [Assistant tool calls]: name(key=val); name2(key=val)
        [Tool result]: ...        (or [Tool result (name)]: ...)

    Sections are separated by double newlines (``\\n\\n``).

    Args:
        messages (List[Message]): Messages to convert.
        max_chars_per_message (int): Maximum characters to keep per message
            content. Defaults to 2000.

    Returns:
        str: Double-newline-joined string of role-prefixed entries.
    """
    labels = {
        MessageRole.USER: "[User]",
        MessageRole.SYSTEM: "[System]",
        MessageRole.BASH_EXECUTION: "[Bash]",
        MessageRole.CUSTOM: "[Custom]",
        MessageRole.COMPACTION_SUMMARY: "[Summary]",
    }
    parts: List[str] = []
    for msg in messages:
        content = msg.text[:max_chars_per_message]

        if msg.role == MessageRole.ASSISTANT:
            if content:
                parts.append(f"[Assistant]: {content}")
            if msg.tool_calls:
                tc_strs: List[str] = []
                for tc in msg.tool_calls:
                    args = tc.arguments if tc.arguments is not None else {}
                    try:
                        if isinstance(args, dict):
                            pairs = ", ".join(f"{k}={json.dumps(v, ensure_ascii=False)}" for k, v in args.items())
                        else:
                            pairs = json.dumps(args, ensure_ascii=False)
                    except (TypeError, ValueError):
                        pairs = str(args)
                    tc_strs.append(f"{tc.name or 'unknown'}({pairs[:max_chars_per_message]})")
                parts.append(f"[Assistant tool calls]: {'; '.join(tc_strs)}")

        elif msg.role == MessageRole.TOOL_RESULT:
            label = f"[Tool result ({msg.tool_name})]" if msg.tool_name else "[Tool result]"
            if content:
                parts.append(f"{label}: {content}")

        elif content:
            parts.append(f"{labels.get(msg.role, '[Message]')}: {content}")

    return "\n\n".join(parts)


class LangChainSummarizer:
    """Summarizer backed by a ``langchain_core`` chat model.

    The chat model instance already carries its model name and credentials,
    so the ``model``, ``reserve_tokens`` and ``credentials`` arguments are
    accepted for protocol compatibility and not forwarded.

    Attributes:
        llm (BaseChatModel): Language model used to produce summaries.
        max_chars_per_message (int): Per-message character limit when
            serializing the conversation.
    """

    def __init__(self, llm: BaseChatModel, max_chars_per_message: int = 2_000):
        self.llm = llm
        self.max_chars_per_message = max_chars_per_message

    async def __call__(
        self,
        messages: List[Message],
        *,
        model: Any = None,
        reserve_tokens: int = 0,
        credentials: Any = None,
        cancel_signal: Optional[asyncio.Event] = None,
        instructions: Optional[str] = None,
        previous_summary: Optional[str] = None,
    ) -> str:
        """Generate an LLM summary of the given messages.

        Uses an update prompt when a previous summary exists to produce an
        incremental summary, otherwise generates a fresh one.

        Returns:
            str: The generated summary text.

        Raises:
            CompactionAbortedError: If *cancel_signal* is set before or
                after the model call.
        """
        _check_cancelled(cancel_signal)
        conversation = messages_to_text(messages, self.max_chars_per_message)
        if not conversation.strip():
            return previous_summary if previous_summary is not None else DEFAULT_SUMMARY_FALLBACK

        prompt = build_summary_prompt(conversation, previous_summary, instructions)
        response = await self.llm.ainvoke(
            [
                SystemMessage(content=COMPACTION_SYSTEM_PROMPT),
                HumanMessage(content=prompt),
            ]
        )
        _check_cancelled(cancel_signal)
        return response.content if isinstance(response.content, str) else str(response.content)


def chunk_messages_by_max_tokens(
    messages: List[Message],
    max_tokens: int,
    estimator: Optional[TokenEstimator] = None,
) -> List[List[Message]]:
    """Split messages into chunks each fitting within *max_tokens*.

    Args:
        messages (List[Message]): Messages to split into chunks.
        max_tokens (int): Maximum estimated token count per chunk.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        List[List[Message]]: List of message chunks, each within the token
            budget. A single message exceeding the budget forms its own chunk.
    """
    if not messages:
        return []

    estimate = estimator or estimate_message_tokens
    chunks: List[List[Message]] = []
    current: List[Message] = []
    current_tokens = 0

    for msg in messages:
        msg_tokens = estimate(msg)

        if current and current_tokens + msg_tokens > max_tokens:
            chunks.append(current)
            current = []
            current_tokens = 0

        current.append(msg)
        current_tokens += msg_tokens

        if msg_tokens > max_tokens:
            chunks.append(current)
            current = []
            current_tokens = 0

    if current:
        chunks.append(current)
    return chunks


def normalize_parts(parts: Optional[float], message_count: int) -> int:
    """Clamp a requested part count to ``[1, message_count]``."""
    if parts is None or not math.isfinite(parts) or parts <= 1:
        return 1
    return min(max(1, int(parts)), max(1, message_count))


def split_messages_by_token_share(
    messages: List[Message],
    parts: int = DEFAULT_PARTS,
    estimator: Optional[TokenEstimator] = None,
) -> List[List[Message]]:
    """Split messages into *parts* roughly equal by token count.

    Args:
        messages (List[Message]): Messages to split.
        parts (int): Desired number of roughly equal parts. Defaults to 2.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        List[List[Message]]: Contiguous message chunks split approximately
            equally by token count.
    """
    if not messages:
        return []
    parts = normalize_parts(parts, len(messages))
    if parts <= 1:
        return [list(messages)]

    estimate = estimator or estimate_message_tokens
    total_tokens = sum(estimate(m) for m in messages)
    target = total_tokens / parts

    chunks: List[List[Message]] = []
    current: List[Message] = []
    current_tokens = 0

    for msg in messages:
        msg_tokens = estimate(msg)
        if len(chunks) < parts - 1 and current and current_tokens + msg_tokens > target:
            chunks.append(current)
            current = []
            current_tokens = 0

        current.append(msg)
        current_tokens += msg_tokens

    if current:
        chunks.append(current)
    return chunks


def compute_adaptive_chunk_ratio(
    messages: List[Message],
    settings: CompactionSettings,
    estimator: Optional[TokenEstimator] = None,
) -> float:
    """Reduce chunk ratio when average message size is large.

    Args:
        messages (List[Message]): Messages used to compute average size.
        settings (CompactionSettings): Compaction configuration providing
            base and minimum chunk ratios.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        float: Adjusted chunk ratio, reduced from ``base_chunk_ratio`` when
            average message tokens exceed 10% of the context window.
    """
    if not messages:
        return settings.base_chunk_ratio

    estimate = estimator or estimate_message_tokens
    total = sum(estimate(m) for m in messages)
    avg = total / len(messages)
    safe_avg = avg * settings.safety_margin
    avg_ratio = safe_avg / settings.context_window_tokens

    if avg_ratio > ADAPTIVE_RATIO_THRESHOLD:
        reduction = min(avg_ratio * 2, settings.base_chunk_ratio - settings.min_chunk_ratio)
        return max(settings.min_chunk_ratio, settings.base_chunk_ratio - reduction)

    return settings.base_chunk_ratio


def is_oversized_for_summary(
    msg: Message,
    settings: CompactionSettings,
    estimator: Optional[TokenEstimator] = None,
) -> bool:
    """A single message > 50% of the context window cannot be summarized safely.

    Args:
        msg (Message): Message to check.
        settings (CompactionSettings): Compaction configuration providing
            context window size and safety margin.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        bool: ``True`` if the message is too large to be summarized safely.
    """
    estimate = estimator or estimate_message_tokens
    tokens = estimate(msg) * settings.safety_margin
    return tokens > settings.context_window_tokens * OVERSIZED_SUMMARY_SHARE


async def summarize_chunks(
    messages: List[Message],
    summarizer: Summarizer,
    call: SummarizerCall,
    max_chunk_tokens: int,
    *,
    instructions: Optional[str] = None,
    previous_summary: Optional[str] = None,
    estimator: Optional[TokenEstimator] = None,
) -> str:
    """Summarize message chunks one after another.

    Each chunk's summary is passed to the next call as its previous
    summary, so the result is a single rolling summary.

    Args:
        messages (List[Message]): Messages to summarize.
        summarizer (Summarizer): Summarization call.
        call (SummarizerCall): Arguments forwarded to every call.
        max_chunk_tokens (int): Maximum estimated tokens per chunk.
        instructions (Optional[str]): Extra focus instructions.
        previous_summary (Optional[str]): An existing summary to update
            incrementally. Defaults to ``None``.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        str: The final summary after iterating through all chunks.

    Raises:
        EmptySummaryError: If the summarizer returns an empty summary.
    """
    if not messages:
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    summary = previous_summary
    for chunk in chunk_messages_by_max_tokens(messages, max_chunk_tokens, estimator):
        _check_cancelled(call.cancel_signal)
        summary = await summarizer(
            chunk,
            model=call.model,
            reserve_tokens=call.reserve_tokens,
            credentials=call.credentials,
            cancel_signal=call.cancel_signal,
            instructions=instructions,
            previous_summary=summary,
        )
        if not isinstance(summary, str) or not summary.strip():
            raise EmptySummaryError(len(chunk))

    return summary


async def summarize_with_fallback(
    messages: List[Message],
    summarizer: Summarizer,
    call: SummarizerCall,
    settings: CompactionSettings,
    max_chunk_tokens: int,
    *,
    instructions: Optional[str] = None,
    previous_summary: Optional[str] = None,
    estimator: Optional[TokenEstimator] = None,
) -> str:
    """Summarize with progressive fallback for oversized messages.

    1. Try full summarization.
    2. On failure, summarize only small messages and note oversized ones.
    3. If that fails too, or nothing small is left, raise.

    Cancellation is never treated as a failure and propagates immediately.

    Args:
        messages (List[Message]): Messages to summarize.
        summarizer (Summarizer): Summarization call.
        call (SummarizerCall): Arguments forwarded to every call.
        settings (CompactionSettings): Compaction configuration for oversized
            message detection.
        max_chunk_tokens (int): Maximum estimated tokens per chunk.
        instructions (Optional[str]): Extra focus instructions.
        previous_summary (Optional[str]): An existing summary to update
            incrementally. Defaults to ``None``.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        str: The full summary, or a partial summary followed by one note
            per omitted oversized message.

    Raises:
        SummaryUnavailableError: If no summary could be produced.
        CompactionAbortedError: If the operation was cancelled.
    """
    if not messages:
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    estimate = estimator or estimate_message_tokens
    last_error: Optional[BaseException] = None

    try:
        return await summarize_chunks(
            messages,
            summarizer,
            call,
            max_chunk_tokens,
            instructions=instructions,
            previous_summary=previous_summary,
            estimator=estimate,
        )
    except Exception as e:
        if is_abort_error(e, call.cancel_signal):
            raise
        last_error = e
        logger.warning("Full summarization failed, trying partial: %s", e)

    small: List[Message] = []
    oversized_notes: List[str] = []

    for msg in messages:
        if is_oversized_for_summary(msg, settings, estimate):
            tokens = estimate(msg)
            oversized_notes.append(f"[Large {msg.role.value} (~{round(tokens / 1000)}K tokens) omitted from summary]")
        else:
            small.append(msg)

    if small:
        try:
            partial = await summarize_chunks(
                small,
                summarizer,
                call,
                max_chunk_tokens,
                instructions=instructions,
                previous_summary=previous_summary,
                estimator=estimate,
            )
            notes = "\n\n" + "\n".join(oversized_notes) if oversized_notes else ""
            return partial + notes
        except Exception as e:
            if is_abort_error(e, call.cancel_signal):
                raise
            last_error = e
            logger.warning("Partial summarization also failed: %s", e)

    raise SummaryUnavailableError(len(messages), len(oversized_notes), cause=last_error)


async def summarize_in_stages(
    messages: List[Message],
    summarizer: Summarizer,
    call: SummarizerCall,
    settings: CompactionSettings,
    max_chunk_tokens: int,
    *,
    instructions: Optional[str] = None,
    previous_summary: Optional[str] = None,
    parts: Optional[int] = None,
    min_messages_for_split: Optional[int] = None,
    estimator: Optional[TokenEstimator] = None,
) -> str:
    """Multi-stage summarization: split -> summarize parts -> merge summaries.

    Splitting only happens when there are at least two parts, at least
    ``max(2, min_messages_for_split)`` messages, and more tokens than fit
    one chunk. Parts are summarized one after another without the previous
    summary; the merge call receives it instead.

    Args:
        messages (List[Message]): Messages to summarize.
        summarizer (Summarizer): Summarization call.
        call (SummarizerCall): Arguments forwarded to every call.
        settings (CompactionSettings): Compaction configuration for chunk
            sizing and fallback behaviour.
        max_chunk_tokens (int): Maximum estimated tokens per chunk.
        instructions (Optional[str]): Extra focus instructions, appended to
            the merge instructions when splitting.
        previous_summary (Optional[str]): An existing summary to update
            incrementally. Defaults to ``None``.
        parts (Optional[int]): Number of splits. Defaults to 2.
        min_messages_for_split (Optional[int]): Minimum message count
            required before splitting is attempted. Defaults to 4.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        str: Merged summary produced from individually summarized parts, or
            a single-pass summary when splitting is unnecessary.
    """
    if not messages:
        return previous_summary or DEFAULT_SUMMARY_FALLBACK

    estimate = estimator or estimate_message_tokens
    min_messages = max(2, min_messages_for_split if min_messages_for_split is not None else DEFAULT_MIN_MESSAGES_FOR_SPLIT)
    parts = normalize_parts(parts if parts is not None else DEFAULT_PARTS, len(messages))
    total = sum(estimate(m) for m in messages)

    async def single_pass(batch: List[Message], summary: Optional[str], extra: Optional[str]) -> str:
        return await summarize_with_fallback(
            batch,
            summarizer,
            call,
            settings,
            max_chunk_tokens,
            instructions=extra,
            previous_summary=summary,
            estimator=estimate,
        )

    if parts <= 1 or len(messages) < min_messages or total <= max_chunk_tokens:
        return await single_pass(messages, previous_summary, instructions)

    splits = [s for s in split_messages_by_token_share(messages, parts, estimate) if s]
    if len(splits) <= 1:
        return await single_pass(messages, previous_summary, instructions)

    partial_summaries: List[str] = []
    for chunk in splits:
        partial_summaries.append(await single_pass(chunk, None, instructions))

    if len(partial_summaries) == 1:
        return partial_summaries[0]

    merge_messages = [Message(role=MessageRole.USER, content=s) for s in partial_summaries]
    merge_instructions = (
        f"{MERGE_SUMMARIES_INSTRUCTIONS}\n\nAdditional focus:\n{instructions}"
        if instructions
        else MERGE_SUMMARIES_INSTRUCTIONS
    )
    return await single_pass(merge_messages, previous_summary, merge_instructions)


def _extract_previous_summary(msg: Message) -> Optional[str]:
    if msg.role != MessageRole.COMPACTION_SUMMARY:
        return None
    text = msg.text
    if text.startswith(COMPACTION_PREFIX):
        text = text[len(COMPACTION_PREFIX) :]
    return text.strip() or None


async def compact_history(
    messages: List[Message],
    summarizer: Summarizer,
    call: SummarizerCall,
    settings: Optional[CompactionSettings] = None,
    *,
    instructions: Optional[str] = None,
    estimator: Optional[TokenEstimator] = None,
) -> CompactionResult:
    """Compact conversation history by pruning and summarizing the dropped part.

    - Detects a leading compaction summary and updates it incrementally.
    - Prunes with the turn-aware pruner to the configured history share.
    - Summarizes the dropped prefix, plus tool results orphaned by the cut,
      using adaptive chunk sizing and staged summarization.

    Args:
        messages (List[Message]): Full conversation message list to compact.
        summarizer (Summarizer): Summarization call.
        call (SummarizerCall): Arguments forwarded to every call. The
            reserve is raised to ``reserve_tokens_floor``.
        settings (Optional[CompactionSettings]): Compaction configuration.
        instructions (Optional[str]): Extra focus instructions.
        estimator (Optional[TokenEstimator]): Per-message token estimator.

    Returns:
        CompactionResult: The compacted history. When nothing needs to be
            dropped, the original messages with ``compacted=False``.

    Raises:
        SummaryUnavailableError: If the dropped history could not be
            summarized. The caller's history is left unchanged.
        CompactionAbortedError: If the operation was cancelled.
    """
    settings = settings or get_compaction_settings()
    estimate = estimator or estimate_message_tokens
    tokens_before = sum(estimate(m) for m in messages)

    previous_summary = _extract_previous_summary(messages[0]) if messages else None
    offset = 1 if messages and messages[0].role == MessageRole.COMPACTION_SUMMARY else 0
    history = list(messages[offset:])

    pruned = prune_history_for_context_share(
        history,
        settings.context_window_tokens,
        clamp_max_history_share(settings.max_history_share),
        estimator=estimate,
        turn_boundary_roles=settings.turn_boundary_roles,
    )
    if not pruned.dropped_prefix:
        return CompactionResult(messages=list(messages), tokens_before=tokens_before, tokens_after=tokens_before)

    cut_index = len(pruned.dropped_prefix)
    kept_ids = {id(m) for m in pruned.messages}
    orphan_indices = [
        offset + i for i in range(cut_index, len(history)) if id(history[i]) not in kept_ids
    ]
    orphans = [messages[i] for i in orphan_indices]
    to_summarize = pruned.dropped_prefix + orphans

    chunk_ratio = compute_adaptive_chunk_ratio(to_summarize, settings, estimate)
    max_chunk_tokens = max(1, int(settings.context_window_tokens * chunk_ratio))
    call = replace(call, reserve_tokens=settings.resolve_reserve_tokens(call.reserve_tokens))

    summary_text = await summarize_in_stages(
        to_summarize,
        summarizer,
        call,
        settings,
        max_chunk_tokens,
        instructions=instructions,
        previous_summary=previous_summary,
        parts=settings.summary_parts,
        min_messages_for_split=settings.min_messages_for_split,
        estimator=estimate,
    )

    replaced = list(messages[: offset + cut_index]) + orphans
    summary = SummaryMessage(
        content=f"{COMPACTION_PREFIX}\n{summary_text}",
        tokens_before=sum(estimate(m) for m in replaced),
        replaced_range=(0, offset + cut_index),
        orphan_indices=tuple(orphan_indices),
    )
    compacted = [summary, *pruned.messages]
    tokens_after = sanitize_tokens_after_estimate(sum(estimate(m) for m in compacted), tokens_before)

    logger.info(
        "Compacted %d messages -> %d (summarized %d, chunk ratio %.3f, %d -> %d tokens)",
        len(messages),
        len(compacted),
        len(to_summarize),
        chunk_ratio,
        tokens_before,
        tokens_after,
    )
    return CompactionResult(
        messages=compacted,
        summary=summary,
        compacted=True,
        dropped_messages=pruned.dropped_messages,
        tokens_before=tokens_before,
        tokens_after=tokens_after,
    )
