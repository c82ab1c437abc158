# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction error types and error classifiers.

``SummaryUnavailableError`` is user-visible: compaction refuses to replace
history it could not summarize. ``CompactionAbortedError`` is raised by
summarizers that observe a set cancel signal.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Union

_CONTEXT_OVERFLOW_PATTERNS = (
    "context_length_exceeded",
    "context window",
    "maximum context length",
    "token limit",
    "too many tokens",
    "request too large",
    "content_too_large",
    "max_tokens",
    "string too long",
    "prompt is too long",
    "input too long",
)


class CompactionError(Exception):
    """Base class for context compaction failures."""


class SummaryUnavailableError(CompactionError):
    """Raised when no summary could be produced for the history being compacted.

    Attributes:
        message_count (int): Number of messages that were to be summarized.
        oversized_count (int): Number of those messages too large to summarize.
    """

    def __init__(self, message_count: int, oversized_count: int, cause: Optional[BaseException] = None):
        self.message_count = message_count
        self.oversized_count = oversized_count
        self.cause = cause
        super().__init__(
            "Summary unavailable; refusing to compact to avoid data loss "
            f"(messages={message_count} oversized={oversized_count})."
        )


class EmptySummaryError(CompactionError):
    """Raised when a summarizer call returns no summary text.

    Attributes:
        message_count (int): Number of messages in the chunk that produced
            the empty summary.
    """

    def __init__(self, message_count: int):
        self.message_count = message_count
        super().__init__(f"Summarizer returned an empty summary for {message_count} message(s).")


class CompactionAbortedError(CompactionError):
    """Raised when summarization is cancelled through the cancel signal."""

    def __init__(self, message: str = "Compaction aborted"):
        super().__init__(message)


def is_abort_error(error: BaseException, cancel_signal: Optional[asyncio.Event] = None) -> bool:
    """Check whether an error means the operation was cancelled.

    Args:
        error (BaseException): The error raised by a summarizer call.
        cancel_signal (Optional[asyncio.Event]): Cancel signal of the
            operation, if any.

    Returns:
        bool: True for task cancellation, ``CompactionAbortedError``, or any
            error raised after the signal was set.
    """
    if isinstance(error, (asyncio.CancelledError, CompactionAbortedError)):
        return True
    return cancel_signal is not None and cancel_signal.is_set()


def is_context_overflow_error(error: Union[BaseException, str, None]) -> bool:
    """Check whether an error indicates a context window overflow.

    Args:
        error (Union[BaseException, str, None]): The exception, or a raw
            provider error message, to inspect.

    Returns:
        bool: True if the error message matches a known overflow pattern.
    """
    if error is None:
        return False
    msg = str(error).lower()
    return any(s in msg for s in _CONTEXT_OVERFLOW_PATTERNS)
