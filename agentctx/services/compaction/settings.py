# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Compaction settings.

Token thresholds are expressed as ratios of the context window; the
byte/line hard cap is a fixed constant applied regardless of the model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from agentctx.config import Settings
from agentctx.config import settings as env_settings
from agentctx.schemas.session import MessageRole

TOOL_OUTPUT_HARD_MAX_BYTES = 50 * 1024
TOOL_OUTPUT_HARD_MAX_LINES = 2_000

MIN_HISTORY_SHARE = 0.1
MAX_HISTORY_SHARE = 0.9

DEFAULT_TURN_BOUNDARY_ROLES: FrozenSet[str] = frozenset(
    {MessageRole.USER.value, MessageRole.BASH_EXECUTION.value}
)


@dataclass(frozen=True)
class ByteLineBudget:
    """Fixed UTF-8 byte and line ceiling for a single piece of content.

    Attributes:
        max_bytes (int): Maximum UTF-8 encoded length.
        max_lines (int): Maximum number of lines.
    """

    max_bytes: int = TOOL_OUTPUT_HARD_MAX_BYTES
    max_lines: int = TOOL_OUTPUT_HARD_MAX_LINES


def clamp_max_history_share(value: float) -> float:
    """Clamp a history share into ``[0.1, 0.9]``.

    Args:
        value (float): Requested share of the context window.

    Returns:
        float: The clamped share.
    """
    return max(MIN_HISTORY_SHARE, min(MAX_HISTORY_SHARE, value))


@dataclass
class CompactionSettings:
    """All compaction-related configuration in one place.

    Attributes:
        context_window_tokens (int): Maximum context window size in tokens.
        max_history_share (float): Share of the window history may use.
        chars_per_token (int): Approximate characters per token.
        max_tool_result_context_share (float): Maximum share of the context
            window a single tool result may occupy.
        hard_max_tool_result_chars (int): Absolute upper bound on tool result
            characters regardless of context share.
        min_keep_chars (int): Minimum characters to keep when truncating tool
            results.
        hard_cap (ByteLineBudget): Model-independent byte/line ceiling.
        base_chunk_ratio (float): Base ratio of context window used for chunk
            sizing.
        min_chunk_ratio (float): Minimum chunk ratio after adaptive reduction.
        safety_margin (float): Multiplier applied to token estimates to
            absorb estimator inaccuracy.
        summary_parts (int): Number of parts for staged summarization.
        min_messages_for_split (int): Minimum message count before staged
            summarization splits.
        reserve_tokens_floor (int): Minimum completion reserve handed to
            the summarizer.
        turn_boundary_roles (FrozenSet[str]): Roles that start a new turn.
    """

    context_window_tokens: int = 128_000
    max_history_share: float = 0.5
    chars_per_token: int = 4
    max_tool_result_context_share: float = 0.3
    hard_max_tool_result_chars: int = 400_000
    min_keep_chars: int = 2_000
    hard_cap: ByteLineBudget = field(default_factory=ByteLineBudget)
    base_chunk_ratio: float = 0.4
    min_chunk_ratio: float = 0.15
    safety_margin: float = 1.2
    summary_parts: int = 2
    min_messages_for_split: int = 4
    reserve_tokens_floor: int = 20_000
    turn_boundary_roles: FrozenSet[str] = DEFAULT_TURN_BOUNDARY_ROLES

    @property
    def context_window_chars(self) -> int:
        """Estimated context window size in characters.

        Returns:
            int: Product of ``context_window_tokens`` and ``chars_per_token``.
        """
        return self.context_window_tokens * self.chars_per_token

    @property
    def history_budget_tokens(self) -> int:
        """Token budget for message history, never below 1."""
        share = clamp_max_history_share(self.max_history_share)
        return max(1, int(self.context_window_tokens * share))

    def resolve_reserve_tokens(self, requested: Optional[int] = None) -> int:
        """Apply the reserve-tokens floor to a requested completion reserve.

        Args:
            requested (Optional[int]): Reserve requested by the caller.

        Returns:
            int: ``requested`` raised to at least ``reserve_tokens_floor``.
        """
        if requested is None or requested < self.reserve_tokens_floor:
            return self.reserve_tokens_floor
        return requested

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "CompactionSettings":
        """Build compaction settings from application settings.

        Args:
            app_settings (Settings): Environment-backed settings.

        Returns:
            CompactionSettings: Settings with every value taken from
                ``app_settings``.
        """
        return cls(
            context_window_tokens=app_settings.CONTEXT_WINDOW_TOKENS,
            max_history_share=clamp_max_history_share(app_settings.MAX_HISTORY_SHARE),
            chars_per_token=app_settings.CHARS_PER_TOKEN,
            max_tool_result_context_share=app_settings.MAX_TOOL_RESULT_CONTEXT_SHARE,
            hard_max_tool_result_chars=app_settings.HARD_MAX_TOOL_RESULT_CHARS,
            min_keep_chars=app_settings.MIN_KEEP_CHARS,
            hard_cap=ByteLineBudget(
                max_bytes=app_settings.TOOL_OUTPUT_HARD_MAX_BYTES,
                max_lines=app_settings.TOOL_OUTPUT_HARD_MAX_LINES,
            ),
            base_chunk_ratio=app_settings.BASE_CHUNK_RATIO,
            min_chunk_ratio=app_settings.MIN_CHUNK_RATIO,
            safety_margin=app_settings.SAFETY_MARGIN,
            summary_parts=app_settings.SUMMARY_PARTS,
            min_messages_for_split=app_settings.MIN_MESSAGES_FOR_SPLIT,
            reserve_tokens_floor=app_settings.COMPACTION_RESERVE_TOKENS_FLOOR,
            turn_boundary_roles=app_settings.get_turn_boundary_roles(),
        )


def get_compaction_settings(context_window_tokens: Optional[int] = None) -> CompactionSettings:
    """Compaction settings from the environment, optionally for a specific window.

    Args:
        context_window_tokens (Optional[int]): Context window of the target
            model. Defaults to ``CONTEXT_WINDOW_TOKENS``.

    Returns:
        CompactionSettings: The effective settings.
    """
    resolved = CompactionSettings.from_settings(env_settings)
    if context_window_tokens is not None:
        resolved.context_window_tokens = max(1, int(context_window_tokens))
    return resolved
