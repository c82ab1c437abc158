# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Application configuration using pydantic-settings.
"""

from typing import FrozenSet

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Context budget settings.

    Attributes:
        CONTEXT_WINDOW_TOKENS (int): Default model context window used when
            the caller does not know the model's window.
        MAX_HISTORY_SHARE (float): Share of the context window that message
            history may occupy before pruning.
        TOOL_OUTPUT_HARD_MAX_BYTES (int): Global UTF-8 byte ceiling for a
            single tool output, independent of the model.
        TOOL_OUTPUT_HARD_MAX_LINES (int): Global line ceiling for a single
            tool output, independent of the model.
        CHARS_PER_TOKEN (int): Characters-per-token heuristic used to derive
            character budgets from token budgets.
        MAX_TOOL_RESULT_CONTEXT_SHARE (float): Maximum share of the context
            window a single tool result may occupy.
        HARD_MAX_TOOL_RESULT_CHARS (int): Absolute character ceiling for a
            single tool result regardless of window size.
        MIN_KEEP_CHARS (int): Minimum characters kept when truncating a tool
            result.
        BASE_CHUNK_RATIO (float): Starting share of the window per summary
            chunk.
        MIN_CHUNK_RATIO (float): Floor for the adaptive chunk ratio.
        SAFETY_MARGIN (float): Multiplier applied to token estimates to
            absorb estimator bias.
        SUMMARY_PARTS (int): Number of parts used by staged summarization.
        MIN_MESSAGES_FOR_SPLIT (int): Minimum message count before staged
            summarization splits its input.
        COMPACTION_RESERVE_TOKENS_FLOOR (int): Minimum completion reserve
            handed to the summarizer.
        TURN_BOUNDARY_ROLES (str): Comma-separated message roles that start
            a new conversational turn.
        TOKENIZER_MODEL (str): Model name used to pick the tiktoken encoding.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    CONTEXT_WINDOW_TOKENS: int = 128_000
    MAX_HISTORY_SHARE: float = 0.5

    # Hard cap (model independent)
    TOOL_OUTPUT_HARD_MAX_BYTES: int = 50 * 1024
    TOOL_OUTPUT_HARD_MAX_LINES: int = 2_000

    # Tool result truncation
    CHARS_PER_TOKEN: int = 4
    MAX_TOOL_RESULT_CONTEXT_SHARE: float = 0.3
    HARD_MAX_TOOL_RESULT_CHARS: int = 400_000
    MIN_KEEP_CHARS: int = 2_000

    # Summarization
    BASE_CHUNK_RATIO: float = 0.4
    MIN_CHUNK_RATIO: float = 0.15
    SAFETY_MARGIN: float = 1.2
    SUMMARY_PARTS: int = 2
    MIN_MESSAGES_FOR_SPLIT: int = 4
    COMPACTION_RESERVE_TOKENS_FLOOR: int = 20_000

    TURN_BOUNDARY_ROLES: str = "user,bashExecution"
    TOKENIZER_MODEL: str = "gpt-4o"

    def get_turn_boundary_roles(self) -> FrozenSet[str]:
        """Parse turn boundary roles as a set.

        Returns:
            FrozenSet[str]: Role names split from the comma-separated
                TURN_BOUNDARY_ROLES setting, blanks removed.
        """
        return frozenset(role.strip() for role in self.TURN_BOUNDARY_ROLES.split(",") if role.strip())


settings = Settings()
