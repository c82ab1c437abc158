# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Enumerations shared by messages and session log entries."""

from enum import Enum


class MessageRole(str, Enum):
    """Message role enumeration.

    Attributes:
        USER (str): User role.
        ASSISTANT (str): Assistant role.
        SYSTEM (str): System role.
        TOOL_RESULT (str): Tool result role; must follow the assistant
            message that issued the matching tool call.
        BASH_EXECUTION (str): User-initiated shell execution, treated as a
            turn boundary like a user message.
        CUSTOM (str): Extension-defined message.
        COMPACTION_SUMMARY (str): Synthetic summary replacing a compacted
            history prefix.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL_RESULT = "toolResult"
    BASH_EXECUTION = "bashExecution"
    CUSTOM = "custom"
    COMPACTION_SUMMARY = "compactionSummary"


class ContentBlockType(str, Enum):
    """Known content block kinds.

    ``TOOL_CALL``, ``TOOL_USE`` and ``FUNCTION_CALL`` are provider spellings
    of the same thing and are treated identically.
    """

    TEXT = "text"
    TOOL_CALL = "toolCall"
    TOOL_USE = "toolUse"
    FUNCTION_CALL = "functionCall"
    IMAGE = "image"
    THINKING = "thinking"


TOOL_CALL_BLOCK_TYPES = frozenset(
    {ContentBlockType.TOOL_CALL.value, ContentBlockType.TOOL_USE.value, ContentBlockType.FUNCTION_CALL.value}
)


class EntryType(str, Enum):
    """Session log entry kinds.

    Only ``MESSAGE`` entries carry conversation content; every other kind is
    structural and is replayed verbatim when a log is rewritten.
    """

    MESSAGE = "message"
    COMPACTION = "compaction"
    MODEL_CHANGE = "model_change"
    THINKING_LEVEL_CHANGE = "thinking_level_change"
    LABEL = "label"
    BRANCH_SUMMARY = "branch_summary"
    CUSTOM = "custom"
    CUSTOM_MESSAGE = "custom_message"
    SESSION_INFO = "session_info"
