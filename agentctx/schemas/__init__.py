# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Schemas for messages and session log entries."""
from .session import (
    TOOL_CALL_BLOCK_TYPES,
    ContentBlockType,
    EntryType,
    MessageRole,
)

__all__ = [
    "MessageRole",
    "ContentBlockType",
    "EntryType",
    "TOOL_CALL_BLOCK_TYPES",
]
