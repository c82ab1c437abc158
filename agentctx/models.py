# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared models for the application."""

from typing import Any, Dict, List, Optional, Tuple, Union

from agentctx.schemas.session import TOOL_CALL_BLOCK_TYPES, ContentBlockType, EntryType, MessageRole
from pydantic import BaseModel, ConfigDict, Field


class ContentBlock(BaseModel):
    """One ordered piece of message content.

    Attributes:
        type (str): Block kind, usually a ``ContentBlockType`` value. Unknown
            kinds are accepted and passed through.
        text (Optional[str]): Text for ``text`` and ``thinking`` blocks.
        id (Optional[str]): Tool call identifier for tool call blocks.
        name (Optional[str]): Tool name for tool call blocks.
        arguments (Optional[Any]): Tool call arguments.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[Any] = None


class Message(BaseModel):
    """Message model.

    Attributes:
        role (MessageRole): The role of the message sender.
        content (Union[str, List[ContentBlock]]): Plain text or ordered
            content blocks.
        tool_call_id (Optional[str]): For tool results, the id of the tool
            call being answered.
        tool_name (Optional[str]): Name of the tool that produced this
            result (tool results only).
        timestamp (Optional[int]): Sequence number or epoch milliseconds.
    """

    role: MessageRole
    content: Union[str, List[ContentBlock]] = ""
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    timestamp: Optional[int] = None

    @property
    def text(self) -> str:
        """Text content; text blocks are joined with newlines."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            block.text for block in self.content if block.type == ContentBlockType.TEXT.value and block.text
        )

    @property
    def tool_calls(self) -> List[ContentBlock]:
        """Tool call blocks carrying an id, in order."""
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if block.type in TOOL_CALL_BLOCK_TYPES and block.id]

    @property
    def tool_call_ids(self) -> List[str]:
        """Ids of the tool calls issued by this message."""
        return [block.id for block in self.tool_calls if block.id]

    @property
    def is_tool_result(self) -> bool:
        """Whether this message is a tool result."""
        return self.role == MessageRole.TOOL_RESULT


class SummaryMessage(Message):
    """Synthetic message that replaces a compacted history prefix.

    Attributes:
        tokens_before (int): Estimated tokens of the history that was
            summarized.
        replaced_range (Tuple[int, int]): Half-open index range of the
            replaced prefix in the pre-compaction history.
        orphan_indices (Tuple[int, ...]): Pre-compaction indices of tool
            results after the prefix that were summarized and removed
            because their tool call was in the prefix.
    """

    role: MessageRole = MessageRole.COMPACTION_SUMMARY
    tokens_before: int = 0
    replaced_range: Tuple[int, int] = (0, 0)
    orphan_indices: Tuple[int, ...] = ()


class LogEntry(BaseModel):
    """One entry of a persisted session log.

    Attributes:
        id (str): Entry identifier assigned by the log.
        parent_id (Optional[str]): Identifier of the previous entry on the
            branch, ``None`` for the root.
        type (EntryType): Entry kind.
        payload (Dict[str, Any]): Kind-specific data. Message entries store
            the serialized message under ``"message"``.
    """

    id: str
    parent_id: Optional[str] = None
    type: EntryType
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def message(self) -> Optional[Message]:
        """Parsed message for message entries, ``None`` otherwise."""
        if self.type != EntryType.MESSAGE:
            return None
        raw = self.payload.get("message")
        if raw is None:
            return None
        if isinstance(raw, Message):
            return raw
        return Message.model_validate(raw)
