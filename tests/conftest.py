# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared test fixtures for the agentctx test suite."""

from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from agentctx.models import ContentBlock, Message
from agentctx.schemas.session import ContentBlockType, MessageRole
from agentctx.services.compaction.settings import CompactionSettings


def chars_estimator(msg: Message) -> int:
    """Deterministic estimator: four characters per token, text only."""
    return len(msg.text) // 4


# ---------------------------------------------------------------------------
# Message factories
# ---------------------------------------------------------------------------


@pytest.fixture
def estimator() -> Callable[[Message], int]:
    """Deterministic per-message token estimator."""
    return chars_estimator


@pytest.fixture
def user_message():
    """Factory fixture for user messages of a given size in characters."""

    def _factory(size: int = 100, char: str = "x") -> Message:
        return Message(role=MessageRole.USER, content=char * size)

    return _factory


@pytest.fixture
def assistant_message():
    """Factory fixture for assistant messages, optionally issuing a tool call."""

    def _factory(
        size: int = 100,
        tool_call_id: Optional[str] = None,
        tool_name: str = "read",
        arguments: Optional[Dict[str, Any]] = None,
    ) -> Message:
        blocks: List[ContentBlock] = [ContentBlock(type=ContentBlockType.TEXT.value, text="a" * size)]
        if tool_call_id:
            blocks.append(
                ContentBlock(
                    type=ContentBlockType.TOOL_USE.value,
                    id=tool_call_id,
                    name=tool_name,
                    arguments=arguments or {},
                )
            )
        return Message(role=MessageRole.ASSISTANT, content=blocks)

    return _factory


@pytest.fixture
def tool_result_message():
    """Factory fixture for tool result messages of a given size in characters."""

    def _factory(tool_call_id: Optional[str] = "call_1", size: int = 100, tool_name: str = "read") -> Message:
        return Message(
            role=MessageRole.TOOL_RESULT,
            content=[ContentBlock(type=ContentBlockType.TEXT.value, text="r" * size)],
            tool_call_id=tool_call_id,
            tool_name=tool_name,
        )

    return _factory


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def compaction_settings():
    """Factory fixture for CompactionSettings with overrides."""

    def _factory(**overrides: Any) -> CompactionSettings:
        return CompactionSettings(**overrides)

    return _factory


# ---------------------------------------------------------------------------
# Summarizer / LLM mocking helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_summarizer():
    """Factory fixture for an AsyncMock summarizer returning fixed text."""

    def _factory(text: str = "Summary of conversation.", side_effect: Any = None) -> AsyncMock:
        summarizer = AsyncMock(return_value=text)
        if side_effect is not None:
            summarizer.side_effect = side_effect
        return summarizer

    return _factory


@pytest.fixture
def mock_llm():
    """Factory fixture for a mock chat model returning fixed text."""

    def _factory(response_text: str = "Summary of conversation.") -> AsyncMock:
        llm = AsyncMock()
        result = MagicMock()
        result.content = response_text
        llm.ainvoke.return_value = result
        return llm

    return _factory
