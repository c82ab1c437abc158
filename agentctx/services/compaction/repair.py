# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Orphaned tool_result repair.

After pruning drops assistant messages, the corresponding tool results
become orphans: their ``tool_call_id`` references a tool call that no
longer exists in the conversation. Providers reject such histories with
"unexpected tool_use_id" style errors.

This module detects and removes orphaned tool results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Set

from agentctx.models import Message

logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    """Result of a repair pass.

    Attributes:
        messages (List[Message]): The repaired message list with orphans removed.
        dropped_orphan_count (int): Number of orphaned tool_result messages
            that were dropped during repair.
    """

    messages: List[Message]
    dropped_orphan_count: int


def repair_tool_use_result_pairing(messages: List[Message]) -> RepairReport:
    """Remove orphaned tool_result messages whose tool call was dropped.

    Collects the ids of tool call blocks present in *messages*, then drops
    every tool result whose ``tool_call_id`` is missing from that set. A
    tool result without a ``tool_call_id`` cannot be paired and is dropped
    too. The input list is not mutated.

    Args:
        messages (List[Message]): Conversation message list to scan and repair.

    Returns:
        RepairReport: A report containing the cleaned message list and the
            count of dropped orphan messages.
    """
    if not any(msg.is_tool_result for msg in messages):
        return RepairReport(messages=list(messages), dropped_orphan_count=0)

    tool_call_ids: Set[str] = set()
    for msg in messages:
        tool_call_ids.update(msg.tool_call_ids)

    repaired: List[Message] = []
    dropped = 0

    for msg in messages:
        if msg.is_tool_result and msg.tool_call_id not in tool_call_ids:
            logger.info("Dropped orphaned tool_result: tool_call_id=%s", msg.tool_call_id)
            dropped += 1
            continue
        repaired.append(msg)

    if dropped:
        logger.info("Repaired tool_use/tool_result pairing: dropped %d orphans", dropped)

    return RepairReport(messages=repaired, dropped_orphan_count=dropped)
