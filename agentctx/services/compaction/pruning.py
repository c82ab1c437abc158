# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Turn-aware history pruning.

Selects where to cut message history so the kept suffix fits a token
budget without splitting tool calls from their results:

  - a cut may only start at a message that is not a tool result,
  - among cuts that fit, turn boundaries (user / bashExecution by
    default) are preferred over mid-turn cuts,
  - the earliest fitting cut is taken to keep as much history as possible.

Tool results left without their tool call after the cut are removed by
the repair pass. Pruning is pure: the input list is never mutated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, List, Optional

from agentctx.models import Message
from agentctx.services.compaction.repair import repair_tool_use_result_pairing
from agentctx.services.compaction.settings import DEFAULT_TURN_BOUNDARY_ROLES
from agentctx.services.compaction.tokens import (
    TokenEstimator,
    estimate_message_tokens,
    sanitize_tokens_after_estimate,
)

DEFAULT_MAX_HISTORY_SHARE = 0.5

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Result of pruning history to a share of the context window.

    Attributes:
        messages (List[Message]): The kept suffix after orphan repair.
        dropped_prefix (List[Message]): Messages before the cut point.
        dropped_chunks (int): ``1`` if a prefix was dropped, else ``0``.
        dropped_messages (int): Dropped prefix length plus repaired orphans.
        dropped_tokens (int): Estimated tokens of the dropped prefix.
        kept_tokens (int): Estimated tokens of the kept suffix.
        budget_tokens (int): Token budget the suffix was fitted to.
        repaired_orphans (int): Tool results removed from the kept suffix
            because their tool call was dropped.
        dropped_tool_results (int): Tool results inside the dropped prefix.
    """

    messages: List[Message]
    dropped_prefix: List[Message] = field(default_factory=list)
    dropped_chunks: int = 0
    dropped_messages: int = 0
    dropped_tokens: int = 0
    kept_tokens: int = 0
    budget_tokens: int = 0
    repaired_orphans: int = 0
    dropped_tool_results: int = 0


def is_valid_cut_point(msg: Message) -> bool:
    """Whether kept history may start at *msg*."""
    return not msg.is_tool_result


def choose_turn_aware_cut_index(
    messages: List[Message],
    budget_tokens: int,
    *,
    estimator: Optional[TokenEstimator] = None,
    turn_boundary_roles: Optional[AbstractSet[str]] = None,
) -> int:
    """Pick the index at which the kept suffix starts.

    Args:
        messages (List[Message]): Conversation history, oldest first.
        budget_tokens (int): Maximum estimated tokens of the kept suffix.
        estimator (Optional[TokenEstimator]): Per-message token estimator.
        turn_boundary_roles (Optional[AbstractSet[str]]): Roles that start
            a turn. Defaults to user and bashExecution.

    Returns:
        int: Cut index in ``[0, len(messages)]``. ``0`` keeps everything;
            ``len(messages)`` drops everything, which only happens when no
            message is a valid cut point.
    """
    if not messages:
        return 0

    estimate = estimator or estimate_message_tokens
    boundary_roles = turn_boundary_roles if turn_boundary_roles is not None else DEFAULT_TURN_BOUNDARY_ROLES

    # suffix_tokens[i] = tokens of messages[i:]
    suffix_tokens = [0] * (len(messages) + 1)
    for i in range(len(messages) - 1, -1, -1):
        suffix_tokens[i] = suffix_tokens[i + 1] + estimate(messages[i])

    if suffix_tokens[0] <= budget_tokens and is_valid_cut_point(messages[0]):
        return 0

    valid_cut_points = [i for i, msg in enumerate(messages) if is_valid_cut_point(msg)]
    if not valid_cut_points:
        return len(messages)

    feasible = [i for i in valid_cut_points if suffix_tokens[i] <= budget_tokens]
    if not feasible:
        # Even the shortest valid suffix is over budget; a single message cannot be split.
        return valid_cut_points[-1]

    boundaries = [i for i in feasible if messages[i].role.value in boundary_roles]
    candidates = boundaries or feasible
    return candidates[0]


def prune_history_for_context_share(
    messages: List[Message],
    max_context_tokens: int,
    max_history_share: float = DEFAULT_MAX_HISTORY_SHARE,
    *,
    estimator: Optional[TokenEstimator] = None,
    turn_boundary_roles: Optional[AbstractSet[str]] = None,
) -> PruneResult:
    """Drop the oldest history so the rest fits a share of the context window.

    The budget is ``max(1, floor(max_context_tokens * max_history_share))``.
    The cut is chosen by ``choose_turn_aware_cut_index``, then tool results
    orphaned by the cut are removed from the kept suffix.

    Args:
        messages (List[Message]): Conversation history, oldest first.
        max_context_tokens (int): Context window of the target model.
        max_history_share (float): Share of the window history may use.
        estimator (Optional[TokenEstimator]): Per-message token estimator.
            Defaults to ``estimate_message_tokens``.
        turn_boundary_roles (Optional[AbstractSet[str]]): Roles that start
            a turn.

    Returns:
        PruneResult: Kept suffix, dropped prefix, and accounting.
    """
    estimate = estimator or estimate_message_tokens
    budget_tokens = max(1, int(max_context_tokens * max_history_share))
    tokens_before = sum(estimate(m) for m in messages)

    cut_index = choose_turn_aware_cut_index(
        messages,
        budget_tokens,
        estimator=estimate,
        turn_boundary_roles=turn_boundary_roles,
    )
    if cut_index <= 0:
        return PruneResult(
            messages=list(messages),
            kept_tokens=tokens_before,
            budget_tokens=budget_tokens,
        )

    dropped = list(messages[:cut_index])
    report = repair_tool_use_result_pairing(list(messages[cut_index:]))
    kept = report.messages

    kept_tokens = sanitize_tokens_after_estimate(sum(estimate(m) for m in kept), tokens_before)
    dropped_tokens = sum(estimate(m) for m in dropped)
    dropped_tool_results = sum(1 for m in dropped if m.is_tool_result)

    logger.info(
        "Pruned history: dropped %d messages (%d tokens, %d orphans repaired), kept %d messages "
        "(%d tokens, budget %d)",
        len(dropped) + report.dropped_orphan_count,
        dropped_tokens,
        report.dropped_orphan_count,
        len(kept),
        kept_tokens,
        budget_tokens,
    )

    return PruneResult(
        messages=kept,
        dropped_prefix=dropped,
        dropped_chunks=1,
        dropped_messages=len(dropped) + report.dropped_orphan_count,
        dropped_tokens=dropped_tokens,
        kept_tokens=kept_tokens,
        budget_tokens=budget_tokens,
        repaired_orphans=report.dropped_orphan_count,
        dropped_tool_results=dropped_tool_results,
    )
