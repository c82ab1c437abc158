# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Session log collaborator.

A session log is an append-only tree of entries; the current branch is the
path from the root to the leaf. Rewriting history never edits entries in
place: the log branches from an earlier entry and new entries are appended
after it, leaving the abandoned path in the tree.

``SessionLog`` is the narrow interface the rewriter needs. Storage-backed
implementations live with the caller; ``InMemorySessionLog`` is the
reference implementation.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

from agentctx.models import LogEntry, Message
from agentctx.schemas.session import EntryType

logger = logging.getLogger(__name__)

_session_write_locks: Dict[str, asyncio.Lock] = {}


class SessionLog(Protocol):
    """Persisted session log as seen by the overflow rewriter."""

    session_id: str

    def read_branch(self) -> List[LogEntry]:
        """Entries on the current branch, root first."""
        ...

    def branch_from(self, entry_id: Optional[str]) -> None:
        """Move the leaf to *entry_id*; ``None`` resets it before the root."""
        ...

    def append_entry(self, entry_type: EntryType, payload: Dict[str, Any]) -> str:
        """Append an entry after the leaf and return its id."""
        ...


def get_session_write_lock(session_key: str) -> asyncio.Lock:
    """Return the write lock for a session, creating one if needed.

    Args:
        session_key (str): The session identifier.

    Returns:
        asyncio.Lock: The lock associated with the session.
    """
    return _session_write_locks.setdefault(session_key, asyncio.Lock())


def release_session_write_lock(session_key: str) -> None:
    """Forget the write lock of an evicted session."""
    _session_write_locks.pop(session_key, None)


class InMemorySessionLog:
    """Tree-shaped session log kept in memory.

    Attributes:
        session_id (str): Session identifier, also the default lock key.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid.uuid4())
        self._entries: Dict[str, LogEntry] = {}
        self._leaf_id: Optional[str] = None

    @property
    def leaf_id(self) -> Optional[str]:
        """Id of the current leaf, ``None`` for an empty branch."""
        return self._leaf_id

    @property
    def entries(self) -> List[LogEntry]:
        """Every entry ever appended, including abandoned branches."""
        return list(self._entries.values())

    def get_entry(self, entry_id: str) -> LogEntry:
        """Look up an entry by id.

        Raises:
            KeyError: If no entry has this id.
        """
        return self._entries[entry_id]

    def read_branch(self) -> List[LogEntry]:
        branch: List[LogEntry] = []
        current = self._leaf_id
        while current is not None:
            entry = self._entries[current]
            branch.append(entry)
            current = entry.parent_id
        branch.reverse()
        return branch

    def branch_from(self, entry_id: Optional[str]) -> None:
        if entry_id is not None and entry_id not in self._entries:
            raise KeyError(f"Unknown session entry: {entry_id}")
        logger.debug("Session %s: branching from %s", self.session_id, entry_id or "<root>")
        self._leaf_id = entry_id

    def append_entry(self, entry_type: EntryType, payload: Dict[str, Any]) -> str:
        entry_id = uuid.uuid4().hex[:12]
        self._entries[entry_id] = LogEntry(
            id=entry_id,
            parent_id=self._leaf_id,
            type=entry_type,
            payload=dict(payload),
        )
        self._leaf_id = entry_id
        return entry_id

    def append_message(self, message: Message) -> str:
        """Append a message entry.

        Args:
            message (Message): Message to store.

        Returns:
            str: Id of the new entry.
        """
        return self.append_entry(EntryType.MESSAGE, {"message": message.model_dump(mode="json")})
