"""In-memory conversation history used when storage cannot be read."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from action_lens.schemas.action import ConversationHistoryEntry

logger = structlog.get_logger(__name__)

MAX_ENTRIES_PER_CONVERSATION = 20


@dataclass(frozen=True)
class ConversationKey:
    """Composite key of the history cache."""

    user_id: str
    conversation_key: str


class ConversationHistoryCache:
    """Recent accepted actions per (user, conversation), newest first."""

    def __init__(self, max_entries: int = MAX_ENTRIES_PER_CONVERSATION) -> None:
        self.max_entries = max_entries
        self._entries: dict[ConversationKey, list[ConversationHistoryEntry]] = {}

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def put(self, user_id: str, conversation_key: str, entry: ConversationHistoryEntry) -> None:
        """Add an entry, keeping at most ``max_entries`` per conversation."""
        key = ConversationKey(user_id, conversation_key)
        entries = self._entries.setdefault(key, [])
        entries.insert(0, entry)
        del entries[self.max_entries :]

    def get(
        self,
        user_id: str,
        conversation_key: str,
        from_owner: bool | None = None,
        limit: int = 5,
    ) -> list[ConversationHistoryEntry]:
        """Recent entries of a conversation.

        Args:
            user_id: Account the history belongs to.
            conversation_key: Group ID or 1:1 sender ID.
            from_owner: Restrict to one sender side, or None for both.
            limit: Maximum entries returned.

        Returns:
            Entries newest first.
        """
        entries = self._entries.get(ConversationKey(user_id, conversation_key), [])
        if from_owner is not None:
            entries = [e for e in entries if bool(e.from_owner) == from_owner]
        return entries[:limit]

    def evict_older_than(self, cutoff: float) -> int:
        """Drop entries created before ``cutoff`` (epoch seconds).

        Returns:
            Number of entries removed.
        """
        removed = 0
        for key in list(self._entries):
            entries = self._entries[key]
            kept = [e for e in entries if e.created_at.timestamp() >= cutoff]
            removed += len(entries) - len(kept)
            if kept:
                self._entries[key] = kept
            else:
                del self._entries[key]
        if removed:
            logger.info("history_entries_evicted", count=removed)
        return removed
