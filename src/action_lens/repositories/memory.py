"""In-process ActionStore used for replays and tests."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from action_lens.repositories.base import DuplicateActionError, SenderScope
from action_lens.schemas.action import (
    ActionCreate,
    ActionStatus,
    ConversationHistoryEntry,
    PersistedAction,
)


@dataclass
class _StoredAction:
    record: ActionCreate
    status: str
    created_at: datetime

    @property
    def message_ids(self) -> list[str]:
        return self.record.message_ids or [self.record.original_message_id]

    def to_persisted(self) -> PersistedAction:
        return PersistedAction(
            **self.record.model_dump(
                include={
                    "action_id",
                    "user_id",
                    "type",
                    "description",
                    "details",
                    "original_message",
                    "conversation_key",
                    "is_group",
                    "from_owner",
                    "confidence",
                }
            ),
            status=self.status,
            created_at=self.created_at,
        )


class InMemoryActionStore:
    """ActionStore keeping every action in a list.

    Enforces the same (message, type, description) uniqueness as the
    database table.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._actions: list[_StoredAction] = []

    @property
    def actions(self) -> list[PersistedAction]:
        """All stored actions, oldest first."""
        return [stored.to_persisted() for stored in self._actions]

    def _newest_first(self) -> list[_StoredAction]:
        return sorted(self._actions, key=lambda s: s.created_at, reverse=True)

    async def query_recent_actions(
        self,
        user_id: str,
        conversation_key: str,
        since: datetime,
        sender_scope: SenderScope | None = None,
        limit: int = 5,
    ) -> list[ConversationHistoryEntry]:
        entries = []
        for stored in self._newest_first():
            record = stored.record
            if record.user_id != user_id or record.conversation_key != conversation_key:
                continue
            if stored.created_at <= since:
                continue
            if sender_scope is not None and record.from_owner != (
                sender_scope == SenderScope.OWNER
            ):
                continue
            entries.append(
                ConversationHistoryEntry(
                    type=record.type,
                    description=record.description,
                    details=record.details,
                    created_at=stored.created_at,
                    from_owner=record.from_owner,
                    original_message=record.original_message,
                )
            )
        return entries[:limit]

    async def query_existing_actions_for_message_ids(
        self,
        user_id: str,
        message_ids: list[str],
    ) -> list[PersistedAction]:
        wanted = set(message_ids)
        return [
            stored.to_persisted()
            for stored in self._actions
            if stored.record.user_id == user_id
            and wanted.intersection(stored.message_ids)
        ]

    async def query_group_topic_history(
        self,
        conversation_id: str,
        since: datetime,
        limit: int = 15,
    ) -> list[PersistedAction]:
        rows = [
            stored.to_persisted()
            for stored in self._newest_first()
            if stored.record.is_group
            and stored.record.conversation_key == conversation_id
            and stored.created_at > since
        ]
        return rows[:limit]

    async def get_action(self, user_id: str, action_id: str) -> PersistedAction | None:
        for stored in self._actions:
            if stored.record.action_id == action_id and stored.record.user_id == user_id:
                return stored.to_persisted()
        return None

    async def insert_action(self, record: ActionCreate) -> PersistedAction:
        for stored in self._actions:
            existing = stored.record
            if (
                existing.original_message_id == record.original_message_id
                and existing.type == record.type
                and existing.description == record.description
            ):
                raise DuplicateActionError(
                    record.original_message_id, record.type, record.description
                )

        stored = _StoredAction(
            record=record,
            status=ActionStatus.PENDING.value,
            created_at=datetime.fromtimestamp(self._clock(), UTC),
        )
        self._actions.append(stored)
        return stored.to_persisted()

    async def update_status(
        self,
        user_id: str,
        action_id: str,
        status: ActionStatus,
    ) -> PersistedAction | None:
        for stored in self._actions:
            if stored.record.action_id == action_id and stored.record.user_id == user_id:
                stored.status = status.value
                return stored.to_persisted()
        return None
