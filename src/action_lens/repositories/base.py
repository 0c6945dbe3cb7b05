"""Storage interface used by the message pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Protocol

from action_lens.schemas.action import (
    ActionCreate,
    ActionStatus,
    ConversationHistoryEntry,
    PersistedAction,
)


class StorageError(Exception):
    """Base exception for storage failures."""

    pass


class DuplicateActionError(StorageError):
    """Raised when an identical action already exists for the same message."""

    def __init__(self, original_message_id: str, action_type: str, description: str) -> None:
        self.original_message_id = original_message_id
        self.action_type = action_type
        self.description = description
        super().__init__(
            f"Action already exists for message {original_message_id}: "
            f"{action_type} - {description}"
        )


class SenderScope(str, Enum):
    """Which side of the conversation history is loaded for."""

    OWNER = "owner"
    OTHERS = "others"

    @classmethod
    def for_owner_flag(cls, from_owner: bool) -> SenderScope:
        return cls.OWNER if from_owner else cls.OTHERS


class ActionStore(Protocol):
    """Persistence operations the pipeline depends on."""

    async def query_recent_actions(
        self,
        user_id: str,
        conversation_key: str,
        since: datetime,
        sender_scope: SenderScope | None = None,
        limit: int = 5,
    ) -> list[ConversationHistoryEntry]: ...

    async def query_existing_actions_for_message_ids(
        self,
        user_id: str,
        message_ids: list[str],
    ) -> list[PersistedAction]: ...

    async def query_group_topic_history(
        self,
        conversation_id: str,
        since: datetime,
        limit: int = 15,
    ) -> list[PersistedAction]: ...

    async def get_action(self, user_id: str, action_id: str) -> PersistedAction | None: ...

    async def insert_action(self, record: ActionCreate) -> PersistedAction: ...

    async def update_status(
        self,
        user_id: str,
        action_id: str,
        status: ActionStatus,
    ) -> PersistedAction | None: ...
