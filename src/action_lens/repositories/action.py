"""Action repository for database operations."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError

from action_lens.models.ai_action import AIAction, AIActionMessage
from action_lens.repositories.base import DuplicateActionError, SenderScope
from action_lens.schemas.action import (
    ActionCreate,
    ActionStatus,
    ConversationHistoryEntry,
    PersistedAction,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from action_lens.core.database import Database


def _to_history_entry(action: AIAction) -> ConversationHistoryEntry:
    return ConversationHistoryEntry(
        type=action.type,
        description=action.description,
        details=action.details or {},
        created_at=action.created_at,
        from_owner=action.from_owner,
        original_message=action.original_message,
    )


class ActionRepository:
    """Repository for AI action database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def create(self, data: ActionCreate) -> AIAction:
        """Insert a new pending action.

        Args:
            data: Action creation data.

        Returns:
            Created action.

        Raises:
            DuplicateActionError: If the same message already produced an
                action with this type and description.
        """
        action = AIAction(
            **data.model_dump(exclude={"message_ids"}),
            status=ActionStatus.PENDING.value,
            created_at=datetime.now(UTC),
        )
        self.session.add(action)
        try:
            await self.session.flush()
            self.session.add_all(
                AIActionMessage(action_id=action.id, user_id=data.user_id, message_id=message_id)
                for message_id in dict.fromkeys(data.message_ids or [data.original_message_id])
            )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateActionError(data.original_message_id, data.type, data.description) from e
        await self.session.refresh(action)
        return action

    async def get_by_action_id(self, action_id: str, user_id: str | None = None) -> AIAction | None:
        """Get action by its public ID.

        Args:
            action_id: Action ID.
            user_id: Optional user ID to scope query.

        Returns:
            Action if found, None otherwise.
        """
        conditions = [AIAction.action_id == action_id]
        if user_id is not None:
            conditions.append(AIAction.user_id == user_id)

        result = await self.session.execute(select(AIAction).where(and_(*conditions)))
        return result.scalar_one_or_none()

    async def list_recent(
        self,
        user_id: str,
        conversation_key: str,
        since: datetime,
        *,
        sender_scope: SenderScope | None = None,
        limit: int = 5,
    ) -> list[AIAction]:
        """List recent actions for a conversation, newest first.

        Args:
            user_id: Owning user.
            conversation_key: Group ID or 1:1 sender ID.
            since: Only actions created after this time.
            sender_scope: Restrict to owner-originated or other-originated actions.
            limit: Maximum number of results.

        Returns:
            Actions ordered by creation time descending.
        """
        conditions = [
            AIAction.user_id == user_id,
            AIAction.conversation_key == conversation_key,
            AIAction.created_at > since,
        ]
        if sender_scope is not None:
            conditions.append(AIAction.from_owner == (sender_scope == SenderScope.OWNER))

        result = await self.session.execute(
            select(AIAction)
            .where(and_(*conditions))
            .order_by(AIAction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_message_ids(self, user_id: str, message_ids: list[str]) -> list[AIAction]:
        """List actions already created from any of the given messages.

        Every member of a combined run is matched, not only its first message.

        Args:
            user_id: Owning user.
            message_ids: Transport message IDs.

        Returns:
            Matching actions.
        """
        if not message_ids:
            return []

        matching = select(AIActionMessage.action_id).where(
            AIActionMessage.user_id == user_id,
            AIActionMessage.message_id.in_(message_ids),
        )
        result = await self.session.execute(
            select(AIAction)
            .where(AIAction.user_id == user_id, AIAction.id.in_(matching))
            .order_by(AIAction.created_at)
        )
        return list(result.scalars().all())

    async def list_group_topics(
        self,
        conversation_id: str,
        since: datetime,
        limit: int = 15,
    ) -> list[AIAction]:
        """List recent group-conversation actions across all users.

        Args:
            conversation_id: Group conversation ID.
            since: Only actions created after this time.
            limit: Maximum number of results.

        Returns:
            Actions ordered by creation time descending.
        """
        result = await self.session.execute(
            select(AIAction)
            .where(
                AIAction.conversation_key == conversation_id,
                AIAction.is_group.is_(True),
                AIAction.created_at > since,
            )
            .order_by(AIAction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def set_status(
        self,
        action_id: str,
        user_id: str,
        status: ActionStatus,
    ) -> AIAction | None:
        """Update the review status of an action.

        Args:
            action_id: Action ID.
            user_id: Owning user.
            status: New status.

        Returns:
            Updated action if found, None otherwise.
        """
        action = await self.get_by_action_id(action_id, user_id)
        if action is None:
            return None

        action.status = status.value
        action.updated_at = datetime.now(UTC)
        await self.session.commit()
        await self.session.refresh(action)
        return action


class SqlActionStore:
    """ActionStore backed by the ai_actions table.

    Opens one session per operation so concurrent pipeline runs never
    share a session.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def query_recent_actions(
        self,
        user_id: str,
        conversation_key: str,
        since: datetime,
        sender_scope: SenderScope | None = None,
        limit: int = 5,
    ) -> list[ConversationHistoryEntry]:
        async with self._database.session() as session:
            rows = await ActionRepository(session).list_recent(
                user_id, conversation_key, since, sender_scope=sender_scope, limit=limit
            )
            return [_to_history_entry(row) for row in rows]

    async def query_existing_actions_for_message_ids(
        self,
        user_id: str,
        message_ids: list[str],
    ) -> list[PersistedAction]:
        async with self._database.session() as session:
            rows = await ActionRepository(session).list_by_message_ids(user_id, message_ids)
            return [PersistedAction.model_validate(row) for row in rows]

    async def query_group_topic_history(
        self,
        conversation_id: str,
        since: datetime,
        limit: int = 15,
    ) -> list[PersistedAction]:
        async with self._database.session() as session:
            rows = await ActionRepository(session).list_group_topics(conversation_id, since, limit)
            return [PersistedAction.model_validate(row) for row in rows]

    async def get_action(self, user_id: str, action_id: str) -> PersistedAction | None:
        async with self._database.session() as session:
            row = await ActionRepository(session).get_by_action_id(action_id, user_id)
            return PersistedAction.model_validate(row) if row is not None else None

    async def insert_action(self, record: ActionCreate) -> PersistedAction:
        async with self._database.session() as session:
            row = await ActionRepository(session).create(record)
            return PersistedAction.model_validate(row)

    async def update_status(
        self,
        user_id: str,
        action_id: str,
        status: ActionStatus,
    ) -> PersistedAction | None:
        async with self._database.session() as session:
            row = await ActionRepository(session).set_status(action_id, user_id, status)
            return PersistedAction.model_validate(row) if row is not None else None
