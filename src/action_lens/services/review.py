"""Approve and reject flow for pending actions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from action_lens.schemas.action import ActionStatus, PersistedAction

if TYPE_CHECKING:
    from action_lens.repositories.base import ActionStore
    from action_lens.services.notifications import LiveEventBus

logger = structlog.get_logger(__name__)

ACTION_PROCESSED_EVENT = "actionProcessed"


class ActionNotFoundError(Exception):
    """Raised when an action does not exist, belongs to another user, or was already reviewed."""

    def __init__(self, action_id: str) -> None:
        self.action_id = action_id
        super().__init__(f"Action not found or already processed: {action_id}")


class ActionReviewService:
    """Moves pending actions to approved or rejected."""

    def __init__(self, store: ActionStore, events: LiveEventBus) -> None:
        self._store = store
        self._events = events

    async def approve(self, user_id: str, action_id: str) -> PersistedAction:
        """Approve a pending action.

        Raises:
            ActionNotFoundError: If no pending action matches.
        """
        return await self._review(user_id, action_id, ActionStatus.APPROVED)

    async def reject(self, user_id: str, action_id: str) -> PersistedAction:
        """Reject a pending action.

        Raises:
            ActionNotFoundError: If no pending action matches.
        """
        return await self._review(user_id, action_id, ActionStatus.REJECTED)

    async def _review(
        self,
        user_id: str,
        action_id: str,
        status: ActionStatus,
    ) -> PersistedAction:
        existing = await self._store.get_action(user_id, action_id)
        if existing is None or existing.status != ActionStatus.PENDING.value:
            raise ActionNotFoundError(action_id)

        updated = await self._store.update_status(user_id, action_id, status)
        if updated is None:
            raise ActionNotFoundError(action_id)

        await logger.ainfo(
            "action_reviewed",
            user_id=user_id,
            action_id=action_id,
            status=status.value,
        )
        await self._events.emit(
            user_id,
            ACTION_PROCESSED_EVENT,
            {"actionId": action_id, "status": status.value},
        )
        return updated
