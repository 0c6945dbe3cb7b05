"""Persist accepted actions and notify the owning user."""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from action_lens.schemas.action import (
    ActionCreate,
    ActionDetails,
    ActionType,
    CandidateAction,
    PersistedAction,
    Priority,
)
from action_lens.schemas.message import IncomingMessage

if TYPE_CHECKING:
    from action_lens.repositories.base import ActionStore
    from action_lens.services.notifications import LiveEventBus, PushNotifier

logger = structlog.get_logger(__name__)

NEW_ACTION_EVENT = "newAction"
PUSH_HEADING = "New Action Created!"
DEFAULT_DEEP_LINK = "juta-actions://action/{action_id}"
DEFAULT_URGENCY_REASON = "Detected from message analysis"
DEFAULT_SUGGESTED_ACTIONS = ("Review and take action",)

_TIME_HINT = re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b", re.IGNORECASE)
_DAY_HINT = re.compile(
    r"\b(?:esok|tomorrow|today|hari ini|next week|minggu depan|"
    r"monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)


def generate_action_id(user_id: str, now: float) -> str:
    """Unique public ID of an action."""
    return f"action_{user_id}_{int(now * 1000)}_{uuid.uuid4().hex[:9]}"


def extract_datetime_hint(text: str, now: datetime) -> str | None:
    """Rough due time for messages that mention a time or a day.

    Any time of day ("3pm", "10:30 am") or day word ("tomorrow", "esok",
    "next week", a weekday) resolves to the same time tomorrow.

    Returns:
        ISO timestamp, or None if the text has no hint.
    """
    if _TIME_HINT.search(text) or _DAY_HINT.search(text):
        return (now + timedelta(days=1)).isoformat()
    return None


def default_content(action_type: str, message: IncomingMessage) -> str:
    """Content used when the classifier did not provide one."""
    sender = message.sender_display_name or message.sender_id
    if message.is_grouped_message:
        return f'Grouped messages ({message.message_count}) from {sender}: "{message.body}"'
    if action_type == ActionType.EVENT.value:
        return f'Meeting request from {sender}: "{message.body}"'
    if action_type == ActionType.REMINDER.value:
        return f'Reminder from {sender}: "{message.body}"'
    if action_type == ActionType.TASK.value:
        return f'Task from {sender}: "{message.body}"'
    return f'{action_type} from {sender}: "{message.body}"'


def normalize_details(
    action: CandidateAction,
    message: IncomingMessage,
    now: datetime,
) -> dict[str, Any]:
    """Fill in the detail fields the classifier left empty.

    Args:
        action: Accepted candidate.
        message: Combined message the action came from.
        now: Reference time for datetime hints.

    Returns:
        Details as stored with the action.
    """
    details = action.details
    context = (
        "Grouped message analysis" if message.is_grouped_message else "Single message analysis"
    )
    normalized = ActionDetails(
        title=details.title or action.description,
        content=details.content or default_content(action.type, message),
        datetime=details.datetime or extract_datetime_hint(message.body, now),
        priority=details.priority or Priority.MEDIUM,
        category=details.category or action.type,
        urgency_reason=details.urgency_reason or DEFAULT_URGENCY_REASON,
        suggested_actions=details.suggested_actions or list(DEFAULT_SUGGESTED_ACTIONS),
        context=details.context or context,
    )
    return normalized.model_dump()


class ActionEmitter:
    """Turns an accepted candidate into a stored action and tells the user.

    Steps run in order: persist, push notification, live event. A storage
    failure raises before anything is sent. Push and live event failures
    are logged and do not undo the stored action.
    """

    def __init__(
        self,
        store: ActionStore,
        notifier: PushNotifier,
        events: LiveEventBus,
        clock: Callable[[], float] = time.time,
        deep_link_template: str = DEFAULT_DEEP_LINK,
    ) -> None:
        """Initialize the emitter.

        Args:
            store: Action storage.
            notifier: Push notification sink.
            events: Live event bus for connected clients.
            clock: Time source in epoch seconds.
            deep_link_template: Push URL, formatted with ``action_id``.
        """
        self._store = store
        self._notifier = notifier
        self._events = events
        self._clock = clock
        self.deep_link_template = deep_link_template

    async def accept(
        self,
        action: CandidateAction,
        message: IncomingMessage,
        user_id: str,
    ) -> PersistedAction:
        """Persist an action and notify the user.

        Args:
            action: Candidate that passed the duplicate checks.
            message: Combined message it was classified from.
            user_id: Owning account.

        Returns:
            The stored action.

        Raises:
            StorageError: If the action could not be stored.
        """
        now = self._clock()
        action_id = generate_action_id(user_id, now)
        record = ActionCreate(
            action_id=action_id,
            user_id=user_id,
            type=action.type,
            description=action.description,
            details=normalize_details(action, message, datetime.fromtimestamp(now, UTC)),
            original_message=message.snapshot(),
            original_message_id=message.id,
            message_ids=message.message_ids,
            conversation_key=message.conversation_key,
            is_group=message.is_group_conversation,
            from_owner=message.is_from_owner,
            confidence=action.confidence,
        )

        persisted = await self._store.insert_action(record)
        await logger.ainfo(
            "action_created",
            user_id=user_id,
            action_id=action_id,
            action_type=action.type,
            confidence=action.confidence,
        )

        await self._push(persisted)
        await self._publish(persisted, message)
        return persisted

    def push_payload(self, action: PersistedAction) -> dict[str, Any]:
        """Push notification content for a stored action."""
        return {
            "heading": PUSH_HEADING,
            "content": f"{action.type}: {action.description}",
            "data": {"actionId": action.action_id, "actionType": action.type},
            "url": self.deep_link_template.format(action_id=action.action_id),
        }

    async def _push(self, action: PersistedAction) -> None:
        try:
            await self._notifier.notify(action.user_id, NEW_ACTION_EVENT, self.push_payload(action))
        except Exception as e:
            await logger.awarning(
                "push_notification_error",
                user_id=action.user_id,
                action_id=action.action_id,
                error=str(e),
            )

    async def _publish(self, action: PersistedAction, message: IncomingMessage) -> None:
        payload = {
            "action": action.model_dump(mode="json", exclude={"original_message"}),
            "original_message": message.redacted_view(),
        }
        try:
            await self._events.emit(action.user_id, NEW_ACTION_EVENT, payload)
        except Exception as e:
            await logger.awarning(
                "live_event_error",
                user_id=action.user_id,
                action_id=action.action_id,
                error=str(e),
            )
