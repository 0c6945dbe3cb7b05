"""Push notifications and live in-app events for accepted actions."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

PlayerLookup = Callable[[str], Awaitable[str | None]]
EventCallback = Callable[[str, dict[str, Any]], Awaitable[None] | None]


class NotificationError(Exception):
    """Raised when a push notification cannot be delivered.

    Attributes:
        status_code: HTTP status code from the push API, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PushNotifier(Protocol):
    """Best-effort push sink. Implementations log failures instead of raising."""

    async def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None: ...


class NullNotifier:
    """Notifier used when push delivery is not configured."""

    async def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        await logger.adebug("push_notification_skipped", user_id=user_id, push_event=event)


@dataclass
class PushResult:
    """Outcome of one OneSignal delivery.

    Attributes:
        delivered: Whether the API accepted the notification.
        notification_id: ID assigned by OneSignal.
        skipped: Whether delivery was skipped (no registered device).
        error: Error message if delivery failed.
    """

    delivered: bool
    notification_id: str | None = None
    skipped: bool = False
    error: str | None = None


class OneSignalNotifier:
    """Push notifier backed by the OneSignal REST API.

    Each user is mapped to a device (player) ID through ``player_lookup``.
    Users without a registered device are skipped.
    """

    API_URL = "https://onesignal.com/api/v1/notifications"

    def __init__(
        self,
        app_id: str,
        api_key: str,
        player_lookup: PlayerLookup,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the notifier.

        Args:
            app_id: OneSignal app ID.
            api_key: OneSignal REST API key.
            player_lookup: Coroutine returning the player ID of a user.
            client: Preconfigured HTTP client.
            timeout: Request timeout in seconds.
        """
        self.app_id = app_id
        self._player_lookup = player_lookup
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Basic {api_key}"}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        """Deliver a push notification, logging instead of raising on failure."""
        result = await self.send(user_id, event, payload)
        if result.error is not None:
            await logger.awarning(
                "push_notification_failed",
                user_id=user_id,
                push_event=event,
                error=result.error,
            )

    async def send(self, user_id: str, event: str, payload: dict[str, Any]) -> PushResult:
        """Deliver a push notification and report the outcome.

        Args:
            user_id: Recipient account.
            event: Event name (stored in the notification data).
            payload: ``heading``, ``content``, ``data`` and ``url`` of the push.

        Returns:
            Delivery result.
        """
        try:
            player_id = await self._player_lookup(user_id)
        except Exception as e:
            return PushResult(delivered=False, error=f"Player lookup failed: {e}")

        if not player_id:
            await logger.ainfo("push_notification_no_device", user_id=user_id)
            return PushResult(delivered=False, skipped=True)

        data = dict(payload.get("data", {}))
        data.update({"event": event, "userId": user_id, "targetPlayerId": player_id})
        body: dict[str, Any] = {
            "app_id": self.app_id,
            "include_player_ids": [player_id],
            "headings": {"en": payload.get("heading", "")},
            "contents": {"en": payload.get("content", "")},
            "data": data,
        }
        if payload.get("url"):
            body["url"] = payload["url"]

        try:
            result_data = await self._post(body)
        except NotificationError as e:
            return PushResult(delivered=False, error=str(e))

        await logger.ainfo("push_notification_sent", user_id=user_id, push_event=event)
        return PushResult(delivered=True, notification_id=result_data.get("id"))

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(self.API_URL, json=body, headers=self._headers)
        except httpx.HTTPError as e:
            raise NotificationError(f"Push request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(
                f"Push API error: {response.text}",
                status_code=response.status_code,
            )
        data: dict[str, Any] = response.json() if response.content else {}
        return data


class LiveEventBus:
    """Per-user live event fan-out for connected clients.

    A subscriber that raises is logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventCallback]] = {}

    def subscribe(self, user_id: str, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for a user's events.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.setdefault(user_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(user_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(user_id, None)

        return unsubscribe

    def has_subscribers(self, user_id: str) -> bool:
        return bool(self._subscribers.get(user_id))

    async def emit(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        """Send an event to every subscriber of a user.

        Returns:
            Number of subscribers that received the event.
        """
        delivered = 0
        for callback in list(self._subscribers.get(user_id, [])):
            try:
                result = callback(event, payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                await logger.awarning(
                    "live_event_delivery_failed",
                    user_id=user_id,
                    live_event=event,
                    error=str(e),
                )
        await logger.adebug("live_event_emitted", user_id=user_id, live_event=event, sent=delivered)
        return delivered
