"""Pydantic schemas for incoming chat messages."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IncomingMessage(BaseModel):
    """A timestamped message received from the chat transport.

    Immutable once ingested. A combined message produced from a sender run
    uses the same shape with ``is_grouped_message`` set and the ids of the
    messages it was built from.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Transport message ID")
    conversation_id: str = Field(..., min_length=1, description="Chat or group identifier")
    sender_id: str = Field(..., min_length=1, description="Sender routing ID")
    sender_display_name: str = Field(default="", description="Sender display name")
    is_group_conversation: bool = Field(default=False)
    body: str = Field(default="")
    sent_at: float = Field(..., ge=0, allow_inf_nan=False, description="Epoch seconds")
    is_from_owner: bool = Field(default=False, description="Sent by the account owner")

    is_grouped_message: bool = Field(default=False)
    message_count: int = Field(default=1, ge=1)
    original_message_ids: tuple[str, ...] = Field(default=())

    @property
    def conversation_key(self) -> str:
        """Buffer key: the group for group chats, the sender for 1:1 chats."""
        return self.conversation_id if self.is_group_conversation else self.sender_id

    @property
    def message_ids(self) -> list[str]:
        """IDs of every transport message this message represents."""
        return list(self.original_message_ids) if self.original_message_ids else [self.id]

    def snapshot(self) -> dict[str, Any]:
        """Serializable copy stored alongside persisted actions."""
        return self.model_dump(mode="json")

    def redacted_view(self) -> dict[str, Any]:
        """Subset of the message sent to live clients."""
        return {
            "sender_name": self.sender_display_name,
            "sender_id": self.sender_id,
            "conversation_id": self.conversation_id,
            "body": self.body,
            "sent_at": self.sent_at,
            "is_group": self.is_group_conversation,
            "is_grouped_message": self.is_grouped_message,
            "message_count": self.message_count,
        }
