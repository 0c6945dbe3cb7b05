"""AI action model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from action_lens.models.base import Base


class AIAction(Base):
    """Action detected from a chat message and awaiting review."""

    __tablename__ = "ai_actions"
    __table_args__ = (
        UniqueConstraint(
            "original_message_id",
            "type",
            "description",
            name="uq_ai_actions_message_type_description",
        ),
        Index("ix_ai_actions_user_conversation", "user_id", "conversation_key", "created_at"),
        Index("ix_ai_actions_group_topic", "conversation_key", "is_group", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    original_message: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    original_message_id: Mapped[str] = mapped_column(String, nullable=False)
    conversation_key: Mapped[str] = mapped_column(String, nullable=False)
    is_group: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    from_owner: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", server_default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_pending(self) -> bool:
        """Check if action is awaiting review."""
        return self.status == "pending"

    def __repr__(self) -> str:
        """Return string representation."""
        return f"AIAction(action_id={self.action_id!r}, type={self.type!r}, status={self.status!r})"


class AIActionMessage(Base):
    """Transport message that contributed to an action.

    A combined run stores one row per member so a later delivery of any
    member is recognised as already processed.
    """

    __tablename__ = "ai_action_messages"
    __table_args__ = (
        UniqueConstraint("action_id", "message_id", name="uq_ai_action_messages_action_message"),
        Index("ix_ai_action_messages_user_message", "user_id", "message_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("ai_actions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    message_id: Mapped[str] = mapped_column(String, nullable=False)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"AIActionMessage(action_id={self.action_id!r}, message_id={self.message_id!r})"
