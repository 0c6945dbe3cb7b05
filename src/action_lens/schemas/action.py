"""Pydantic schemas for candidate and persisted actions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionType(str, Enum):
    """Categories an action can be classified into."""

    REMINDER = "reminder"
    TASK = "task"
    EVENT = "event"
    NOTE = "note"
    ISSUE = "issue"
    FOLLOW_UP = "follow_up"
    RESEARCH = "research"
    COMMUNICATION = "communication"
    CREATIVE = "creative"
    ADMINISTRATIVE = "administrative"
    HEALTH = "health"
    FINANCE = "finance"
    LEARNING = "learning"
    SHOPPING = "shopping"
    TRAVEL = "travel"


class Priority(str, Enum):
    """Action priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActionStatus(str, Enum):
    """Review status of a persisted action."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActionDetails(BaseModel):
    """Structured details attached to an action."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    title: str | None = None
    content: str | None = None
    datetime: str | None = None
    priority: Priority | None = None
    category: str | None = None
    urgency_reason: str | None = None
    suggested_actions: list[str] = Field(default_factory=list)
    context: str | None = None


class CandidateAction(BaseModel):
    """An action proposed by a classifier."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    type: ActionType
    description: str = Field(..., min_length=1)
    details: ActionDetails = Field(default_factory=ActionDetails)
    confidence: float = Field(..., ge=0.0, le=1.0)


class ConversationHistoryEntry(BaseModel):
    """A recent action from the same conversation."""

    model_config = ConfigDict(use_enum_values=True)

    type: str
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    from_owner: bool | None = None
    original_message: dict[str, Any] | None = None


class ActionCreate(BaseModel):
    """Record handed to storage when an action is accepted."""

    action_id: str
    user_id: str
    type: str
    description: str
    details: dict[str, Any]
    original_message: dict[str, Any]
    original_message_id: str
    message_ids: list[str]
    conversation_key: str
    is_group: bool = False
    from_owner: bool = False
    confidence: float | None = None


class PersistedAction(BaseModel):
    """Durable action record as returned by storage."""

    model_config = ConfigDict(from_attributes=True)

    action_id: str
    user_id: str
    type: str
    description: str
    details: dict[str, Any]
    original_message: dict[str, Any]
    conversation_key: str
    is_group: bool = False
    from_owner: bool = False
    confidence: float | None = None
    status: str = ActionStatus.PENDING.value
    created_at: datetime
