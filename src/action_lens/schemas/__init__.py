"""Pydantic schemas for messages and actions."""

from action_lens.schemas.action import (
    ActionCreate,
    ActionDetails,
    ActionStatus,
    ActionType,
    CandidateAction,
    ConversationHistoryEntry,
    PersistedAction,
    Priority,
)
from action_lens.schemas.message import IncomingMessage

__all__ = [
    "ActionCreate",
    "ActionDetails",
    "ActionStatus",
    "ActionType",
    "CandidateAction",
    "ConversationHistoryEntry",
    "IncomingMessage",
    "PersistedAction",
    "Priority",
]
