"""SQLAlchemy models for action-lens."""

from action_lens.models.ai_action import AIAction, AIActionMessage
from action_lens.models.base import Base

__all__ = [
    "AIAction",
    "AIActionMessage",
    "Base",
]
