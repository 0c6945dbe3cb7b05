"""Storage for detected actions."""

from action_lens.repositories.action import ActionRepository, SqlActionStore
from action_lens.repositories.base import (
    ActionStore,
    DuplicateActionError,
    SenderScope,
    StorageError,
)
from action_lens.repositories.memory import InMemoryActionStore

__all__ = [
    "ActionRepository",
    "ActionStore",
    "DuplicateActionError",
    "InMemoryActionStore",
    "SenderScope",
    "SqlActionStore",
    "StorageError",
]
