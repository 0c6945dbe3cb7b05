"""Core utilities for action-lens."""

from __future__ import annotations

from action_lens.core.config import ActionLensConfig, get_config
from action_lens.core.database import Database
from action_lens.core.logging import configure_structlog

__all__ = [
    "ActionLensConfig",
    "Database",
    "configure_structlog",
    "get_config",
]
