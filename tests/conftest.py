"""Shared test fixtures for action-lens."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from action_lens.core.config import ActionLensConfig
from action_lens.repositories.memory import InMemoryActionStore
from action_lens.schemas.action import ActionDetails, CandidateAction
from action_lens.schemas.message import IncomingMessage

BASE_TS = 1_704_067_200.0  # 2024-01-01 00:00:00 UTC

MessageFactory = Callable[..., IncomingMessage]


@pytest.fixture
def base_ts() -> float:
    """Reference timestamp for test messages."""
    return BASE_TS


@pytest.fixture
def make_message() -> MessageFactory:
    """Factory for incoming messages with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> IncomingMessage:
        counter["n"] += 1
        data: dict[str, Any] = {
            "id": f"msg-{counter['n']}",
            "conversation_id": "chat-1",
            "sender_id": "alice@c.us",
            "sender_display_name": "Alice",
            "is_group_conversation": False,
            "body": "Please send the quarterly report",
            "sent_at": BASE_TS + counter["n"],
            "is_from_owner": False,
        }
        data.update(overrides)
        return IncomingMessage(**data)

    return _make


@pytest.fixture
def make_candidate() -> Callable[..., CandidateAction]:
    """Factory for candidate actions."""

    def _make(
        type: str = "task",
        description: str = "Send the quarterly report",
        confidence: float = 0.9,
        **details: Any,
    ) -> CandidateAction:
        return CandidateAction(
            type=type,
            description=description,
            confidence=confidence,
            details=ActionDetails(**details),
        )

    return _make


@pytest.fixture
def config() -> ActionLensConfig:
    """Configuration with short timers and no external services."""
    return ActionLensConfig(
        _env_file=None,
        batch_delay_ms=50,
        openai_api_key=None,
        onesignal_app_id=None,
        onesignal_api_key=None,
    )


@pytest.fixture
def store() -> InMemoryActionStore:
    """Empty in-memory action store."""
    return InMemoryActionStore()
