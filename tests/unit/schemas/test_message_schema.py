"""Tests for incoming message schema."""

from __future__ import annotations

import math
from collections.abc import Callable

import pytest
from pydantic import ValidationError

from action_lens.schemas.message import IncomingMessage

MessageFactory = Callable[..., IncomingMessage]


class TestIncomingMessage:
    """Tests for IncomingMessage."""

    def test_conversation_key_one_to_one(self, make_message: MessageFactory) -> None:
        """Test 1:1 messages are keyed by sender."""
        message = make_message(sender_id="bob@c.us", conversation_id="chat-9")

        assert message.conversation_key == "bob@c.us"

    def test_conversation_key_owner_shares_key_across_chats(
        self, make_message: MessageFactory
    ) -> None:
        """Test owner messages to different contacts share the owner's key."""
        to_bob = make_message(sender_id="me@c.us", conversation_id="bob@c.us", is_from_owner=True)
        to_carol = make_message(
            sender_id="me@c.us", conversation_id="carol@c.us", is_from_owner=True
        )

        assert to_bob.conversation_key == to_carol.conversation_key == "me@c.us"

    def test_conversation_key_group(self, make_message: MessageFactory) -> None:
        """Test group messages are keyed by conversation."""
        message = make_message(is_group_conversation=True, conversation_id="team@g.us")

        assert message.conversation_key == "team@g.us"

    def test_message_ids_single(self, make_message: MessageFactory) -> None:
        """Test a plain message represents only itself."""
        message = make_message(id="m1")

        assert message.message_ids == ["m1"]

    def test_message_ids_combined(self, make_message: MessageFactory) -> None:
        """Test a combined message represents its originals."""
        message = make_message(id="m1", original_message_ids=("m1", "m2"))

        assert message.message_ids == ["m1", "m2"]

    def test_frozen(self, make_message: MessageFactory) -> None:
        """Test messages are immutable."""
        message = make_message()

        with pytest.raises(ValidationError):
            message.body = "changed"  # type: ignore[misc]

    @pytest.mark.parametrize("sent_at", [-1.0, math.nan, math.inf])
    def test_invalid_timestamp_rejected(
        self, make_message: MessageFactory, sent_at: float
    ) -> None:
        """Test negative and non-finite timestamps fail validation."""
        with pytest.raises(ValidationError):
            make_message(sent_at=sent_at)

    def test_empty_id_rejected(self) -> None:
        """Test message ID is required."""
        with pytest.raises(ValidationError):
            IncomingMessage(id="", conversation_id="c", sender_id="s", sent_at=1.0)

    def test_redacted_view(self, make_message: MessageFactory) -> None:
        """Test the live view only carries display fields."""
        message = make_message(body="hi", sender_display_name="Alice", sent_at=10.0)

        view = message.redacted_view()

        assert view == {
            "sender_name": "Alice",
            "sender_id": "alice@c.us",
            "conversation_id": "chat-1",
            "body": "hi",
            "sent_at": 10.0,
            "is_group": False,
            "is_grouped_message": False,
            "message_count": 1,
        }

    def test_snapshot_is_json_safe(self, make_message: MessageFactory) -> None:
        """Test snapshot converts tuples to lists."""
        message = make_message(original_message_ids=("a", "b"))

        assert message.snapshot()["original_message_ids"] == ["a", "b"]
