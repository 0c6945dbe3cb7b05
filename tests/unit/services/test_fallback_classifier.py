"""Tests for the keyword fallback classifier."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from action_lens.schemas.message import IncomingMessage
from action_lens.services.classification import ClassificationRequest, select_best
from action_lens.services.fallback_classifier import RULES, KeywordClassifier, KeywordRule

MessageFactory = Callable[..., IncomingMessage]

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def classifier() -> KeywordClassifier:
    return KeywordClassifier()


class TestKeywordRule:
    """Tests for rule pattern construction."""

    def test_word_boundaries(self) -> None:
        """Test keywords match whole words only."""
        reminder = next(rule for rule in RULES if rule.type == "reminder")
        pattern = reminder.pattern()

        assert pattern.search("see you at 10 am")
        assert not pattern.search("check the camera")

    def test_punctuation_keyword(self) -> None:
        """Test a punctuation keyword matches without word boundaries."""
        communication = next(rule for rule in RULES if rule.type == "communication")

        assert communication.pattern().search("done?")

    def test_rules_cover_distinct_types(self) -> None:
        """Test every rule produces a different action type."""
        types = [rule.type for rule in RULES]

        assert len(types) == len(set(types))
        assert all(isinstance(rule, KeywordRule) for rule in RULES)


class TestClassifyText:
    """Tests for KeywordClassifier.classify_text."""

    def test_reminder_with_time(self, classifier: KeywordClassifier) -> None:
        """Test a reminder request yields a scheduled reminder."""
        candidates = classifier.classify_text("remind me tomorrow at 3pm", now=NOW)

        assert [c.type for c in candidates] == ["reminder"]
        reminder = candidates[0]
        assert reminder.confidence == 0.8
        assert reminder.details.datetime == (NOW + timedelta(days=1)).isoformat()
        assert reminder.details.content == "remind me tomorrow at 3pm"
        assert reminder.details.priority == "medium"

    def test_multiple_matches_in_rule_order(self, classifier: KeywordClassifier) -> None:
        """Test every matching rule contributes a candidate."""
        candidates = classifier.classify_text("Meeting with the client tomorrow", now=NOW)

        assert [c.type for c in candidates] == ["reminder", "event", "follow_up"]
        assert candidates[1].details.datetime is None

    def test_case_insensitive(self, classifier: KeywordClassifier) -> None:
        """Test matching ignores case."""
        candidates = classifier.classify_text("INVOICE attached", now=NOW)

        assert [c.type for c in candidates] == ["finance"]

    def test_long_unmatched_message_becomes_note(self, classifier: KeywordClassifier) -> None:
        """Test a long message without keywords yields a low-confidence note."""
        text = "Lorem ipsum dolor sit amet consectetur adipiscing elit sed eiusmod"

        candidates = classifier.classify_text(text, now=NOW)

        assert len(candidates) == 1
        assert candidates[0].type == "note"
        assert candidates[0].confidence == 0.6
        assert candidates[0].details.category == "general"

    def test_short_unmatched_message(self, classifier: KeywordClassifier) -> None:
        """Test a short message without keywords yields nothing."""
        assert classifier.classify_text("ok thanks", now=NOW) == []

    def test_deterministic(self, classifier: KeywordClassifier) -> None:
        """Test identical input gives identical candidates."""
        text = "Can you pay the invoice before the meeting tomorrow?"

        first = classifier.classify_text(text, now=NOW)
        second = classifier.classify_text(text, now=NOW)

        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_selected_reminder(self, classifier: KeywordClassifier) -> None:
        """Test the best fallback candidate for a reminder request."""
        best = select_best(classifier.classify_text("remind me tomorrow at 3pm", now=NOW))

        assert best is not None
        assert best.type == "reminder"


class TestClassify:
    """Tests for the async classifier interface."""

    @pytest.mark.asyncio
    async def test_classify_uses_message_body(
        self, classifier: KeywordClassifier, make_message: MessageFactory
    ) -> None:
        """Test the request message body is classified."""
        request = ClassificationRequest(message=make_message(body="Buy groceries"))

        candidates = await classifier.classify(request)

        assert [c.type for c in candidates] == ["shopping"]
