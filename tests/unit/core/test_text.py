"""Tests for word-level text helpers."""

from __future__ import annotations

from action_lens.core.text import jaccard, strip_punctuation


class TestStripPunctuation:
    """Tests for strip_punctuation."""

    def test_removes_punctuation(self) -> None:
        """Test punctuation is removed by default."""
        assert strip_punctuation("Hello, world! It's done.") == "Hello world Its done"

    def test_replacement(self) -> None:
        """Test punctuation can be replaced with spaces."""
        assert strip_punctuation("a,b", " ") == "a b"


class TestJaccard:
    """Tests for jaccard."""

    def test_identical(self) -> None:
        """Test identical collections score 1."""
        assert jaccard(["a", "b"], ["b", "a"]) == 1.0

    def test_partial(self) -> None:
        """Test partial overlap."""
        assert jaccard(["a", "b", "c"], ["b", "c", "d"]) == 0.5

    def test_both_empty(self) -> None:
        """Test empty inputs score 0."""
        assert jaccard([], []) == 0.0
