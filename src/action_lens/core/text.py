"""Word-level helpers shared by the duplicate and topic checks."""

from __future__ import annotations

import re
from collections.abc import Iterable

_PUNCTUATION = re.compile(r"[^\w\s]")


def strip_punctuation(text: str, replacement: str = "") -> str:
    """Remove every character that is neither a word character nor whitespace."""
    return _PUNCTUATION.sub(replacement, text)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard index of two token collections (0.0 when both are empty)."""
    set_a = set(a)
    set_b = set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)
