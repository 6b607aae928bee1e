# src/calibration/similarity.py — v1
"""Word-overlap similarity used to merge repeated human corrections into one rule."""

from __future__ import annotations

import re

_WORD_RE = re.compile(r"\s+")
_MIN_WORD_LEN = 4


def significant_words(text: str) -> set[str]:
    """Lower-cased words longer than three characters."""
    return {w for w in _WORD_RE.split(text.lower().strip()) if len(w) >= _MIN_WORD_LEN}


def word_overlap_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity over significant words, in [0, 1].

    Returns 0.0 when either side has no significant word.
    """
    words1 = significant_words(text1)
    words2 = significant_words(text2)
    if not words1 or not words2:
        return 0.0
    intersection = len(words1 & words2)
    union = len(words1) + len(words2) - intersection
    return intersection / union
