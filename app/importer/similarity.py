"""Pluggable string similarity used by the column matcher."""

from difflib import SequenceMatcher
from typing import Protocol


class SimilarityScorer(Protocol):
    def similarity(self, a: str, b: str) -> float:
        """Score two lowercase strings between 0.0 and 1.0."""
        ...


class CharacterOverlapScorer:
    """Characters of the shorter string found in the longer one, over the longer length.

    Crude and permissive: "abc" and "cab" score 1.0. Good enough to suggest a
    column, which the user can always correct.
    """

    def similarity(self, a: str, b: str) -> float:
        if not a or not b:
            return 0.0
        shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
        matches = sum(1 for ch in shorter if ch in longer)
        return matches / len(longer)


class SequenceRatioScorer:
    """difflib ratio, stricter about character order."""

    def similarity(self, a: str, b: str) -> float:
        if not a or not b:
            return 0.0
        return SequenceMatcher(None, a, b).ratio()
