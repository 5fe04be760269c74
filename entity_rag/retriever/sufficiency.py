"""
Sufficiency Gate

Decides whether local retrieval is strong enough to skip web search.
A single strong match anywhere in the result set is enough.
"""

from typing import List

from ..common.vector_store import Candidate

SUFFICIENCY_THRESHOLD = 0.7


class SufficiencyGate:
    """Fixed-threshold check on the initial search results"""

    def __init__(self, threshold: float = SUFFICIENCY_THRESHOLD):
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def is_sufficient(self, candidates: List[Candidate]) -> bool:
        """True iff there is at least one candidate scoring above the threshold"""
        if not candidates:
            return False
        return any((c.score or 0.0) > self._threshold for c in candidates)
