"""
Deduplication and entity-overlap reranking.
"""

import re
from typing import List

from ..common.vector_store import Candidate

ENTITY_BOOST = 0.1


def dedupe(candidates: List[Candidate]) -> List[Candidate]:
    """Collapse to unique ids; the first occurrence wins, order is kept"""
    seen_ids = set()
    unique = []
    for candidate in candidates:
        if candidate.id in seen_ids:
            continue
        seen_ids.add(candidate.id)
        unique.append(candidate)
    return unique


class EntityOverlapReranker:
    """
    Boosts candidates whose text mentions the query entities.

    boostedScore = score + (whole-word entity occurrences) * boost

    The base score is left untouched, so reranking an already reranked
    list with the same entities gives the same order.
    """

    def __init__(self, boost: float = ENTITY_BOOST):
        self._boost = boost

    def rerank(self, candidates: List[Candidate], entities: List[str]) -> List[Candidate]:
        """
        Rerank by entity overlap.

        Args:
            candidates: Deduplicated candidates
            entities: Entity strings

        Returns:
            Candidates sorted by boostedScore descending (stable); the input
            list itself when there are no entities
        """
        if not entities:
            return candidates

        patterns = [
            re.compile(r"\b" + re.escape(entity) + r"\b", re.IGNORECASE)
            for entity in entities if entity
        ]

        rescored = []
        for candidate in candidates:
            text = candidate.text or ""
            entity_score = sum(len(p.findall(text)) for p in patterns)
            boosted = candidate.score + entity_score * self._boost
            rescored.append(candidate.with_updates(entityScore=entity_score, boostedScore=boosted))

        return sorted(rescored, key=lambda c: c.boosted_score, reverse=True)
