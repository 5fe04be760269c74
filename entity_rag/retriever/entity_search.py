"""
Entity Expansion Search

Simulates relationship traversal without a graph: every extracted entity
is embedded as its own query, and strong hits that the initial search
missed are folded into the candidate pool at a discounted score.
"""

import asyncio
import logging
from typing import List

from ..common.embedding_service import EmbeddingService
from ..common.vector_store import Candidate, VectorStoreClient
from .entity_extractor import StopWords

logger = logging.getLogger("entity_rag.retriever.entity_search")

MAX_EXPANSION_ENTITIES = 3
MAX_RESULTS_PER_ENTITY = 5
ENTITY_SCORE_THRESHOLD = 0.7
ENTITY_DAMPENING = 0.7


class EntityExpansionSearch:
    """
    Entity-targeted secondary vector searches.

    Features:
    - Truncates to the first few entities (no ranking)
    - Concurrent embed + query round trip per entity
    - Per-entity failure isolation: a failed entity is logged and skipped
    """

    def __init__(
        self,
        vector_store: VectorStoreClient,
        embedding_service: EmbeddingService,
        stop_words: StopWords = None,
        max_entities: int = MAX_EXPANSION_ENTITIES,
        max_results_per_entity: int = MAX_RESULTS_PER_ENTITY,
        score_threshold: float = ENTITY_SCORE_THRESHOLD,
        dampening: float = ENTITY_DAMPENING,
    ):
        """
        Initialize entity expansion.

        Args:
            vector_store: Store to re-query
            embedding_service: For embedding entity strings
            stop_words: Entities to skip
            max_entities: Number of leading entities considered
            max_results_per_entity: Upper bound on top_k per entity query
            score_threshold: Raw score a hit must exceed to be kept
            dampening: Multiplier applied to kept hits' scores
        """
        self._store = vector_store
        self._embedding = embedding_service
        self._stop_words = stop_words or StopWords()
        self._max_entities = max_entities
        self._max_results_per_entity = max_results_per_entity
        self._score_threshold = score_threshold
        self._dampening = dampening

    async def expand(
        self,
        entities: List[str],
        initial_candidates: List[Candidate],
        depth: int = 2,
    ) -> List[Candidate]:
        """
        Run entity-targeted searches and return novel, strong hits.

        Args:
            entities: Extracted entities, in extraction order
            initial_candidates: Results of the initial vector search
            depth: Entity search depth; per-entity top_k is min(5, depth * 2)

        Returns:
            New candidates (never ids already in initial_candidates),
            grouped by entity in entity order
        """
        top_k = min(self._max_results_per_entity, depth * 2)
        if top_k <= 0:
            return []

        selected = [
            entity for entity in entities[:self._max_entities]
            if entity not in self._stop_words
        ]
        if not selected:
            return []

        initial_ids = {c.id for c in initial_candidates}

        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self._search_entity, entity, top_k) for entity in selected),
            return_exceptions=True,
        )

        expanded = []
        for entity, outcome in zip(selected, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Entity search failed for '%s': %s", entity, outcome)
                continue

            for hit in outcome:
                if hit.id in initial_ids or hit.score <= self._score_threshold:
                    continue
                expanded.append(hit.with_updates(
                    score=hit.score * self._dampening,
                    entitySearch=True,
                    entity=entity,
                    retrievalMethod="entity_search",
                ))

        logger.debug("Entity expansion over %s added %d candidate(s)", selected, len(expanded))
        return expanded

    def _search_entity(self, entity: str, top_k: int) -> List[Candidate]:
        """Embed one entity and query the store with it"""
        vector = self._embedding.embed_single(entity)
        return self._store.query(vector, top_k)
