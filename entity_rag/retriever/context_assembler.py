"""
Context Assembler

Builds the bounded context string handed to a downstream language model,
plus the structured source list returned alongside it.

Key principle: the budget is a hard ceiling.
- never more than max_results fragments
- never more than max_context_length characters (separators included)
- once a fragment has to be truncated, assembly stops
"""

import logging
from typing import List, Dict, Any, Tuple
from dataclasses import dataclass, field

from ..common.vector_store import Candidate

logger = logging.getLogger("entity_rag.retriever.context_assembler")

MAX_RESULTS = 15
MAX_CONTEXT_LENGTH = 6000
MIN_TEXT_LENGTH = 50
TRUNCATION_SLACK = 200
SEPARATOR = "\n\n"
ELLIPSIS = "..."


@dataclass
class ContextSelection:
    """Context text and the candidates that contributed to it"""
    text: str = ""
    fragment_ids: List[str] = field(default_factory=list)
    truncated: bool = False


class ContextAssembler:
    """
    Walks reranked candidates in order and accepts the relevant ones.

    A candidate is skipped when it has no text, is shorter than
    min_text_length (noise), or mentions none of the entities.
    """

    def __init__(
        self,
        min_text_length: int = MIN_TEXT_LENGTH,
        truncation_slack: int = TRUNCATION_SLACK,
    ):
        self._min_text_length = min_text_length
        self._truncation_slack = truncation_slack

    def assemble(
        self,
        candidates: List[Candidate],
        entities: List[str],
        max_results: int = MAX_RESULTS,
        max_context_length: int = MAX_CONTEXT_LENGTH,
    ) -> Tuple[str, List[Dict[str, Any]]]:
        """
        Assemble context and sources.

        Args:
            candidates: Reranked, deduplicated candidates
            entities: Entities a fragment must mention
            max_results: Max fragments in the context
            max_context_length: Max characters in the context

        Returns:
            (context string, formatted sources for every candidate)
        """
        selection = self.build_context(candidates, entities, max_results, max_context_length)
        return selection.text, self.format_sources(candidates)

    def build_context(
        self,
        candidates: List[Candidate],
        entities: List[str],
        max_results: int = MAX_RESULTS,
        max_context_length: int = MAX_CONTEXT_LENGTH,
    ) -> ContextSelection:
        """Select fragments under the result and length budget"""
        selection = ContextSelection()
        entities_lower = [e.lower() for e in entities if e]
        parts = []
        length = 0

        for candidate in candidates:
            if len(selection.fragment_ids) >= max_results:
                break

            text = candidate.text
            if not text or len(text) < self._min_text_length:
                continue

            text_lower = text.lower()
            if not any(entity in text_lower for entity in entities_lower):
                continue

            separator = SEPARATOR if parts else ""
            if length + len(separator) + len(text) > max_context_length:
                remaining = max_context_length - length - len(separator)
                if remaining > self._truncation_slack:
                    parts.append(separator + text[:remaining - self._truncation_slack] + ELLIPSIS)
                    selection.fragment_ids.append(candidate.id)
                    selection.truncated = True
                break

            parts.append(separator + text)
            length += len(separator) + len(text)
            selection.fragment_ids.append(candidate.id)

        selection.text = "".join(parts)
        logger.debug(
            "Assembled %d fragment(s), %d chars%s",
            len(selection.fragment_ids), len(selection.text),
            " (truncated)" if selection.truncated else "",
        )
        return selection

    def format_sources(self, candidates: List[Candidate]) -> List[Dict[str, Any]]:
        """Format every candidate as a source entry, tagged with its provenance"""
        return [
            {
                "id": f"result-{index}",
                "score": candidate.boosted_score,
                "document": candidate.text or "No text available",
                "metadata": {
                    **candidate.metadata,
                    "score": candidate.boosted_score,
                    "id": candidate.id,
                    "retrievalMethod": (
                        "entity_search" if candidate.is_entity_search else "vector_similarity"
                    ),
                },
            }
            for index, candidate in enumerate(candidates)
        ]
