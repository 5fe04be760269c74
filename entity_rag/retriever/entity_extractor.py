"""
Entity Extractor

Derives candidate "entity" strings from a query or chunk text.
Entities are plain topic words: whitespace tokens, lower-cased, letters
only, longer than three characters, minus stop words. No NER model.
"""

import re
from typing import Iterable, List, Optional

from ..common.vector_store import Candidate

# Tokens must be longer than this
MIN_TOKEN_LENGTH = 3

# Entities stored per chunk at ingestion time
MAX_INGEST_ENTITIES = 10

_LETTERS_ONLY = re.compile(r"[a-zA-Z]+")

# Shared by query-time extraction, ingestion and entity expansion
DEFAULT_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "if", "so", "no", "in", "on", "at",
    "to", "for", "of", "with", "by", "up", "do", "go", "my", "is", "are",
    "was", "were", "be", "been", "being", "have", "has", "had", "does", "did",
    "will", "would", "could", "should", "shall", "might", "must", "can", "may",
    "that", "this", "these", "those", "there", "their", "they", "them", "then",
    "than", "what", "which", "who", "whom", "when", "where", "why", "how",
    "she", "her", "him", "its", "from", "into", "about", "over", "after",
    "each", "many", "some", "more", "said", "make", "made", "like", "time",
    "two", "one", "way", "first", "call", "now", "find", "long", "down",
    "day", "get", "come", "part", "also", "just", "even", "because", "while",
    "until", "though", "although", "your", "yours", "ours", "very", "much",
    "such", "only", "other", "here", "tell", "know",
})


class StopWords:
    """Stop-word policy injected into every extraction call site"""

    def __init__(self, words: Optional[Iterable[str]] = None):
        words = [w.lower() for w in words or [] if w]
        self._words = frozenset(words) if words else DEFAULT_STOP_WORDS

    def __contains__(self, word: str) -> bool:
        return word.lower() in self._words

    def __len__(self) -> int:
        return len(self._words)


class EntityExtractor:
    """
    Heuristic entity extraction.

    Output is de-duplicated and keeps first-seen order. Never raises;
    empty input yields an empty list.
    """

    def __init__(self, stop_words: Optional[StopWords] = None):
        self._stop_words = stop_words or StopWords()

    @property
    def stop_words(self) -> StopWords:
        return self._stop_words

    def extract(self, text: str, max_entities: Optional[int] = None) -> List[str]:
        """
        Extract entities from free text.

        Args:
            text: Query or chunk text
            max_entities: Cap on the number returned (None = uncapped)

        Returns:
            Lower-cased entity strings in first-seen order
        """
        if not text:
            return []

        entities = []
        seen = set()
        for token in text.lower().split():
            if len(token) <= MIN_TOKEN_LENGTH or not _LETTERS_ONLY.fullmatch(token):
                continue
            if token in self._stop_words or token in seen:
                continue
            seen.add(token)
            entities.append(token)
            if max_entities is not None and len(entities) >= max_entities:
                break

        return entities

    def extract_from_candidates(self, candidates: List[Candidate]) -> List[str]:
        """Union the entity lists precomputed at ingestion time"""
        entities = []
        seen = set()
        for candidate in candidates:
            declared = candidate.metadata.get("entities")
            if not isinstance(declared, list):
                continue
            for entity in declared:
                if not isinstance(entity, str) or not entity.strip():
                    continue
                entity = entity.strip().lower()
                if entity not in seen:
                    seen.add(entity)
                    entities.append(entity)
        return entities

    def extract_for_query(self, query: str, candidates: List[Candidate]) -> List[str]:
        """Query entities first, then entities declared on the results"""
        entities = self.extract(query)
        for entity in self.extract_from_candidates(candidates):
            if entity not in entities:
                entities.append(entity)
        return entities
