"""
Web Result Store

Persists web search results into the vector store so that later queries
can find them locally.
"""

import time
import uuid
import logging
from datetime import datetime, timezone
from typing import List, Dict, Any
from dataclasses import dataclass, field

from ..common.embedding_service import EmbeddingService
from ..common.vector_store import VectorDocument, VectorStoreClient
from ..common.web_search import WebResult

logger = logging.getLogger("entity_rag.ingest.web_store")


@dataclass
class StoreResult:
    """Outcome of a manual store request"""
    message: str
    stored_count: int = 0
    document_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "storedCount": self.stored_count,
            "documentIds": self.document_ids,
        }


class WebResultStore:
    """
    Embeds web results and upserts them as documents.

    Two entry points:
    - store(): explicit user request, reports failure in the result
    - store_automatic(): used by retrieval on weak local recall, raises
    """

    def __init__(self, embedding_service: EmbeddingService, vector_store: VectorStoreClient):
        self._embedding = embedding_service
        self._store = vector_store

    def store(
        self,
        results: List[WebResult],
        original_query: str,
        user_requested: bool = True,
    ) -> StoreResult:
        """
        Store results the user asked to keep.

        Args:
            results: Web results to store
            original_query: Query that produced them
            user_requested: Nothing is stored unless True

        Returns:
            StoreResult with the stored ids
        """
        if not user_requested:
            return StoreResult("Web search results not stored - user did not request storage")

        stamp = _epoch_ms()
        ids = [f"web_{stamp}_{index}" for index in range(len(results))]
        try:
            stored = self._persist(results, ids, original_query, {"userRequested": True})
        except Exception as e:
            logger.error("Failed to store web search results: %s", e)
            return StoreResult(f"Failed to store web search results: {e}")

        return StoreResult(
            f"Successfully stored {len(stored)} web search results in knowledge base",
            stored_count=len(stored),
            document_ids=stored,
        )

    def store_automatic(self, results: List[WebResult], original_query: str) -> List[str]:
        """
        Store results found while augmenting a weak retrieval.

        Raises:
            TransientIOError: embedding or upsert failed
        """
        stamp = _epoch_ms()
        ids = [f"web_{stamp}_{uuid.uuid4().hex[:8]}" for _ in results]
        return self._persist(results, ids, original_query, {})

    def _persist(
        self,
        results: List[WebResult],
        ids: List[str],
        original_query: str,
        extra_metadata: Dict[str, Any],
    ) -> List[str]:
        # Results without any text cannot be embedded
        pending = [(doc_id, r) for doc_id, r in zip(ids, results) if r.document_text]
        if not pending:
            return []

        texts = [r.document_text for _, r in pending]
        vectors = self._embedding.embed(texts)
        timestamp = datetime.now(timezone.utc).isoformat()

        documents = [
            VectorDocument(
                id=doc_id,
                vector=vector,
                text=text,
                metadata={
                    "title": result.title or "Web Search Result",
                    "url": result.url or "#",
                    "source": "web_search",
                    "originalQuery": original_query,
                    "timestamp": timestamp,
                    **extra_metadata,
                },
            )
            for (doc_id, result), text, vector in zip(pending, texts, vectors)
        ]
        stored = self._store.upsert(documents)
        logger.info("Stored %d web document(s) for %r", len(stored), original_query)
        return stored


def _epoch_ms() -> int:
    return int(time.time() * 1000)
