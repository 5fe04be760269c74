"""
Vector Store Client

Wraps a Qdrant collection behind the query / upsert / create_index
operations the retrieval pipeline and ingestion use.
"""

import uuid
import logging
from typing import List, Dict, Any
from dataclasses import dataclass, field, replace

from qdrant_client import QdrantClient, models

from .config import STORAGE_DIR, VectorStoreConfig
from .errors import TransientIOError

logger = logging.getLogger("entity_rag.common.vector_store")

# Payload keys reserved by this client
DOC_ID_KEY = "doc_id"
TEXT_KEY = "text"


@dataclass(frozen=True)
class Candidate:
    """A scored retrieval hit with provenance metadata"""
    id: str
    score: float
    text: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_entity_search(self) -> bool:
        """True if this hit was found by an entity-targeted re-query"""
        return bool(self.metadata.get("entitySearch", False))

    @property
    def boosted_score(self) -> float:
        """Score after entity-overlap reranking (base score if not reranked)"""
        return self.metadata.get("boostedScore", self.score)

    def with_updates(self, score: float = None, **metadata: Any) -> "Candidate":
        """Return a copy with a new score and/or extra metadata"""
        return replace(
            self,
            score=self.score if score is None else score,
            metadata={**self.metadata, **metadata},
        )


@dataclass
class VectorDocument:
    """A document ready to be written to the store"""
    id: str
    vector: List[float]
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def point_id_for(doc_id: str) -> str:
    """Map an opaque document id to a stable Qdrant point id"""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, doc_id))


class VectorStoreClient:
    """
    Client for one Qdrant collection (the "index").

    Failures are raised as TransientIOError and never retried here;
    each caller decides whether a failure is fatal.
    """

    def __init__(self, client: QdrantClient, index_name: str = "embeddings"):
        """
        Initialize vector store client.

        Args:
            client: Connected QdrantClient
            index_name: Collection name
        """
        self._client = client
        self._index_name = index_name

    @classmethod
    def from_config(cls, config: VectorStoreConfig) -> "VectorStoreClient":
        """
        Connect to Qdrant using the vector_store config section.

        path wins over url; with neither set, a local store under
        ~/.entity_rag/qdrant is used.
        """
        if config.path == ":memory:":
            client = QdrantClient(location=":memory:")
        elif config.path:
            client = QdrantClient(path=config.path)
        elif config.url:
            client = QdrantClient(url=config.url, api_key=config.api_key or None)
        else:
            client = QdrantClient(path=str(STORAGE_DIR))
        logger.info("Connected to Qdrant (%s)", config.path or config.url or STORAGE_DIR)
        return cls(client, index_name=config.index_name)

    @property
    def index_name(self) -> str:
        return self._index_name

    def create_index(self, dimension: int) -> bool:
        """
        Create the collection if it does not exist.

        Args:
            dimension: Embedding dimension

        Returns:
            True if the collection was created, False if it already existed
        """
        try:
            if self._client.collection_exists(self._index_name):
                return False
            self._client.create_collection(
                collection_name=self._index_name,
                vectors_config=models.VectorParams(
                    size=dimension,
                    distance=models.Distance.COSINE,
                ),
            )
        except Exception as e:
            raise TransientIOError(f"Failed to create index '{self._index_name}': {e}") from e

        logger.info("Created index %s (dim=%d)", self._index_name, dimension)
        return True

    def query(self, vector: List[float], top_k: int = 10) -> List[Candidate]:
        """
        Similarity search.

        Args:
            vector: Query embedding
            top_k: Number of results to return

        Returns:
            Candidates sorted by score, highest first
        """
        if top_k <= 0:
            return []

        try:
            response = self._client.query_points(
                collection_name=self._index_name,
                query=vector,
                limit=top_k,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            raise TransientIOError(f"Vector query failed: {e}") from e

        candidates = [self._to_candidate(point) for point in response.points]
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    def upsert(self, documents: List[VectorDocument]) -> List[str]:
        """
        Insert or overwrite documents by id.

        Args:
            documents: Documents with pre-computed vectors

        Returns:
            Document ids written
        """
        if not documents:
            return []

        points = [
            models.PointStruct(
                id=point_id_for(doc.id),
                vector=doc.vector,
                payload={**doc.metadata, TEXT_KEY: doc.text, DOC_ID_KEY: doc.id},
            )
            for doc in documents
        ]

        try:
            self._client.upsert(collection_name=self._index_name, points=points)
        except Exception as e:
            raise TransientIOError(f"Vector upsert failed: {e}") from e

        return [doc.id for doc in documents]

    def _to_candidate(self, point) -> Candidate:
        """Convert a Qdrant ScoredPoint to a Candidate"""
        payload = dict(point.payload or {})
        doc_id = payload.pop(DOC_ID_KEY, None) or str(point.id)
        text = payload.pop(TEXT_KEY, "")
        if not isinstance(text, str):
            text = ""

        return Candidate(
            id=str(doc_id),
            score=float(point.score or 0.0),
            text=text,
            metadata=payload,
        )
