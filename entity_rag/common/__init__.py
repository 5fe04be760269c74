"""
Entity RAG Common Module

Shared infrastructure for retrieval and ingestion.
"""

from .config import EntityRagConfig, load_config
from .embedding_service import EmbeddingService
from .errors import (
    EntityRagError,
    ConfigurationError,
    CollaboratorUnavailable,
    TransientIOError,
)
from .vector_store import Candidate, VectorDocument, VectorStoreClient
from .web_search import WebResult, WebSearchClient

__all__ = [
    "EntityRagConfig",
    "load_config",
    "EmbeddingService",
    "EntityRagError",
    "ConfigurationError",
    "CollaboratorUnavailable",
    "TransientIOError",
    "Candidate",
    "VectorDocument",
    "VectorStoreClient",
    "WebResult",
    "WebSearchClient",
]
