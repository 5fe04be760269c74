"""
Entity RAG

Entity-aware retrieval-augmented generation over a vector store.

Philosophy:
- Local knowledge first; the web only when local recall is weak
- Entities are cheap token heuristics, not an NER model
- Relationships are approximated by independent similarity searches, no graph
- Retrieval never raises past its public boundary

Usage:
    from entity_rag.common import load_config, EmbeddingService, VectorStoreClient
    from entity_rag.common.web_search import WebSearchClient
    from entity_rag.retriever import RetrievalPipeline, build_pipeline
    from entity_rag.ingest import DocumentChunker, DocumentUploader, WebResultStore
"""

__version__ = "0.1.0"
