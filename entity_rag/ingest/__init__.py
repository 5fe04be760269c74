"""
Ingest - Getting Documents Into the Knowledge Base

Key Components:
- DocumentChunker: Splits text/markdown/HTML/JSON into chunks
- DocumentUploader: File and raw-text ingestion with per-chunk entities
- WebResultStore: Persists web search results
"""

from .chunker import Chunk, DocumentChunker, detect_content_type
from .web_store import StoreResult, WebResultStore
from .uploader import DocumentUploader, UploadResult

__all__ = [
    "Chunk",
    "DocumentChunker",
    "detect_content_type",
    "StoreResult",
    "WebResultStore",
    "DocumentUploader",
    "UploadResult",
]
