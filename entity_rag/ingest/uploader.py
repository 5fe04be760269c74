"""
Document Uploader

Adds documents to the knowledge base: read → chunk → embed → extract
entities → upsert. Chunks carry their entities so that retrieval can use
them without re-extracting.
"""

import hashlib
import logging
from pathlib import Path
from typing import List, Dict, Any, Optional
from dataclasses import dataclass

from ..common.embedding_service import EmbeddingService
from ..common.errors import TransientIOError
from ..common.vector_store import VectorDocument, VectorStoreClient
from ..retriever.entity_extractor import EntityExtractor, MAX_INGEST_ENTITIES
from .chunker import Chunk, DocumentChunker, detect_content_type

logger = logging.getLogger("entity_rag.ingest.uploader")


@dataclass
class UploadResult:
    """Outcome of an upload"""
    success: bool
    chunks_created: int = 0
    embeddings_generated: int = 0
    entities_extracted: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "chunksCreated": self.chunks_created,
            "embeddingsGenerated": self.embeddings_generated,
            "entitiesExtracted": self.entities_extracted,
            "message": self.message,
        }


class DocumentUploader:
    """
    Ingests files and raw texts into the vector store.

    Re-uploading the same file (or text) overwrites its chunks, since
    chunk ids are derived from the source and the chunk index.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: VectorStoreClient,
        chunker: Optional[DocumentChunker] = None,
        extractor: Optional[EntityExtractor] = None,
        dimension: int = 1536,
        max_entities: int = MAX_INGEST_ENTITIES,
    ):
        """
        Initialize uploader.

        Args:
            embedding_service: Chunk embedding
            vector_store: Destination store
            chunker: Document chunker
            extractor: Entity extractor (shares the retrieval stop words)
            dimension: Embedding dimension, for index creation
            max_entities: Entities stored per chunk
        """
        self._embedding = embedding_service
        self._store = vector_store
        self._chunker = chunker or DocumentChunker()
        self._extractor = extractor or EntityExtractor()
        self._dimension = dimension
        self._max_entities = max_entities

    def upload_file(
        self,
        file_path: str,
        chunk_size: int = 512,
        overlap: int = 50,
        content_type: str = "auto",
    ) -> UploadResult:
        """
        Upload a file to the knowledge base.

        Args:
            file_path: Path to a text, markdown or JSON file
            chunk_size: Chunk size in characters
            overlap: Chunk overlap in characters
            content_type: "auto" (from extension), "text", "markdown" or "json"

        Returns:
            UploadResult; failures are reported, not raised
        """
        path = Path(file_path).expanduser()
        if not path.is_file():
            return UploadResult(False, message=f"File not found: {file_path}")

        if content_type == "auto":
            content_type = detect_content_type(path.name)

        try:
            content = path.read_text(encoding="utf-8")
            logger.info("Processing file: %s (%s)", path, content_type)
            chunks = self._chunker.chunk(content, content_type, chunk_size, overlap)
            if not chunks:
                return UploadResult(False, message=f"No content to upload in {file_path}")

            embedded, chunk_entities = self._store_chunks(
                chunks,
                id_prefix=f"file_{_digest(str(path.resolve()))}",
                source=str(path),
                content_type=content_type,
                chunk_size=chunk_size,
                overlap=overlap,
            )
        except Exception as e:
            logger.error("Error uploading %s: %s", file_path, e)
            return UploadResult(False, message=f"Upload failed: {e}")

        return UploadResult(
            True,
            chunks_created=len(chunks),
            embeddings_generated=embedded,
            entities_extracted=len(chunk_entities),
            message=f"Successfully uploaded {file_path} to knowledge base",
        )

    def ingest_texts(
        self,
        documents: List[str],
        chunk_size: int = 512,
        overlap: int = 50,
    ) -> UploadResult:
        """
        Chunk, embed and store raw text documents.

        Args:
            documents: Plain text documents
            chunk_size: Chunk size in characters
            overlap: Chunk overlap in characters

        Returns:
            UploadResult with totals over all documents
        """
        total_chunks = 0
        total_embedded = 0
        entities = set()

        try:
            for document in documents:
                chunks = self._chunker.chunk(document, "text", chunk_size, overlap)
                if not chunks:
                    continue
                embedded, chunk_entities = self._store_chunks(
                    chunks,
                    id_prefix=f"text_{_digest(document)}",
                    source="direct",
                    content_type="text",
                    chunk_size=chunk_size,
                    overlap=overlap,
                )
                total_chunks += len(chunks)
                total_embedded += embedded
                entities.update(chunk_entities)
        except Exception as e:
            logger.error("Error ingesting texts: %s", e)
            return UploadResult(
                False,
                chunks_created=total_chunks,
                embeddings_generated=total_embedded,
                message=f"Ingestion failed: {e}",
            )

        return UploadResult(
            True,
            chunks_created=total_chunks,
            embeddings_generated=total_embedded,
            entities_extracted=len(entities),
            message=f"Ingested {len(documents)} document(s) into {total_chunks} chunk(s)",
        )

    def ensure_index(self) -> None:
        """Create the index, tolerating one that already exists"""
        try:
            self._store.create_index(self._dimension)
        except TransientIOError as e:
            logger.warning("Index creation failed, continuing: %s", e)

    def _store_chunks(
        self,
        chunks: List[Chunk],
        id_prefix: str,
        source: str,
        content_type: str,
        chunk_size: int,
        overlap: int,
    ):
        """Embed and upsert chunks; returns (embedding count, set of entities)"""
        vectors = self._embedding.embed([c.text for c in chunks])

        all_entities = set()
        documents = []
        for chunk, vector in zip(chunks, vectors):
            entities = self._extractor.extract(chunk.text, self._max_entities)
            all_entities.update(entities)
            documents.append(VectorDocument(
                id=f"{id_prefix}_{chunk.index}",
                vector=vector,
                text=chunk.text,
                metadata={
                    "entities": entities,
                    "source": source,
                    "contentType": content_type,
                    "chunkSize": chunk_size,
                    "overlap": overlap,
                },
            ))

        self.ensure_index()
        self._store.upsert(documents)
        logger.info("Stored %d chunk(s) from %s", len(documents), source)
        return len(vectors), all_entities


def _digest(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:12]
