"""
Document Chunker

Splits documents into overlapping chunks for embedding.
Built on langchain-text-splitters.
"""

import json
import logging
from typing import List, Dict, Any
from dataclasses import dataclass, field

from langchain_text_splitters import (
    CharacterTextSplitter,
    Language,
    MarkdownHeaderTextSplitter,
    RecursiveCharacterTextSplitter,
    RecursiveJsonSplitter,
)

logger = logging.getLogger("entity_rag.ingest.chunker")

CONTENT_TYPES = ("text", "markdown", "html", "json")
STRATEGIES = ("recursive", "character", "markdown", "html", "json", "latex")

MARKDOWN_HEADERS = [("#", "h1"), ("##", "h2"), ("###", "h3")]

# Separator-aware variants of the recursive splitter
_LANGUAGE_FOR = {
    "markdown": Language.MARKDOWN,
    "html": Language.HTML,
    "latex": Language.LATEX,
}

# Extension -> content type, for content_type="auto"
_EXTENSION_TYPES = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".json": "json",
}


@dataclass
class Chunk:
    """A chunk of a document"""
    text: str
    index: int
    start_offset: int = -1  # -1 when the chunk is not a verbatim slice
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "metadata": {**self.metadata, "index": self.index, "startOffset": self.start_offset},
        }


def detect_content_type(file_name: str) -> str:
    """Content type from a file extension (text if unknown)"""
    lower = file_name.lower()
    for extension, content_type in _EXTENSION_TYPES.items():
        if lower.endswith(extension):
            return content_type
    return "text"


class DocumentChunker:
    """
    Chunks text, markdown, HTML or JSON content.

    Strategies:
    - recursive: paragraph → line → word splitting (language-aware for
      markdown and HTML content)
    - character: split on newlines only
    - markdown: split on headers first, then recursively by size
    - html / latex: recursive splitting on that language's separators
    - json: structure-preserving splitting of a JSON document
    """

    def chunk(
        self,
        content: str,
        content_type: str = "text",
        chunk_size: int = 512,
        overlap: int = 50,
        strategy: str = "recursive",
    ) -> List[Chunk]:
        """
        Split content into chunks.

        Args:
            content: Document content
            content_type: "text", "markdown", "html" or "json"
            chunk_size: Max chunk size in characters
            overlap: Overlap between consecutive chunks in characters
            strategy: Chunking strategy (see class docstring)

        Returns:
            Chunks in document order

        Raises:
            ValueError: Unknown content type/strategy, bad sizes, or
                invalid JSON for the json strategy
        """
        if content_type not in CONTENT_TYPES:
            raise ValueError(f"Unsupported content type: {content_type}")
        if strategy not in STRATEGIES:
            raise ValueError(f"Unsupported chunking strategy: {strategy}")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")

        if not content or not content.strip():
            return []

        if strategy == "json":
            texts = self._split_json(content, chunk_size)
            metadata = [{} for _ in texts]
        elif strategy == "markdown":
            texts, metadata = self._split_markdown(content, chunk_size, overlap)
        else:
            splitter = self._text_splitter(content_type, strategy, chunk_size, overlap)
            texts = splitter.split_text(content)
            metadata = [{} for _ in texts]

        chunks = []
        cursor = 0
        for index, (text, extra) in enumerate(zip(texts, metadata)):
            if not text.strip():
                continue
            offset = content.find(text, cursor)
            if offset >= 0:
                cursor = offset + 1
            chunks.append(Chunk(
                text=text,
                index=len(chunks),
                start_offset=offset,
                metadata={**extra, "contentType": content_type, "strategy": strategy},
            ))

        logger.debug("Chunked %d chars into %d chunk(s) (%s/%s)",
                     len(content), len(chunks), content_type, strategy)
        return chunks

    def _text_splitter(self, content_type: str, strategy: str, chunk_size: int, overlap: int):
        if strategy == "character":
            return CharacterTextSplitter(separator="\n", chunk_size=chunk_size, chunk_overlap=overlap)

        language = _LANGUAGE_FOR.get(strategy)
        if strategy == "recursive":
            language = _LANGUAGE_FOR.get(content_type)

        if language is not None:
            return RecursiveCharacterTextSplitter.from_language(
                language, chunk_size=chunk_size, chunk_overlap=overlap,
            )
        return RecursiveCharacterTextSplitter(chunk_size=chunk_size, chunk_overlap=overlap)

    def _split_markdown(self, content: str, chunk_size: int, overlap: int):
        header_splitter = MarkdownHeaderTextSplitter(MARKDOWN_HEADERS, strip_headers=False)
        sections = header_splitter.split_text(content)
        size_splitter = RecursiveCharacterTextSplitter.from_language(
            Language.MARKDOWN, chunk_size=chunk_size, chunk_overlap=overlap,
        )
        docs = size_splitter.split_documents(sections)
        return [d.page_content for d in docs], [dict(d.metadata) for d in docs]

    def _split_json(self, content: str, chunk_size: int) -> List[str]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON content: {e}") from e

        if not isinstance(data, dict):
            data = {"items": data}

        splitter = RecursiveJsonSplitter(max_chunk_size=chunk_size)
        return splitter.split_text(json_data=data, convert_lists=True)
