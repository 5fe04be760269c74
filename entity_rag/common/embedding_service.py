"""
Embedding Service

Turns texts into fixed-dimension vectors.
Uses the OpenAI embeddings API by default, or fastembed for on-device embedding.
"""

import logging
from typing import List, Optional
import numpy as np
from openai import OpenAI

from .errors import ConfigurationError, TransientIOError

logger = logging.getLogger("entity_rag.common.embedding_service")


class EmbeddingService:
    """
    Embedding provider for the retrieval pipeline and ingestion.

    Constructed once at process start and passed to every component
    that needs embeddings.

    Modes:
    - "openai": OpenAI embeddings API (text-embedding-3-small, 1536 dims)
    - "femb": fastembed (on-device, no external API calls)
    """

    def __init__(
        self,
        mode: str = "openai",
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        client=None,
    ):
        """
        Initialize embedding service.

        Args:
            mode: Embedding backend ("openai" or "femb")
            model: Model name for the backend
            api_key: OpenAI API key (falls back to OPENAI_API_KEY)
            client: Pre-built backend client (OpenAI client or fastembed model)
        """
        self._mode = mode
        self._model = model
        self._client = client

        if self._client is None:
            self._client = self._init_client(mode, model, api_key)
        logger.info("Initialized with mode=%s, model=%s", mode, model)

    def _init_client(self, mode: str, model: str, api_key: Optional[str]):
        """Build the underlying backend client"""
        if mode == "openai":
            return OpenAI(api_key=api_key or None)

        if mode == "femb":
            try:
                from fastembed import TextEmbedding
            except ImportError as e:
                raise ConfigurationError(
                    "fastembed is not installed. Install with: pip install 'entity-rag[local]'"
                ) from e
            return TextEmbedding(model_name=model)

        raise ConfigurationError(f"Unsupported embedding mode: {mode}")

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def model(self) -> str:
        return self._model

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors, same order as texts
        """
        if not texts:
            return []

        try:
            if self._mode == "openai":
                response = self._client.embeddings.create(model=self._model, input=texts)
                data = sorted(response.data, key=lambda d: d.index)
                embeddings = [d.embedding for d in data]
            else:
                embeddings = list(self._client.embed(texts))
        except Exception as e:
            raise TransientIOError(f"Embedding request failed: {e}") from e

        # Ensure consistent return type
        return [e.tolist() if isinstance(e, np.ndarray) else list(e) for e in embeddings]

    def embed_single(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: String to embed

        Returns:
            Embedding vector
        """
        if not text:
            raise ValueError("Cannot embed empty text")

        embeddings = self.embed([text])
        return embeddings[0]

