"""
Configuration Management for Entity RAG

Loads configuration from ~/.entity_rag/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import List
from dataclasses import dataclass, field

logger = logging.getLogger("entity_rag.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".entity_rag"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
STORAGE_DIR = CONFIG_DIR / "qdrant"

DEFAULT_EXA_ENDPOINT = "https://api.exa.ai/search"
DEFAULT_MCP_ARGS = ["-y", "exa-mcp-server"]


@dataclass
class EmbeddingConfig:
    """Embedding model configuration"""
    mode: str = "openai"  # "openai" or "femb" (fastembed, on-device)
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    openai_api_key: str = ""


@dataclass
class VectorStoreConfig:
    """Qdrant configuration"""
    url: str = "http://localhost:6333"
    path: str = ""  # local on-disk storage; takes precedence over url
    api_key: str = ""
    index_name: str = "embeddings"


@dataclass
class WebSearchConfig:
    """Web search provider configuration"""
    provider: str = "exa"  # "exa", "mcp" or "none"
    exa_api_key: str = ""
    exa_endpoint: str = DEFAULT_EXA_ENDPOINT
    mcp_command: str = "npx"
    mcp_args: List[str] = field(default_factory=lambda: list(DEFAULT_MCP_ARGS))
    mcp_tool_name: str = "web_search_exa"
    num_results: int = 5
    timeout: float = 30.0


@dataclass
class RetrieverConfig:
    """Retrieval pipeline tuning"""
    top_k: int = 10
    entity_depth: int = 2
    use_entity_enhancement: bool = True
    max_results: int = 15
    max_context_length: int = 6000
    sufficiency_threshold: float = 0.7
    entity_score_threshold: float = 0.7
    entity_dampening: float = 0.7
    entity_boost: float = 0.1
    max_expansion_entities: int = 3
    max_results_per_entity: int = 5
    min_text_length: int = 50
    truncation_slack: int = 200
    requery_extra: int = 5
    timeout_seconds: float = 60.0


@dataclass
class EntityConfig:
    """Entity extraction configuration"""
    stop_words: List[str] = field(default_factory=list)  # empty = built-in list
    max_ingest_entities: int = 10


@dataclass
class IngestConfig:
    """Document chunking defaults"""
    chunk_size: int = 512
    overlap: int = 50


@dataclass
class EntityRagConfig:
    """Main Entity RAG configuration"""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    entities: EntityConfig = field(default_factory=EntityConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        mode=embedding_data.get("mode", "openai"),
        model=embedding_data.get("model", "text-embedding-3-small"),
        dimension=embedding_data.get("dimension", 1536),
        openai_api_key=embedding_data.get("openai_api_key", ""),
    )


def _parse_vector_store_config(data: dict) -> VectorStoreConfig:
    """Parse vector_store section from config dict"""
    store_data = data.get("vector_store", {})
    return VectorStoreConfig(
        url=store_data.get("url", "http://localhost:6333"),
        path=store_data.get("path", ""),
        api_key=store_data.get("api_key", ""),
        index_name=store_data.get("index_name", "embeddings"),
    )


def _parse_web_search_config(data: dict) -> WebSearchConfig:
    """Parse web_search section from config dict"""
    web_data = data.get("web_search", {})
    return WebSearchConfig(
        provider=web_data.get("provider", "exa"),
        exa_api_key=web_data.get("exa_api_key", ""),
        exa_endpoint=web_data.get("exa_endpoint", DEFAULT_EXA_ENDPOINT),
        mcp_command=web_data.get("mcp_command", "npx"),
        mcp_args=list(web_data.get("mcp_args", DEFAULT_MCP_ARGS)),
        mcp_tool_name=web_data.get("mcp_tool_name", "web_search_exa"),
        num_results=web_data.get("num_results", 5),
        timeout=web_data.get("timeout", 30.0),
    )


def _parse_retriever_config(data: dict) -> RetrieverConfig:
    """Parse retriever section from config dict.

    Unknown keys are ignored so that older config files keep loading.
    """
    retriever_data = data.get("retriever", {})
    defaults = RetrieverConfig()
    return RetrieverConfig(**{
        name: retriever_data.get(name, getattr(defaults, name))
        for name in defaults.__dataclass_fields__
    })


def _parse_entity_config(data: dict) -> EntityConfig:
    """Parse entities section from config dict"""
    entity_data = data.get("entities", {})
    return EntityConfig(
        stop_words=list(entity_data.get("stop_words", [])),
        max_ingest_entities=entity_data.get("max_ingest_entities", 10),
    )


def _parse_ingest_config(data: dict) -> IngestConfig:
    """Parse ingest section from config dict"""
    ingest_data = data.get("ingest", {})
    return IngestConfig(
        chunk_size=ingest_data.get("chunk_size", 512),
        overlap=ingest_data.get("overlap", 50),
    )


def load_config() -> EntityRagConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.entity_rag/config.json)
    3. Default values
    """
    config = EntityRagConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.embedding = _parse_embedding_config(data)
            config.vector_store = _parse_vector_store_config(data)
            config.web_search = _parse_web_search_config(data)
            config.retriever = _parse_retriever_config(data)
            config.entities = _parse_entity_config(data)
            config.ingest = _parse_ingest_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # Environment variable overrides
    if os.getenv("EMBEDDING_MODE"):
        config.embedding.mode = os.getenv("EMBEDDING_MODE")
    if os.getenv("EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("EMBEDDING_MODEL")
    if os.getenv("EMBEDDING_DIMENSION"):
        config.embedding.dimension = int(os.getenv("EMBEDDING_DIMENSION"))

    if os.getenv("QDRANT_URL"):
        config.vector_store.url = os.getenv("QDRANT_URL")
    if os.getenv("QDRANT_PATH"):
        config.vector_store.path = os.getenv("QDRANT_PATH")
    if os.getenv("ENTITY_RAG_INDEX"):
        config.vector_store.index_name = os.getenv("ENTITY_RAG_INDEX")

    if os.getenv("WEB_SEARCH_PROVIDER"):
        config.web_search.provider = os.getenv("WEB_SEARCH_PROVIDER")
    if os.getenv("ENTITY_RAG_TOPK"):
        config.retriever.top_k = int(os.getenv("ENTITY_RAG_TOPK"))

    # Secret env var overrides (tracked so save_config never persists them)
    _env_secret_map = {
        "OPENAI_API_KEY": (config.embedding, "openai_api_key"),
        "QDRANT_API_KEY": (config.vector_store, "api_key"),
        "EXA_API_KEY": (config.web_search, "exa_api_key"),
    }
    for env_var, (section, attr) in _env_secret_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(section, attr, val)
            config._env_sourced_keys.add(env_var)

    return config


def save_config(config: EntityRagConfig) -> None:
    """Save configuration to file.

    API keys that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    data = {
        "embedding": {
            "mode": config.embedding.mode,
            "model": config.embedding.model,
            "dimension": config.embedding.dimension,
            "openai_api_key": "" if "OPENAI_API_KEY" in env_sourced else config.embedding.openai_api_key,
        },
        "vector_store": {
            "url": config.vector_store.url,
            "path": config.vector_store.path,
            "api_key": "" if "QDRANT_API_KEY" in env_sourced else config.vector_store.api_key,
            "index_name": config.vector_store.index_name,
        },
        "web_search": {
            "provider": config.web_search.provider,
            "exa_api_key": "" if "EXA_API_KEY" in env_sourced else config.web_search.exa_api_key,
            "exa_endpoint": config.web_search.exa_endpoint,
            "mcp_command": config.web_search.mcp_command,
            "mcp_args": config.web_search.mcp_args,
            "mcp_tool_name": config.web_search.mcp_tool_name,
            "num_results": config.web_search.num_results,
            "timeout": config.web_search.timeout,
        },
        "retriever": {
            name: getattr(config.retriever, name)
            for name in config.retriever.__dataclass_fields__
        },
        "entities": {
            "stop_words": config.entities.stop_words,
            "max_ingest_entities": config.entities.max_ingest_entities,
        },
        "ingest": {
            "chunk_size": config.ingest.chunk_size,
            "overlap": config.ingest.overlap,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def log_file_path(name: str = "server.log") -> Path:
    """Path of a log file under the logs directory"""
    return LOGS_DIR / name


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    STORAGE_DIR.mkdir(parents=True, exist_ok=True)
