"""
Entity RAG MCP Server.

Exposes entity-aware retrieval, web search and ingestion as MCP tools.

Transport: stdio only (stdout carries the protocol; logs go to stderr and
~/.entity_rag/logs/server.log).

Tools:
- enhanced_vector_rag: retrieval pipeline, returns the RetrievalResult dict
- web_search: {"results", "searchQuery", "totalResults"}; never fails
- store_web_results: {"message", "storedCount", "documentIds"}
- file_upload: {"success", "chunksCreated", "embeddingsGenerated", "entitiesExtracted", "message"}
- ingest_texts: same shape as file_upload, for raw text documents
- process_document: {"success", "chunks", "totalChunks"} or {"success": False, "error"}
"""

import sys
import signal
import asyncio
import argparse
import logging
from typing import List, Dict, Any, Optional, Annotated

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations

from ..common.config import (
    EntityRagConfig,
    IngestConfig,
    ensure_directories,
    load_config,
    log_file_path,
    save_config,
)
from ..common.embedding_service import EmbeddingService
from ..common.errors import TransientIOError
from ..common.vector_store import VectorStoreClient
from ..common.web_search import WebResult, WebSearchClient
from ..ingest.chunker import DocumentChunker, CONTENT_TYPES, STRATEGIES
from ..ingest.uploader import DocumentUploader, UploadResult
from ..ingest.web_store import StoreResult, WebResultStore
from ..retriever.entity_extractor import EntityExtractor, StopWords
from ..retriever.pipeline import RetrievalPipeline, build_pipeline

logger = logging.getLogger("entity_rag.server")

DEFAULT_TIMEOUT_SECONDS = 60.0


class WebSearchResultInput(BaseModel):
    """A web search result passed back by the agent for storage"""
    title: str
    url: str
    snippet: str
    content: Optional[str] = None


class MCPServerApp:
    """
    Main application class for the MCP server.

    All collaborators are built once by main() (or a test) and injected.
    Optional ones may be None; the matching tools then report that the
    collaborator is unavailable.
    """

    def __init__(
        self,
        pipeline: RetrievalPipeline,
        mcp_server_name: str = "entity_rag_mcp_server",
        web_search: Optional[WebSearchClient] = None,
        web_store: Optional[WebResultStore] = None,
        uploader: Optional[DocumentUploader] = None,
        chunker: Optional[DocumentChunker] = None,
        ingest_config: Optional[IngestConfig] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        web_num_results: int = 5,
    ) -> None:
        """
        Initializes the MCPServerApp.

        Args:
            pipeline: Retrieval pipeline behind enhanced_vector_rag
            mcp_server_name: Advertised MCP server name
            web_search: Web search registry for the web_search tool
            web_store: Web result storage for store_web_results
            uploader: Document uploader for file_upload and ingest_texts
            chunker: Chunker for process_document
            ingest_config: Chunking defaults
            timeout_seconds: Deadline for one retrieval
            web_num_results: Default result count for web_search
        """
        self.pipeline = pipeline
        self.web_search = web_search
        self.web_store = web_store
        self.uploader = uploader
        self.chunker = chunker or DocumentChunker()
        self.ingest = ingest_config or IngestConfig()
        self.timeout_seconds = timeout_seconds
        self.mcp = FastMCP(name=mcp_server_name)

        # ---------- MCP Tools: Enhanced Vector RAG ---------- #
        @self.mcp.tool(
            name="enhanced_vector_rag",
            description=(
                "Retrieve relevant context from the knowledge base using entity-enhanced "
                "vector search. Falls back to web search when local results are weak, "
                "and stores what it finds. Returns the assembled context, sources, "
                "entities and the entity search path."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_enhanced_vector_rag(
            query: Annotated[str, Field(description="natural language query")],
            topK: Annotated[int, Field(description="number of results from the initial vector search")] = 10,
            entityDepth: Annotated[int, Field(description="entity search depth; each entity query returns min(5, depth*2) results")] = 2,
            useEntityEnhancement: Annotated[bool, Field(description="run entity-targeted searches")] = True,
        ) -> Dict[str, Any]:
            if not query or not query.strip():
                raise ToolError("query parameter is required.")
            if topK <= 0:
                raise ToolError("topK must be positive.")
            if entityDepth < 0:
                raise ToolError("entityDepth must not be negative.")

            try:
                result = await asyncio.wait_for(
                    self.pipeline.retrieve(
                        query.strip(),
                        top_k=topK,
                        entity_depth=entityDepth,
                        use_entity_enhancement=useEntityEnhancement,
                    ),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                raise ToolError(
                    f"Retrieval timed out after {self.timeout_seconds:g}s for query: {query!r}"
                ) from exc
            return result.to_dict()

        # ---------- MCP Tools: Web Search ---------- #
        @self.mcp.tool(
            name="web_search",
            description="Search the web for current information. Returns an empty list when search is unavailable.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_web_search(
            query: Annotated[str, Field(description="search query")],
            maxResults: Annotated[int, Field(description="maximum number of results")] = web_num_results,
        ) -> Dict[str, Any]:
            results: List[WebResult] = []
            if self.web_search is None:
                logger.info("Web search requested but no provider is configured")
            else:
                try:
                    results = await self.web_search.search(query, maxResults)
                except Exception as e:
                    logger.warning("Web search failed for %r: %s", query, e)

            return {
                "results": [r.to_dict() for r in results],
                "searchQuery": query,
                "totalResults": len(results),
            }

        # ---------- MCP Tools: Store Web Results ---------- #
        @self.mcp.tool(
            name="store_web_results",
            description="Store web search results in the knowledge base when the user asks to keep them.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_store_web_results(
            searchResults: Annotated[List[WebSearchResultInput], Field(description="web search results to store")],
            originalQuery: Annotated[str, Field(description="the query that led to these results")],
            userRequested: Annotated[bool, Field(description="whether the user explicitly asked to store the results")] = True,
        ) -> Dict[str, Any]:
            if not userRequested:
                return StoreResult("Web search results not stored - user did not request storage").to_dict()
            if self.web_store is None:
                return StoreResult("Failed to store web search results: Vector store not available").to_dict()

            results = [WebResult(**r.model_dump()) for r in searchResults]
            stored = await asyncio.to_thread(
                self.web_store.store, results, originalQuery, user_requested=True
            )
            return stored.to_dict()

        # ---------- MCP Tools: File Upload ---------- #
        @self.mcp.tool(
            name="file_upload",
            description="Upload a text, markdown or JSON file to the knowledge base.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_file_upload(
            filePath: Annotated[str, Field(description="path to the file to upload")],
            chunkSize: Annotated[Optional[int], Field(description="chunk size in characters")] = None,
            overlap: Annotated[Optional[int], Field(description="overlap between chunks in characters")] = None,
            contentType: Annotated[str, Field(description="'auto', 'text', 'markdown' or 'json'")] = "auto",
        ) -> Dict[str, Any]:
            if contentType not in ("auto", "text", "markdown", "json"):
                raise ToolError(f"Unsupported contentType: {contentType}")
            if self.uploader is None:
                return UploadResult(False, message="Vector store not available").to_dict()

            result = await asyncio.to_thread(
                self.uploader.upload_file,
                filePath,
                chunk_size=chunkSize or self.ingest.chunk_size,
                overlap=self.ingest.overlap if overlap is None else overlap,
                content_type=contentType,
            )
            return result.to_dict()

        # ---------- MCP Tools: Ingest Texts ---------- #
        @self.mcp.tool(
            name="ingest_texts",
            description="Chunk, embed and store raw text documents in the knowledge base.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_ingest_texts(
            documents: Annotated[List[str], Field(description="plain text documents")],
            chunkSize: Annotated[Optional[int], Field(description="chunk size in characters")] = None,
            overlap: Annotated[Optional[int], Field(description="overlap between chunks in characters")] = None,
        ) -> Dict[str, Any]:
            if not documents:
                raise ToolError("documents must not be empty.")
            if self.uploader is None:
                return UploadResult(False, message="Vector store not available").to_dict()

            result = await asyncio.to_thread(
                self.uploader.ingest_texts,
                documents,
                chunk_size=chunkSize or self.ingest.chunk_size,
                overlap=self.ingest.overlap if overlap is None else overlap,
            )
            return result.to_dict()

        # ---------- MCP Tools: Process Document ---------- #
        @self.mcp.tool(
            name="process_document",
            description="Chunk a document (text, markdown, HTML or JSON) without storing it.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_process_document(
            content: Annotated[str, Field(description="document content")],
            contentType: Annotated[str, Field(description=f"one of {', '.join(CONTENT_TYPES)}")] = "text",
            chunkSize: Annotated[Optional[int], Field(description="chunk size in characters")] = None,
            overlap: Annotated[Optional[int], Field(description="overlap between chunks in characters")] = None,
            strategy: Annotated[str, Field(description=f"one of {', '.join(STRATEGIES)}")] = "recursive",
        ) -> Dict[str, Any]:
            try:
                chunks = await asyncio.to_thread(
                    self.chunker.chunk,
                    content,
                    content_type=contentType,
                    chunk_size=chunkSize or self.ingest.chunk_size,
                    overlap=self.ingest.overlap if overlap is None else overlap,
                    strategy=strategy,
                )
            except ValueError as e:
                return {"success": False, "error": str(e)}

            return {
                "success": True,
                "chunks": [c.to_dict() for c in chunks],
                "totalChunks": len(chunks),
            }

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")




def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Entity RAG MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default="entity_rag_mcp_server",
        help="Advertised MCP server name.",
    )
    parser.add_argument("--qdrant-url", default=None, help="Qdrant server URL.")
    parser.add_argument(
        "--qdrant-path",
        default=None,
        help="Local Qdrant storage path (':memory:' for an in-process store).",
    )
    parser.add_argument(
        "--local",
        action="store_true",
        help="Use the local Qdrant store under ~/.entity_rag/qdrant.",
    )
    parser.add_argument("--index-name", default=None, help="Collection to search and store into.")
    parser.add_argument(
        "--embedding-mode",
        default=None,
        choices=("openai", "femb"),
        help="Embedding backend.",
    )
    parser.add_argument("--embedding-model", default=None, help="Embedding model name.")
    parser.add_argument(
        "--web-search-provider",
        default=None,
        choices=("exa", "mcp", "none"),
        help="Web search provider.",
    )
    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Write the effective configuration to ~/.entity_rag/config.json and exit.",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser.parse_args(argv)


def _apply_args(config: EntityRagConfig, args: argparse.Namespace) -> EntityRagConfig:
    """Apply command line overrides on top of file and env configuration"""
    if args.local:
        config.vector_store.url = ""
        config.vector_store.path = ""
    if args.qdrant_url:
        config.vector_store.url = args.qdrant_url
    if args.qdrant_path:
        config.vector_store.path = args.qdrant_path
    if args.index_name:
        config.vector_store.index_name = args.index_name
    if args.embedding_mode:
        config.embedding.mode = args.embedding_mode
    if args.embedding_model:
        config.embedding.model = args.embedding_model
    if args.web_search_provider:
        config.web_search.provider = args.web_search_provider
    return config


def main(argv: Optional[List[str]] = None) -> None:
    """Console entry point: build collaborators once and serve over stdio."""
    load_dotenv()
    args = _parse_args(argv)
    ensure_directories()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file_path(), delay=True),
        ],
    )

    config = _apply_args(load_config(), args)

    if args.save_config:
        save_config(config)
        logger.info("Saved configuration")
        return

    embedding = EmbeddingService(
        mode=config.embedding.mode,
        model=config.embedding.model,
        api_key=config.embedding.openai_api_key,
    )
    vector_store = VectorStoreClient.from_config(config.vector_store)

    try:
        vector_store.create_index(config.embedding.dimension)
    except TransientIOError as e:
        logger.warning("Index setup failed, continuing: %s", e)

    web_search = WebSearchClient.from_config(config.web_search)
    extractor = EntityExtractor(StopWords(config.entities.stop_words))

    pipeline = build_pipeline(config, embedding, vector_store, web_search, extractor=extractor)
    uploader = DocumentUploader(
        embedding,
        vector_store,
        extractor=extractor,
        dimension=config.embedding.dimension,
        max_entities=config.entities.max_ingest_entities,
    )

    app = MCPServerApp(
        pipeline,
        mcp_server_name=args.server_name,
        web_search=web_search,
        web_store=WebResultStore(embedding, vector_store),
        uploader=uploader,
        ingest_config=config.ingest,
        timeout_seconds=config.retriever.timeout_seconds,
        web_num_results=config.web_search.num_results,
    )

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    logger.info("Starting %s (index=%s, web search=%s)",
                args.server_name, vector_store.index_name, config.web_search.provider)
    app.run()


if __name__ == "__main__":
    main()
