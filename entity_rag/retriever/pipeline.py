"""
Retrieval Pipeline

Orchestrates entity-aware retrieval for one query:
embed → vector query → sufficiency gate → (web search → store → re-query)
→ entity extraction → entity expansion → merge → dedupe → rerank → assemble.

The public entry point never raises; failures are encoded in the result.
"""

import asyncio
import logging
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field

from ..common.config import EntityRagConfig, RetrieverConfig
from ..common.embedding_service import EmbeddingService
from ..common.errors import ConfigurationError, CollaboratorUnavailable
from ..common.vector_store import Candidate, VectorStoreClient
from ..common.web_search import WebResult, WebSearchClient
from ..ingest.web_store import WebResultStore
from .context_assembler import ContextAssembler
from .entity_extractor import EntityExtractor, StopWords
from .entity_search import EntityExpansionSearch
from .reranker import EntityOverlapReranker, dedupe
from .sufficiency import SufficiencyGate

logger = logging.getLogger("entity_rag.retriever.pipeline")

ENTITY_PATH_PREVIEW = 100


@dataclass(frozen=True)
class RetrievalOptions:
    """Parameters of a single retrieval run"""
    query: str
    top_k: int = 10
    entity_depth: int = 2
    use_entity_enhancement: bool = True
    max_results: int = 15
    max_context_length: int = 6000


@dataclass
class RetrievalResult:
    """Pipeline output"""
    relevant_context: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    entity_path: List[Dict[str, Any]] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    web_search_used: bool = False
    web_search_results: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def empty(cls, query: str, web_results: Optional[List[WebResult]] = None) -> "RetrievalResult":
        """Result for a query that matched nothing"""
        return cls(
            relevant_context=(
                f'No relevant information found for the query: "{query}". '
                "The knowledge base may be empty or the query doesn't match any stored documents."
            ),
            web_search_used=bool(web_results),
            web_search_results=[r.to_dict() for r in web_results] if web_results else None,
        )

    @classmethod
    def error(cls, query: str, message: str) -> "RetrievalResult":
        """Degraded result for a failed retrieval"""
        return cls(
            relevant_context=(
                f'Error retrieving information for query: "{query}". '
                "Please check if the vector store is properly configured and contains data."
            ),
            sources=[{
                "id": "error",
                "score": 0,
                "document": "Error occurred during retrieval",
                "metadata": {"error": message},
            }],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "relevantContext": self.relevant_context,
            "sources": self.sources,
            "entityPath": self.entity_path,
            "entities": self.entities,
            "webSearchUsed": self.web_search_used,
        }
        if self.web_search_used:
            data["webSearchResults"] = self.web_search_results or []
        return data


class RetrievalPipeline:
    """
    Entity-aware retrieval over a vector store.

    Every collaborator is built once by the caller and injected here.
    web_search and web_store are optional; without them retrieval is
    local only.
    """

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService],
        vector_store: Optional[VectorStoreClient],
        extractor: Optional[EntityExtractor] = None,
        gate: Optional[SufficiencyGate] = None,
        expansion: Optional[EntityExpansionSearch] = None,
        reranker: Optional[EntityOverlapReranker] = None,
        assembler: Optional[ContextAssembler] = None,
        web_search: Optional[WebSearchClient] = None,
        web_store: Optional[WebResultStore] = None,
        config: Optional[RetrieverConfig] = None,
        web_num_results: int = 5,
    ):
        """
        Initialize retrieval pipeline.

        Args:
            embedding_service: Query/entity embedding
            vector_store: Store to search (None is reported as a configuration error)
            extractor: Entity extractor
            gate: Sufficiency gate deciding on web search
            expansion: Entity expansion search (built from the store if omitted)
            reranker: Entity overlap reranker
            assembler: Context assembler
            web_search: Web search registry
            web_store: Persists web results before the re-query
            config: Retriever tuning (defaults for the request options)
            web_num_results: Results requested from web search
        """
        self._embedding = embedding_service
        self._store = vector_store
        self._config = config or RetrieverConfig()
        self._extractor = extractor or EntityExtractor()
        self._gate = gate or SufficiencyGate(self._config.sufficiency_threshold)
        self._expansion = expansion
        if self._expansion is None and vector_store is not None and embedding_service is not None:
            self._expansion = EntityExpansionSearch(
                vector_store,
                embedding_service,
                stop_words=self._extractor.stop_words,
                max_entities=self._config.max_expansion_entities,
                max_results_per_entity=self._config.max_results_per_entity,
                score_threshold=self._config.entity_score_threshold,
                dampening=self._config.entity_dampening,
            )
        self._reranker = reranker or EntityOverlapReranker(self._config.entity_boost)
        self._assembler = assembler or ContextAssembler(
            min_text_length=self._config.min_text_length,
            truncation_slack=self._config.truncation_slack,
        )
        self._web_search = web_search
        self._web_store = web_store
        self._web_num_results = web_num_results

    @property
    def config(self) -> RetrieverConfig:
        return self._config

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        entity_depth: Optional[int] = None,
        use_entity_enhancement: Optional[bool] = None,
    ) -> RetrievalResult:
        """
        Retrieve context for a query.

        Args:
            query: Natural language query
            top_k: Initial search size (default from config)
            entity_depth: Entity search depth (default from config)
            use_entity_enhancement: Run entity expansion (default from config)

        Returns:
            RetrievalResult; never raises
        """
        options = RetrievalOptions(
            query=query,
            top_k=self._config.top_k if top_k is None else top_k,
            entity_depth=self._config.entity_depth if entity_depth is None else entity_depth,
            use_entity_enhancement=(
                self._config.use_entity_enhancement
                if use_entity_enhancement is None else use_entity_enhancement
            ),
            max_results=self._config.max_results,
            max_context_length=self._config.max_context_length,
        )
        return await self.retrieve_with_options(options)

    async def retrieve_with_options(self, options: RetrievalOptions) -> RetrievalResult:
        """Run the pipeline with explicit options; never raises"""
        try:
            return await self._run(options)
        except Exception as e:
            logger.error("Retrieval failed for %r: %s", options.query, e, exc_info=True)
            return RetrievalResult.error(options.query, str(e))

    async def _run(self, options: RetrievalOptions) -> RetrievalResult:
        if self._store is None:
            raise ConfigurationError("Vector store is not configured")
        if self._embedding is None:
            raise ConfigurationError("Embedding service is not configured")

        query_vector = await asyncio.to_thread(self._embedding.embed_single, options.query)
        initial = await asyncio.to_thread(self._store.query, query_vector, options.top_k)
        logger.debug("Initial search returned %d candidate(s)", len(initial))

        web_results = []
        if not self._gate.is_sufficient(initial):
            logger.info("Insufficient local results for %r, trying web search", options.query)
            web_results, requeried = await self._augment_from_web(options, query_vector)
            if requeried:
                initial = requeried

        if not initial:
            return RetrievalResult.empty(options.query, web_results)

        entities = self._extractor.extract_for_query(options.query, initial)

        expanded = []
        if options.use_entity_enhancement and entities and self._expansion is not None:
            expanded = await self._expansion.expand(entities, initial, options.entity_depth)

        merged = dedupe(initial + expanded)
        reranked = self._reranker.rerank(merged, entities)

        context, sources = self._assembler.assemble(
            reranked,
            entities,
            max_results=options.max_results,
            max_context_length=options.max_context_length,
        )

        return RetrievalResult(
            relevant_context=context or f'No text content found for query: "{options.query}"',
            sources=sources,
            entity_path=[self._path_entry(c) for c in expanded],
            entities=entities,
            web_search_used=bool(web_results),
            web_search_results=[r.to_dict() for r in web_results] if web_results else None,
        )

    async def _augment_from_web(self, options: RetrievalOptions, query_vector: List[float]):
        """
        Search the web, store the results and re-query the store.

        Returns:
            (web results, re-queried candidates); both empty when web
            search is unavailable or finds nothing
        """
        if self._web_search is None:
            logger.info("Web search is not configured, continuing with local results")
            return [], []

        try:
            web_results = await self._web_search.search(options.query, self._web_num_results)
        except CollaboratorUnavailable as e:
            logger.warning("Web search unavailable, continuing with local results: %s", e)
            return [], []
        except Exception as e:
            logger.warning("Web search failed, continuing with local results: %s", e)
            return [], []

        if not web_results:
            return [], []

        if self._web_store is None:
            return web_results, []

        try:
            stored = await asyncio.to_thread(self._web_store.store_automatic, web_results, options.query)
            logger.info("Stored %d web search result(s)", len(stored))
            requeried = await asyncio.to_thread(
                self._store.query, query_vector, options.top_k + self._config.requery_extra
            )
        except Exception as e:
            logger.warning("Failed to store web search results: %s", e)
            return web_results, []

        return web_results, requeried

    @staticmethod
    def _path_entry(candidate: Candidate) -> Dict[str, Any]:
        return {
            "nodeId": candidate.id,
            "relationship": "entity_search",
            "entity": candidate.metadata.get("entity"),
            "score": candidate.score,
            "text": candidate.text[:ENTITY_PATH_PREVIEW] + "...",
        }


def build_pipeline(
    config: EntityRagConfig,
    embedding_service: EmbeddingService,
    vector_store: Optional[VectorStoreClient],
    web_search: Optional[WebSearchClient] = None,
    extractor: Optional[EntityExtractor] = None,
) -> RetrievalPipeline:
    """Wire a pipeline from config around already-built collaborators"""
    if extractor is None:
        extractor = EntityExtractor(StopWords(config.entities.stop_words))

    web_store = None
    if web_search is not None and vector_store is not None:
        web_store = WebResultStore(embedding_service, vector_store)

    return RetrievalPipeline(
        embedding_service=embedding_service,
        vector_store=vector_store,
        extractor=extractor,
        web_search=web_search,
        web_store=web_store,
        config=config.retriever,
        web_num_results=config.web_search.num_results,
    )
