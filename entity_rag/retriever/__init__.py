"""
Retriever - Entity-Aware Context Retrieval

Retrieves context for a query from the vector store, widening recall with
entity-targeted re-queries and, when local recall is weak, the web.

Key Components:
- EntityExtractor: Token-heuristic entity extraction
- SufficiencyGate: Decides whether web search is needed
- EntityExpansionSearch: Entity-targeted secondary searches
- EntityOverlapReranker: Boosts candidates mentioning the entities
- ContextAssembler: Bounded context string plus sources
- RetrievalPipeline: Orchestrates the stages

Pipeline:
1. Embed the query and search the vector store
2. If no hit scores above 0.7, search the web, store the results, re-query
3. Extract entities from the query and the results
4. Search again for each leading entity
5. Merge, dedupe, rerank by entity overlap
6. Assemble the context under the result/length budget
"""

from .entity_extractor import EntityExtractor, StopWords
from .sufficiency import SufficiencyGate
from .entity_search import EntityExpansionSearch
from .reranker import EntityOverlapReranker, dedupe
from .context_assembler import ContextAssembler
from .pipeline import RetrievalPipeline, RetrievalOptions, RetrievalResult, build_pipeline

__all__ = [
    "EntityExtractor",
    "StopWords",
    "SufficiencyGate",
    "EntityExpansionSearch",
    "EntityOverlapReranker",
    "dedupe",
    "ContextAssembler",
    "RetrievalPipeline",
    "RetrievalOptions",
    "RetrievalResult",
    "build_pipeline",
]
