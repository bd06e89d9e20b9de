"""Knowledge graph subsystem.

This module provides:
- A declarative pipeline that turns business tables into typed nodes and FK edges
- A graph store abstraction + Postgres (asyncpg/pgvector) and in-memory implementations
- A BFS traversal engine (multi-hop expansion, shortest path, neighborhoods)
- GraphRAG-lite query expansion for chat retrieval context
"""

from .config import default_extraction_config
from .entities import AliasEntityResolver, EntityExtractor
from .errors import (
    ConfigurationError,
    EmbeddingProviderError,
    KnowledgeGraphError,
    NodeNotFoundError,
    PersistenceError,
    SourceQueryError,
    TraversalCancelled,
)
from .graphrag import GraphRAGExpander, build_context_from_graph
from .matcher import EntityMatcher
from .models import (
    EdgeExtractionConfig,
    ExtractionConfig,
    ForeignKey,
    GraphExpansionResult,
    GraphStats,
    KGEdge,
    KGNode,
    NodeExtractionConfig,
    TraversalPath,
    TraversalResult,
)
from .pipeline import KnowledgeGraphPipeline
from .store import GraphStore, SourceTables
from .traversal import GraphTraversal

__all__ = [
    "AliasEntityResolver",
    "ConfigurationError",
    "EdgeExtractionConfig",
    "EmbeddingProviderError",
    "EntityExtractor",
    "EntityMatcher",
    "ExtractionConfig",
    "ForeignKey",
    "GraphExpansionResult",
    "GraphRAGExpander",
    "GraphStats",
    "GraphStore",
    "GraphTraversal",
    "KGEdge",
    "KGNode",
    "KnowledgeGraphError",
    "KnowledgeGraphPipeline",
    "NodeExtractionConfig",
    "NodeNotFoundError",
    "PersistenceError",
    "SourceQueryError",
    "SourceTables",
    "TraversalCancelled",
    "TraversalPath",
    "TraversalResult",
    "build_context_from_graph",
    "default_extraction_config",
]
