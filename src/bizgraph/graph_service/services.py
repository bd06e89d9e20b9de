from __future__ import annotations

from dataclasses import dataclass

from bizgraph.knowledge_graph.config import default_extraction_config
from bizgraph.knowledge_graph.embeddings import Embedder
from bizgraph.knowledge_graph.entities import AliasEntityResolver, EntityExtractor
from bizgraph.knowledge_graph.graphrag import GraphRAGExpander
from bizgraph.knowledge_graph.matcher import EntityMatcher
from bizgraph.knowledge_graph.models import ExtractionConfig
from bizgraph.knowledge_graph.pipeline import KnowledgeGraphPipeline
from bizgraph.knowledge_graph.store import GraphStore, SourceTables
from bizgraph.knowledge_graph.traversal import GraphTraversal


@dataclass
class GraphServices:
    """Everything the routes and CLI need, wired once per process."""

    store: GraphStore
    sources: SourceTables
    pipeline: KnowledgeGraphPipeline
    traversal: GraphTraversal
    expander: GraphRAGExpander


def build_services(
    store: GraphStore,
    sources: SourceTables,
    *,
    config: ExtractionConfig | None = None,
    extractor: EntityExtractor | None = None,
    embedder: Embedder | None = None,
    generate_embeddings: bool = False,
    embedding_batch_size: int = 100,
) -> GraphServices:
    config = config or default_extraction_config()
    if extractor is None:
        extractor = AliasEntityResolver.from_node_types(c.node_type for c in config.nodes)

    traversal = GraphTraversal(store)
    matcher = EntityMatcher(traversal, extractor)
    return GraphServices(
        store=store,
        sources=sources,
        pipeline=KnowledgeGraphPipeline(
            store,
            sources,
            config,
            embedder=embedder,
            generate_embeddings=generate_embeddings,
            embedding_batch_size=embedding_batch_size,
        ),
        traversal=traversal,
        expander=GraphRAGExpander(traversal, matcher, sources, config),
    )
