"""Knowledge graph build pipeline.

Four phases, strictly in order: node extraction, FK edge building,
importance scoring, optional embedding annotation. The build is not
transactional. A failed source, row or embedding is logged, counted in
`GraphStats.skipped` and skipped; re-running is safe because nodes upsert
on `(source_table, source_id)` and duplicate edges are ignored. Only a
lost database connection aborts a build.

There is no locking: two concurrent builds can interleave upserts and
score recomputation. Builds are meant to be triggered manually.
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

from .config import default_extraction_config, validate_edge_config, validate_node_config
from .embeddings import Embedder
from .errors import ConfigurationError, EmbeddingProviderError, PersistenceError, SourceQueryError
from .models import EdgeExtractionConfig, ExtractionConfig, GraphStats, KGNode, NodeExtractionConfig
from .store import ROW_ID_KEY, ROW_NAME_KEY, GraphStore, SourceTables

logger = logging.getLogger(__name__)

ISOLATED_NODE_SCORE = 0.1


@dataclass(slots=True)
class NodeExtractor:
    store: GraphStore
    sources: SourceTables
    configs: tuple[NodeExtractionConfig, ...]
    skipped: Counter = field(default_factory=Counter)

    async def extract_nodes(self, config: NodeExtractionConfig) -> int:
        """Upsert one node per row of `config.source_table`; returns rows upserted."""
        validate_node_config(config)
        rows = await self.sources.fetch_node_rows(config)

        inserted = 0
        for row in rows:
            properties = {
                col: row[col] for col in config.property_columns if col in row
            }
            name = row.get(ROW_NAME_KEY)
            try:
                await self.store.upsert_node(
                    node_type=config.node_type,
                    name="" if name is None else str(name),
                    properties=properties,
                    source_table=config.source_table,
                    source_id=str(row[ROW_ID_KEY]),
                )
                inserted += 1
            except PersistenceError as e:
                self.skipped["node_rows"] += 1
                logger.warning(
                    "Skipping row %s from %s: %s", row.get(ROW_ID_KEY), config.source_table, e
                )
        return inserted

    async def extract_all_nodes(self) -> int:
        total = 0
        for config in self.configs:
            try:
                total += await self.extract_nodes(config)
            except (SourceQueryError, ConfigurationError) as e:
                self.skipped["node_sources"] += 1
                logger.error("Failed to extract nodes from %s: %s", config.source_table, e)
        return total


@dataclass(slots=True)
class EdgeBuilder:
    store: GraphStore
    sources: SourceTables
    configs: tuple[EdgeExtractionConfig, ...]
    skipped: Counter = field(default_factory=Counter)

    async def build_edges(self, config: EdgeExtractionConfig) -> int:
        """Create `source -> target` edges from one FK relationship.

        The FK value resolves against `source_node_type` (the referenced,
        "one" side) and the record id against `target_node_type` (the
        referencing, "many" side). Returns the number of new edges.
        """
        validate_edge_config(config)
        fk = config.foreign_key
        assert fk is not None

        source_map = await self.store.node_id_map(config.source_node_type)
        target_map = await self.store.node_id_map(config.target_node_type)
        pairs = await self.sources.fetch_fk_pairs(fk)

        created = 0
        for fk_value, record_id in pairs:
            source_node = source_map.get(str(fk_value))
            target_node = target_map.get(str(record_id))
            if source_node is None or target_node is None:
                continue
            try:
                if await self.store.insert_edge(
                    source_id=source_node,
                    target_id=target_node,
                    relationship_type=config.relationship_type,
                    weight=config.weight,
                    confidence=config.confidence,
                ):
                    created += 1
            except PersistenceError as e:
                self.skipped["edge_rows"] += 1
                logger.warning("Skipping %s edge %s -> %s: %s", config.name, fk_value, record_id, e)
        return created

    async def build_all_edges(self) -> int:
        total = 0
        for config in self.configs:
            try:
                total += await self.build_edges(config)
            except (SourceQueryError, ConfigurationError, PersistenceError) as e:
                self.skipped["edge_configs"] += 1
                logger.error("Failed to build edges for %s: %s", config.name, e)
        return total


def normalize_degrees(degrees: dict[str, int]) -> dict[str, float]:
    """Degree / max degree; nodes without edges get ISOLATED_NODE_SCORE."""
    max_degree = max(degrees.values(), default=0)
    return {
        node_id: (d / max_degree if d > 0 else ISOLATED_NODE_SCORE)
        for node_id, d in degrees.items()
    }


@dataclass(slots=True)
class ImportanceScorer:
    # Plain degree centrality. Not PageRank.
    store: GraphStore

    async def calculate_importance_scores(self) -> dict[str, float]:
        scores = normalize_degrees(await self.store.degree_counts())
        await self.store.update_importance_scores(scores)
        return scores


def node_embedding_text(node: KGNode) -> str:
    return f"{node.type}: {node.name}. {json.dumps(node.properties, ensure_ascii=False, default=str)}"


@dataclass(slots=True)
class EmbeddingAnnotator:
    store: GraphStore
    embedder: Embedder
    batch_size: int = 100
    skipped: Counter = field(default_factory=Counter)

    async def generate_node_embeddings(self) -> int:
        try:
            nodes = await self.store.nodes_missing_embedding(self.batch_size)
        except PersistenceError as e:
            self.skipped["embedding_batches"] += 1
            logger.error("Failed to select nodes for embedding: %s", e)
            return 0
        done = 0
        for node in nodes:
            try:
                vector = await self.embedder.embed(node_embedding_text(node))
                await self.store.set_embedding(node.id, vector)
                done += 1
            except (EmbeddingProviderError, PersistenceError) as e:
                self.skipped["embeddings"] += 1
                logger.warning("Failed to generate embedding for node %s: %s", node.id, e)
        return done


class KnowledgeGraphPipeline:
    def __init__(
        self,
        store: GraphStore,
        sources: SourceTables,
        config: ExtractionConfig | None = None,
        *,
        embedder: Embedder | None = None,
        generate_embeddings: bool = False,
        embedding_batch_size: int = 100,
    ):
        if generate_embeddings and embedder is None:
            raise ConfigurationError("generate_embeddings requires an embedder")
        self.store = store
        self.sources = sources
        self.config = config or default_extraction_config()
        self.generate_embeddings = generate_embeddings
        self._skipped: Counter = Counter()

        self.nodes = NodeExtractor(store, sources, self.config.nodes, self._skipped)
        self.edges = EdgeBuilder(store, sources, self.config.edges, self._skipped)
        self.scorer = ImportanceScorer(store)
        self.annotator = (
            EmbeddingAnnotator(store, embedder, embedding_batch_size, self._skipped)
            if embedder is not None
            else None
        )

    async def build(self) -> GraphStats:
        self._skipped.clear()
        t0 = time.perf_counter()
        logger.info("Starting knowledge graph build")

        logger.info("Phase 1: extracting nodes")
        node_count = await self.extract_all_nodes()
        logger.info("  extracted %d nodes", node_count)

        logger.info("Phase 2: building edges")
        edge_count = await self.build_all_edges()
        logger.info("  built %d edges", edge_count)

        logger.info("Phase 3: calculating importance scores")
        try:
            await self.calculate_importance_scores()
        except PersistenceError as e:
            self._skipped["importance"] += 1
            logger.error("Failed to update importance scores: %s", e)

        if self.generate_embeddings:
            logger.info("Phase 4: generating embeddings")
            embedded = await self.generate_node_embeddings()
            logger.info("  embedded %d nodes", embedded)

        stats = await self.get_stats()
        logger.info(
            "Knowledge graph build finished in %.1f ms: %d nodes, %d edges, skipped=%s",
            (time.perf_counter() - t0) * 1000.0,
            stats.total_nodes,
            stats.total_edges,
            stats.skipped,
        )
        return stats

    async def extract_all_nodes(self) -> int:
        return await self.nodes.extract_all_nodes()

    async def extract_nodes(self, config: NodeExtractionConfig) -> int:
        return await self.nodes.extract_nodes(config)

    async def build_all_edges(self) -> int:
        return await self.edges.build_all_edges()

    async def build_edges(self, config: EdgeExtractionConfig) -> int:
        return await self.edges.build_edges(config)

    async def calculate_importance_scores(self) -> dict[str, float]:
        return await self.scorer.calculate_importance_scores()

    async def generate_node_embeddings(self) -> int:
        if self.annotator is None:
            return 0
        return await self.annotator.generate_node_embeddings()

    async def get_stats(self) -> GraphStats:
        stats = await self.store.stats()
        stats.skipped = dict(self._skipped)
        return stats

    async def clear(self) -> None:
        await self.store.clear()
