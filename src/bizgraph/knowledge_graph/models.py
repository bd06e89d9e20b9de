from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def _ts(v: datetime | None) -> str | None:
    return v.isoformat() if v is not None else None


@dataclass(slots=True)
class KGNode:
    """A typed entity derived from one source-table row.

    `(source_table, source_id)` is the natural key; `id` is the generated
    graph key and survives re-extraction.
    """

    id: str
    type: str
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    importance_score: float = 0.5
    source_table: str | None = None
    source_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self, *, include_embedding: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "properties": self.properties,
            "importance_score": self.importance_score,
            "source_table": self.source_table,
            "source_id": self.source_id,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }
        if include_embedding:
            out["embedding"] = self.embedding
        return out


@dataclass(slots=True)
class KGEdge:
    """A directed, typed relationship between two nodes."""

    id: str
    source_id: str
    target_id: str
    relationship_type: str
    weight: float = 1.0
    confidence: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    def other_end(self, node_id: str) -> str:
        return self.target_id if self.source_id == node_id else self.source_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "relationship_type": self.relationship_type,
            "weight": self.weight,
            "confidence": self.confidence,
            "properties": self.properties,
            "created_at": _ts(self.created_at),
        }


# --- extraction configuration ---


@dataclass(frozen=True, slots=True)
class NodeExtractionConfig:
    source_table: str
    node_type: str
    name_column: str
    id_column: str = "id"
    property_columns: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ForeignKey:
    """`source_column` holds the FK value; `target_column` is the row's own key."""

    table: str
    source_column: str
    target_column: str = "id"


@dataclass(frozen=True, slots=True)
class EdgeExtractionConfig:
    name: str
    relationship_type: str
    source_node_type: str
    target_node_type: str
    foreign_key: ForeignKey | None = None
    weight: float = 1.0
    confidence: float = 1.0


@dataclass(frozen=True, slots=True)
class ExtractionConfig:
    nodes: tuple[NodeExtractionConfig, ...] = ()
    edges: tuple[EdgeExtractionConfig, ...] = ()

    def id_column_for(self, source_table: str) -> str:
        for cfg in self.nodes:
            if cfg.source_table == source_table:
                return cfg.id_column
        return "id"


# --- traversal / retrieval results (request scoped, never persisted) ---


@dataclass(slots=True)
class TraversalPath:
    nodes: list[KGNode]
    edges: list[KGEdge]
    total_weight: float = 0.0

    @property
    def length(self) -> int:
        return len(self.edges)

    def extend(self, edge: KGEdge, node: KGNode) -> "TraversalPath":
        return TraversalPath(
            nodes=[*self.nodes, node],
            edges=[*self.edges, edge],
            total_weight=self.total_weight + edge.weight,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "total_weight": self.total_weight,
            "length": self.length,
        }


@dataclass(slots=True)
class TraversalResult:
    start_node: KGNode
    paths: list[TraversalPath]
    related_nodes: list[KGNode]
    total_hops: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_node": self.start_node.to_dict(),
            "paths": [p.to_dict() for p in self.paths],
            "related_nodes": [n.to_dict() for n in self.related_nodes],
            "total_hops": self.total_hops,
        }


@dataclass(slots=True)
class Neighborhood:
    nodes: list[KGNode]
    edges: list[KGEdge]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


@dataclass(slots=True)
class GraphStats:
    total_nodes: int = 0
    total_edges: int = 0
    nodes_by_type: dict[str, int] = field(default_factory=dict)
    edges_by_type: dict[str, int] = field(default_factory=dict)
    avg_connections: float = 0.0
    # skip counters from the last build (continue-on-error policy)
    skipped: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "total_edges": self.total_edges,
            "nodes_by_type": dict(self.nodes_by_type),
            "edges_by_type": dict(self.edges_by_type),
            "avg_connections": self.avg_connections,
            "skipped": dict(self.skipped),
        }


@dataclass(slots=True)
class GraphExpansionResult:
    original_query: str
    matched_nodes: list[KGNode] = field(default_factory=list)
    expanded_nodes: list[KGNode] = field(default_factory=list)
    paths: list[TraversalPath] = field(default_factory=list)
    context: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_query": self.original_query,
            "matched_nodes": [n.to_dict() for n in self.matched_nodes],
            "expanded_nodes": [n.to_dict() for n in self.expanded_nodes],
            "paths": [p.to_dict() for p in self.paths],
            "context": self.context,
        }


@dataclass(slots=True)
class FullContext:
    graph_context: GraphExpansionResult
    source_data: list[dict[str, Any]]
    combined_context: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "graph_context": self.graph_context.to_dict(),
            "source_data": self.source_data,
            "combined_context": self.combined_context,
        }


# --- entity extraction collaborator ---


@dataclass(frozen=True, slots=True)
class EntityRef:
    name: str
    type: str


@dataclass(frozen=True, slots=True)
class ResolvedEntity:
    entity: EntityRef
    confidence: float
    matched_alias: str | None = None
    match_type: str = "exact"
