from __future__ import annotations

import itertools
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import SourceQueryError
from .models import ForeignKey, GraphStats, KGEdge, KGNode, NodeExtractionConfig
from .store import ROW_ID_KEY, ROW_NAME_KEY


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _sort_key(n: KGNode) -> tuple[float, str, str]:
    return (-n.importance_score, n.name, n.id)


@dataclass
class InMemoryGraphStore:
    """Dict-backed GraphStore with the same keys and ordering as Postgres.

    Ids are UUIDs minted from a counter so they sort in creation order.
    Intended for tests and local experiments; not safe across processes.
    """

    nodes: dict[str, KGNode] = field(default_factory=dict)
    edges: dict[str, KGEdge] = field(default_factory=dict)
    _by_source: dict[tuple[str, str], str] = field(default_factory=dict)
    _edge_keys: set[tuple[str, str, str]] = field(default_factory=set)
    _seq: Any = field(default_factory=lambda: itertools.count(1))

    def _new_id(self) -> str:
        return str(uuid.UUID(int=next(self._seq)))

    async def ensure_schema(self) -> None:
        return None

    async def upsert_node(
        self,
        *,
        node_type: str,
        name: str,
        properties: dict[str, Any],
        source_table: str,
        source_id: str,
    ) -> str:
        key = (source_table, source_id)
        now = _now()
        existing = self._by_source.get(key)
        if existing is not None:
            node = self.nodes[existing]
            node.name = name
            node.properties = dict(properties)
            node.updated_at = now
            return node.id
        node = KGNode(
            id=self._new_id(),
            type=node_type,
            name=name,
            properties=dict(properties),
            source_table=source_table,
            source_id=source_id,
            created_at=now,
            updated_at=now,
        )
        self.nodes[node.id] = node
        self._by_source[key] = node.id
        return node.id

    async def insert_edge(
        self,
        *,
        source_id: str,
        target_id: str,
        relationship_type: str,
        weight: float = 1.0,
        confidence: float = 1.0,
        properties: dict[str, Any] | None = None,
    ) -> bool:
        key = (source_id, target_id, relationship_type)
        if key in self._edge_keys:
            return False
        edge = KGEdge(
            id=self._new_id(),
            source_id=source_id,
            target_id=target_id,
            relationship_type=relationship_type,
            weight=float(weight),
            confidence=float(confidence),
            properties=dict(properties or {}),
            created_at=_now(),
        )
        self.edges[edge.id] = edge
        self._edge_keys.add(key)
        return True

    async def update_importance_scores(self, scores: dict[str, float]) -> None:
        for node_id, score in scores.items():
            if node_id in self.nodes:
                self.nodes[node_id].importance_score = float(score)

    async def set_embedding(self, node_id: str, embedding: list[float]) -> None:
        if node_id in self.nodes:
            self.nodes[node_id].embedding = list(embedding)

    async def clear(self) -> None:
        self.edges.clear()
        self._edge_keys.clear()
        self.nodes.clear()
        self._by_source.clear()

    async def node_id_map(self, node_type: str) -> dict[str, str]:
        return {
            n.source_id: n.id
            for n in self.nodes.values()
            if n.type == node_type and n.source_id is not None
        }

    async def get_node(self, node_id: str) -> KGNode | None:
        return self.nodes.get(node_id)

    async def get_nodes(self, node_ids: list[str]) -> dict[str, KGNode]:
        return {i: self.nodes[i] for i in node_ids if i in self.nodes}

    async def find_nodes_by_name(self, name: str, limit: int = 10) -> list[KGNode]:
        needle = name.lower()
        hits = [n for n in self.nodes.values() if needle in n.name.lower()]
        return sorted(hits, key=_sort_key)[:limit]

    async def find_nodes_by_type(self, node_type: str, limit: int = 100) -> list[KGNode]:
        hits = [n for n in self.nodes.values() if n.type == node_type]
        return sorted(hits, key=_sort_key)[:limit]

    def _edges(self, pred) -> list[KGEdge]:
        return sorted((e for e in self.edges.values() if pred(e)), key=lambda e: e.id)

    async def get_connected_edges(self, node_id: str) -> list[KGEdge]:
        return self._edges(lambda e: e.source_id == node_id or e.target_id == node_id)

    async def get_edges_from(self, node_id: str) -> list[KGEdge]:
        return self._edges(lambda e: e.source_id == node_id)

    async def get_edges_to(self, node_id: str) -> list[KGEdge]:
        return self._edges(lambda e: e.target_id == node_id)

    async def degree_counts(self) -> dict[str, int]:
        degrees = {node_id: 0 for node_id in self.nodes}
        for e in self.edges.values():
            ends = {e.source_id, e.target_id}
            for node_id in ends:
                if node_id in degrees:
                    degrees[node_id] += 1
        return degrees

    async def nodes_missing_embedding(self, limit: int = 100) -> list[KGNode]:
        missing = [n for n in self.nodes.values() if n.embedding is None]
        return sorted(missing, key=lambda n: (-n.importance_score, n.id))[:limit]

    async def stats(self) -> GraphStats:
        out_degree = Counter(e.source_id for e in self.edges.values())
        avg = (sum(out_degree.values()) / len(out_degree)) if out_degree else 0.0
        return GraphStats(
            total_nodes=len(self.nodes),
            total_edges=len(self.edges),
            nodes_by_type=dict(Counter(n.type for n in self.nodes.values()).most_common()),
            edges_by_type=dict(Counter(e.relationship_type for e in self.edges.values()).most_common()),
            avg_connections=float(avg),
        )

    async def graph_data(
        self, *, node_limit: int = 500, edge_limit: int = 1000
    ) -> tuple[list[KGNode], list[KGEdge]]:
        nodes = sorted(self.nodes.values(), key=lambda n: (-n.importance_score, n.id))[:node_limit]
        edges = sorted(self.edges.values(), key=lambda e: e.id)[:edge_limit]
        return nodes, edges


@dataclass
class InMemorySourceTables:
    """SourceTables over plain lists of row dicts, keyed by table name."""

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    def _rows(self, table: str) -> list[dict[str, Any]]:
        if table not in self.tables:
            raise SourceQueryError(table, KeyError(f"relation {table!r} does not exist"))
        return self.tables[table]

    async def fetch_node_rows(self, config: NodeExtractionConfig) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for row in self._rows(config.source_table):
            if config.id_column not in row or config.name_column not in row:
                raise SourceQueryError(
                    config.source_table,
                    KeyError(f"missing column {config.id_column!r} or {config.name_column!r}"),
                )
            item = {ROW_ID_KEY: row[config.id_column], ROW_NAME_KEY: row[config.name_column]}
            for col in config.property_columns:
                if col in row:
                    item[col] = row[col]
            out.append(item)
        return out

    async def fetch_fk_pairs(self, foreign_key: ForeignKey) -> list[tuple[Any, Any]]:
        target_col = foreign_key.target_column or "id"
        pairs: list[tuple[Any, Any]] = []
        for row in self._rows(foreign_key.table):
            if foreign_key.source_column not in row or target_col not in row:
                raise SourceQueryError(foreign_key.table, KeyError(foreign_key.source_column))
            if row[foreign_key.source_column] is None:
                continue
            pairs.append((row[foreign_key.source_column], row[target_col]))
        return pairs

    async def fetch_rows_by_ids(
        self, table: str, id_column: str, ids: list[str]
    ) -> list[dict[str, Any]]:
        wanted = {str(i) for i in ids}
        return [dict(r) for r in self._rows(table) if str(r.get(id_column)) in wanted]
