from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import asyncpg

from .config import quote_ident
from .errors import PersistenceError, SourceQueryError
from .models import ForeignKey, GraphStats, KGEdge, KGNode, NodeExtractionConfig
from .store import ROW_ID_KEY, ROW_NAME_KEY

logger = logging.getLogger(__name__)

_NODE_COLS = """
    id::text AS id, type, name, properties::text AS properties,
    embedding::text AS embedding, importance_score,
    source_table, source_id, created_at, updated_at
"""

_EDGE_COLS = """
    id::text AS id, source_id::text AS source_id, target_id::text AS target_id,
    relationship_type, weight, confidence, properties::text AS properties, created_at
"""


def schema_statements(embedding_dim: int) -> list[str]:
    dim = int(embedding_dim)
    return [
        "CREATE EXTENSION IF NOT EXISTS vector",
        'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
        f"""
        CREATE TABLE IF NOT EXISTS knowledge_graph_nodes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            type TEXT NOT NULL,
            name TEXT NOT NULL,
            properties JSONB NOT NULL DEFAULT '{{}}',
            embedding VECTOR({dim}),
            importance_score REAL NOT NULL DEFAULT 0.5,
            source_table TEXT,
            source_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_kg_nodes_source UNIQUE (source_table, source_id)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_kg_nodes_type ON knowledge_graph_nodes(type)",
        "CREATE INDEX IF NOT EXISTS idx_kg_nodes_name ON knowledge_graph_nodes(name)",
        """
        CREATE TABLE IF NOT EXISTS knowledge_graph_edges (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            source_id UUID NOT NULL REFERENCES knowledge_graph_nodes(id) ON DELETE CASCADE,
            target_id UUID NOT NULL REFERENCES knowledge_graph_nodes(id) ON DELETE CASCADE,
            relationship_type TEXT NOT NULL,
            weight REAL NOT NULL DEFAULT 1.0,
            confidence REAL NOT NULL DEFAULT 1.0,
            properties JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_kg_edges_triple UNIQUE (source_id, target_id, relationship_type)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_kg_edges_source ON knowledge_graph_edges(source_id)",
        "CREATE INDEX IF NOT EXISTS idx_kg_edges_target ON knowledge_graph_edges(target_id)",
        "CREATE INDEX IF NOT EXISTS idx_kg_edges_type ON knowledge_graph_edges(relationship_type)",
    ]


def _json_dumps(v: Any) -> str:
    # numeric/date columns come back as Decimal/date; store their text form
    return json.dumps(v or {}, ensure_ascii=False, default=str)


def _is_uuid(v: str) -> bool:
    try:
        uuid.UUID(str(v))
        return True
    except ValueError:
        return False


@contextmanager
def _persistence(what: str):
    """Re-raise server errors as PersistenceError; connection loss propagates."""
    try:
        yield
    except asyncpg.exceptions.PostgresConnectionError:
        raise
    except asyncpg.PostgresError as e:
        raise PersistenceError(f"{what} failed: {e}") from e


def _vector_literal(embedding: list[float]) -> str:
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


def _row_to_node(r: Any) -> KGNode:
    emb = r["embedding"]
    return KGNode(
        id=r["id"],
        type=r["type"],
        name=r["name"],
        properties=json.loads(r["properties"] or "{}"),
        embedding=json.loads(emb) if emb else None,
        importance_score=float(r["importance_score"] if r["importance_score"] is not None else 0.5),
        source_table=r["source_table"],
        source_id=r["source_id"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


def _row_to_edge(r: Any) -> KGEdge:
    return KGEdge(
        id=r["id"],
        source_id=r["source_id"],
        target_id=r["target_id"],
        relationship_type=r["relationship_type"],
        weight=float(r["weight"] if r["weight"] is not None else 1.0),
        confidence=float(r["confidence"] if r["confidence"] is not None else 1.0),
        properties=json.loads(r["properties"] or "{}"),
        created_at=r["created_at"],
    )


@dataclass
class PostgresGraphStore:
    """asyncpg-backed graph store over `knowledge_graph_nodes`/`knowledge_graph_edges`.

    Every value is a bound parameter. Connection failures propagate; other
    server errors on writes and on the reads the build depends on become
    PersistenceError.
    """

    pool: asyncpg.Pool
    embedding_dim: int = 1536

    @classmethod
    async def connect(
        cls, dsn: str, *, min_size: int = 1, max_size: int = 10, embedding_dim: int = 1536
    ) -> "PostgresGraphStore":
        pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
        return cls(pool=pool, embedding_dim=embedding_dim)

    async def close(self) -> None:
        await self.pool.close()

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as con:
            for stmt in schema_statements(self.embedding_dim):
                await con.execute(stmt)
        logger.info("Knowledge graph schema ready (embedding dim %d)", self.embedding_dim)

    # --- writes ---

    async def upsert_node(
        self,
        *,
        node_type: str,
        name: str,
        properties: dict[str, Any],
        source_table: str,
        source_id: str,
    ) -> str:
        q = """
        INSERT INTO knowledge_graph_nodes (type, name, properties, source_table, source_id)
        VALUES ($1, $2, $3::jsonb, $4, $5)
        ON CONFLICT (source_table, source_id) DO UPDATE SET
            name = EXCLUDED.name,
            properties = EXCLUDED.properties,
            updated_at = now()
        RETURNING id::text
        """
        async with self.pool.acquire() as con:
            with _persistence(f"upsert {source_table}/{source_id}"):
                node_id = await con.fetchval(
                    q, node_type, name, _json_dumps(properties), source_table, source_id
                )
        return str(node_id)

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
        q = """
        INSERT INTO knowledge_graph_edges
            (source_id, target_id, relationship_type, weight, confidence, properties)
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6::jsonb)
        ON CONFLICT (source_id, target_id, relationship_type) DO NOTHING
        RETURNING id::text
        """
        async with self.pool.acquire() as con:
            with _persistence(f"insert edge {source_id}-[{relationship_type}]->{target_id}"):
                edge_id = await con.fetchval(
                    q,
                    source_id,
                    target_id,
                    relationship_type,
                    float(weight),
                    float(confidence),
                    _json_dumps(properties),
                )
        return edge_id is not None

    async def update_importance_scores(self, scores: dict[str, float]) -> None:
        if not scores:
            return
        q = """
        UPDATE knowledge_graph_nodes AS n
        SET importance_score = s.score
        FROM unnest($1::text[], $2::float8[]) AS s(id, score)
        WHERE n.id = s.id::uuid
        """
        ids = list(scores.keys())
        async with self.pool.acquire() as con:
            with _persistence(f"update importance scores for {len(ids)} nodes"):
                await con.execute(q, ids, [float(scores[i]) for i in ids])

    async def set_embedding(self, node_id: str, embedding: list[float]) -> None:
        q = "UPDATE knowledge_graph_nodes SET embedding = $2::text::vector WHERE id = $1::uuid"
        async with self.pool.acquire() as con:
            with _persistence(f"store embedding for {node_id}"):
                await con.execute(q, node_id, _vector_literal(embedding))

    async def clear(self) -> None:
        async with self.pool.acquire() as con:
            await con.execute("TRUNCATE knowledge_graph_edges")
            await con.execute("TRUNCATE knowledge_graph_nodes CASCADE")
        logger.info("Cleared knowledge graph edges and nodes")

    # --- reads ---

    async def node_id_map(self, node_type: str) -> dict[str, str]:
        q = "SELECT id::text AS id, source_id FROM knowledge_graph_nodes WHERE type = $1"
        async with self.pool.acquire() as con:
            with _persistence(f"load {node_type} node ids"):
                rows = await con.fetch(q, node_type)
        return {r["source_id"]: r["id"] for r in rows if r["source_id"] is not None}

    async def get_node(self, node_id: str) -> KGNode | None:
        if not _is_uuid(node_id):
            return None
        q = f"SELECT {_NODE_COLS} FROM knowledge_graph_nodes WHERE id = $1::uuid"
        async with self.pool.acquire() as con:
            row = await con.fetchrow(q, node_id)
        return _row_to_node(row) if row else None

    async def get_nodes(self, node_ids: list[str]) -> dict[str, KGNode]:
        ids = [i for i in node_ids if _is_uuid(i)]
        if not ids:
            return {}
        q = f"SELECT {_NODE_COLS} FROM knowledge_graph_nodes WHERE id = ANY($1::uuid[])"
        async with self.pool.acquire() as con:
            rows = await con.fetch(q, ids)
        return {r["id"]: _row_to_node(r) for r in rows}

    async def find_nodes_by_name(self, name: str, limit: int = 10) -> list[KGNode]:
        q = f"""
        SELECT {_NODE_COLS} FROM knowledge_graph_nodes
        WHERE strpos(lower(name), lower($1)) > 0
        ORDER BY importance_score DESC, name, id
        LIMIT $2
        """
        async with self.pool.acquire() as con:
            rows = await con.fetch(q, name, int(limit))
        return [_row_to_node(r) for r in rows]

    async def find_nodes_by_type(self, node_type: str, limit: int = 100) -> list[KGNode]:
        q = f"""
        SELECT {_NODE_COLS} FROM knowledge_graph_nodes
        WHERE type = $1
        ORDER BY importance_score DESC, name, id
        LIMIT $2
        """
        async with self.pool.acquire() as con:
            rows = await con.fetch(q, node_type, int(limit))
        return [_row_to_node(r) for r in rows]

    async def _edges_where(self, where: str, node_id: str) -> list[KGEdge]:
        if not _is_uuid(node_id):
            return []
        q = f"SELECT {_EDGE_COLS} FROM knowledge_graph_edges WHERE {where} ORDER BY id"
        async with self.pool.acquire() as con:
            rows = await con.fetch(q, node_id)
        return [_row_to_edge(r) for r in rows]

    async def get_connected_edges(self, node_id: str) -> list[KGEdge]:
        return await self._edges_where("source_id = $1::uuid OR target_id = $1::uuid", node_id)

    async def get_edges_from(self, node_id: str) -> list[KGEdge]:
        return await self._edges_where("source_id = $1::uuid", node_id)

    async def get_edges_to(self, node_id: str) -> list[KGEdge]:
        return await self._edges_where("target_id = $1::uuid", node_id)

    async def degree_counts(self) -> dict[str, int]:
        q = """
        SELECT n.id::text AS id, COUNT(e.id) AS degree
        FROM knowledge_graph_nodes n
        LEFT JOIN knowledge_graph_edges e ON e.source_id = n.id OR e.target_id = n.id
        GROUP BY n.id
        """
        async with self.pool.acquire() as con:
            with _persistence("count node degrees"):
                rows = await con.fetch(q)
        return {r["id"]: int(r["degree"]) for r in rows}

    async def nodes_missing_embedding(self, limit: int = 100) -> list[KGNode]:
        q = f"""
        SELECT {_NODE_COLS} FROM knowledge_graph_nodes
        WHERE embedding IS NULL
        ORDER BY importance_score DESC, id
        LIMIT $1
        """
        async with self.pool.acquire() as con:
            with _persistence("select nodes missing embeddings"):
                rows = await con.fetch(q, int(limit))
        return [_row_to_node(r) for r in rows]

    async def stats(self) -> GraphStats:
        async with self.pool.acquire() as con:
            total_nodes = await con.fetchval("SELECT COUNT(*) FROM knowledge_graph_nodes")
            total_edges = await con.fetchval("SELECT COUNT(*) FROM knowledge_graph_edges")
            by_type = await con.fetch(
                "SELECT type, COUNT(*) AS count FROM knowledge_graph_nodes GROUP BY type ORDER BY count DESC"
            )
            by_rel = await con.fetch(
                "SELECT relationship_type, COUNT(*) AS count FROM knowledge_graph_edges "
                "GROUP BY relationship_type ORDER BY count DESC"
            )
            avg = await con.fetchval(
                "SELECT AVG(c) FROM (SELECT COUNT(*) AS c FROM knowledge_graph_edges GROUP BY source_id) t"
            )
        return GraphStats(
            total_nodes=int(total_nodes or 0),
            total_edges=int(total_edges or 0),
            nodes_by_type={r["type"]: int(r["count"]) for r in by_type},
            edges_by_type={r["relationship_type"]: int(r["count"]) for r in by_rel},
            avg_connections=float(avg or 0.0),
        )

    async def graph_data(
        self, *, node_limit: int = 500, edge_limit: int = 1000
    ) -> tuple[list[KGNode], list[KGEdge]]:
        async with self.pool.acquire() as con:
            node_rows = await con.fetch(
                f"SELECT {_NODE_COLS} FROM knowledge_graph_nodes ORDER BY importance_score DESC, id LIMIT $1",
                int(node_limit),
            )
            edge_rows = await con.fetch(
                f"SELECT {_EDGE_COLS} FROM knowledge_graph_edges ORDER BY id LIMIT $1",
                int(edge_limit),
            )
        return [_row_to_node(r) for r in node_rows], [_row_to_edge(r) for r in edge_rows]


@dataclass
class PostgresSourceTables:
    """Reads business tables named by static extraction config.

    Identifiers are validated and quoted; values are bound parameters.
    """

    pool: asyncpg.Pool

    async def _fetch(self, table: str, q: str, *args: Any) -> list[asyncpg.Record]:
        async with self.pool.acquire() as con:
            try:
                return await con.fetch(q, *args)
            except asyncpg.exceptions.PostgresConnectionError:
                raise
            except asyncpg.PostgresError as e:
                raise SourceQueryError(table, e) from e

    async def fetch_node_rows(self, config: NodeExtractionConfig) -> list[dict[str, Any]]:
        cols = [
            f"{quote_ident(config.id_column)} AS {quote_ident(ROW_ID_KEY)}",
            f"{quote_ident(config.name_column)} AS {quote_ident(ROW_NAME_KEY)}",
            *(quote_ident(col) for col in config.property_columns),
        ]
        q = f"SELECT {', '.join(cols)} FROM {quote_ident(config.source_table)}"
        rows = await self._fetch(config.source_table, q)
        return [dict(r) for r in rows]

    async def fetch_fk_pairs(self, foreign_key: ForeignKey) -> list[tuple[Any, Any]]:
        src = quote_ident(foreign_key.source_column)
        tgt = quote_ident(foreign_key.target_column or "id")
        q = (
            f"SELECT {src} AS fk_value, {tgt} AS record_id "
            f"FROM {quote_ident(foreign_key.table)} WHERE {src} IS NOT NULL"
        )
        rows = await self._fetch(foreign_key.table, q)
        return [(r["fk_value"], r["record_id"]) for r in rows]

    async def fetch_rows_by_ids(
        self, table: str, id_column: str, ids: list[str]
    ) -> list[dict[str, Any]]:
        if not ids:
            return []
        q = f"SELECT * FROM {quote_ident(table)} WHERE {quote_ident(id_column)}::text = ANY($1::text[])"
        rows = await self._fetch(table, q, [str(i) for i in ids])
        return [dict(r) for r in rows]
