from __future__ import annotations

from typing import Any, Protocol

from .models import ForeignKey, GraphStats, KGEdge, KGNode, NodeExtractionConfig


# keys for the configured id/name columns in `fetch_node_rows` results;
# property columns keep their own names, including "id" and "name"
ROW_ID_KEY = "__kg_id"
ROW_NAME_KEY = "__kg_name"

class GraphStore(Protocol):
    """Abstraction for the persisted nodes/edges tables.

    Lookups return None/empty on a miss. Implementations raise
    PersistenceError for a failed single-row write and let connection
    loss propagate untouched.
    """

    async def ensure_schema(self) -> None: ...

    # --- writes (owned by the pipeline) ---

    async def upsert_node(
        self,
        *,
        node_type: str,
        name: str,
        properties: dict[str, Any],
        source_table: str,
        source_id: str,
    ) -> str: ...

    async def insert_edge(
        self,
        *,
        source_id: str,
        target_id: str,
        relationship_type: str,
        weight: float = 1.0,
        confidence: float = 1.0,
        properties: dict[str, Any] | None = None,
    ) -> bool: ...

    async def update_importance_scores(self, scores: dict[str, float]) -> None: ...

    async def set_embedding(self, node_id: str, embedding: list[float]) -> None: ...

    async def clear(self) -> None: ...

    # --- reads ---

    async def node_id_map(self, node_type: str) -> dict[str, str]: ...

    async def get_node(self, node_id: str) -> KGNode | None: ...

    async def get_nodes(self, node_ids: list[str]) -> dict[str, KGNode]: ...

    async def find_nodes_by_name(self, name: str, limit: int = 10) -> list[KGNode]: ...

    async def find_nodes_by_type(self, node_type: str, limit: int = 100) -> list[KGNode]: ...

    async def get_connected_edges(self, node_id: str) -> list[KGEdge]: ...

    async def get_edges_from(self, node_id: str) -> list[KGEdge]: ...

    async def get_edges_to(self, node_id: str) -> list[KGEdge]: ...

    async def degree_counts(self) -> dict[str, int]: ...

    async def nodes_missing_embedding(self, limit: int = 100) -> list[KGNode]: ...

    async def stats(self) -> GraphStats: ...

    async def graph_data(
        self, *, node_limit: int = 500, edge_limit: int = 1000
    ) -> tuple[list[KGNode], list[KGEdge]]: ...


class SourceTables(Protocol):
    """Read access to the relational business tables the graph is built from.

    Failures surface as SourceQueryError.
    """

    async def fetch_node_rows(self, config: NodeExtractionConfig) -> list[dict[str, Any]]:
        """Rows keyed by ROW_ID_KEY, ROW_NAME_KEY and each present property column."""
        ...

    async def fetch_fk_pairs(self, foreign_key: ForeignKey) -> list[tuple[Any, Any]]:
        """(fk_value, record_id) pairs where the FK column is not null."""
        ...

    async def fetch_rows_by_ids(
        self, table: str, id_column: str, ids: list[str]
    ) -> list[dict[str, Any]]: ...
