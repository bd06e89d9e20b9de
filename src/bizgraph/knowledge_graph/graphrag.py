"""GraphRAG-lite: expand a chat query with knowledge graph context.

Expansion is deliberately simple: seeds are the first five matched nodes,
expanded nodes are kept first-come-first-served up to the cap (no relevance
sort), and each rendered relationship carries only its first edge's type.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .config import default_extraction_config
from .errors import ConfigurationError, NodeNotFoundError, SourceQueryError
from .matcher import EntityMatcher
from .models import (
    ExtractionConfig,
    FullContext,
    GraphExpansionResult,
    KGNode,
    TraversalPath,
)
from .store import SourceTables
from .traversal import GraphTraversal

logger = logging.getLogger(__name__)

MAX_SEED_NODES = 5
MAX_RETURNED_PATHS = 10


def _format_props(properties: dict[str, Any]) -> str:
    return ", ".join(f"{k}: {v}" for k, v in properties.items() if v is not None)


def build_context_from_graph(
    matched_nodes: list[KGNode],
    expanded_nodes: list[KGNode],
    paths: list[TraversalPath],
) -> str:
    parts: list[str] = []

    if matched_nodes:
        parts.append("**Relevant Entities:**")
        for node in matched_nodes[:10]:
            props = _format_props(node.properties)
            suffix = f" ({props})" if props else ""
            parts.append(f'- {node.type}: "{node.name}"{suffix}')

    if expanded_nodes:
        parts.append("\n**Related Entities:**")
        for node in expanded_nodes[:10]:
            parts.append(f'- {node.type}: "{node.name}"')

    if paths:
        parts.append("\n**Relationships:**")
        for path in paths[:5]:
            if not path.edges:
                continue
            chain = " → ".join(n.name for n in path.nodes)
            rel_type = path.edges[0].relationship_type or "related"
            parts.append(f"- {chain} ({rel_type})")

    return "\n".join(parts)


@dataclass(slots=True)
class GraphRAGExpander:
    traversal: GraphTraversal
    matcher: EntityMatcher
    sources: SourceTables | None = None
    config: ExtractionConfig = field(default_factory=default_extraction_config)

    async def expand_query_with_graph(
        self,
        query: str,
        max_hops: int = 2,
        max_expanded_nodes: int = 20,
        *,
        cancel: asyncio.Event | None = None,
    ) -> GraphExpansionResult:
        matched = await self.matcher.match_query_to_nodes(query)
        if not matched:
            return GraphExpansionResult(original_query=query)

        expanded: dict[str, KGNode] = {}
        all_paths: list[TraversalPath] = []

        for seed in matched[:MAX_SEED_NODES]:
            try:
                result = await self.traversal.traverse(seed.id, max_hops, cancel=cancel)
            except NodeNotFoundError as e:
                logger.warning("Failed to traverse from node %s: %s", seed.id, e)
                continue

            for node in result.related_nodes:
                if node.id not in expanded and len(expanded) < max_expanded_nodes:
                    expanded[node.id] = node
            all_paths.extend(result.paths)

        expanded_nodes = list(expanded.values())
        return GraphExpansionResult(
            original_query=query,
            matched_nodes=matched,
            expanded_nodes=expanded_nodes,
            paths=all_paths[:MAX_RETURNED_PATHS],
            context=build_context_from_graph(matched, expanded_nodes, all_paths),
        )

    async def get_source_data_for_nodes(self, nodes: list[KGNode]) -> list[dict[str, Any]]:
        """Fetch the raw source rows behind `nodes`, one query per source table."""
        if self.sources is None:
            return []

        by_table: dict[str, list[str]] = {}
        for node in nodes:
            if not node.source_table or node.source_id is None:
                continue
            ids = by_table.setdefault(node.source_table, [])
            if node.source_id not in ids:
                ids.append(node.source_id)

        rows: list[dict[str, Any]] = []
        for table, ids in by_table.items():
            try:
                rows.extend(
                    await self.sources.fetch_rows_by_ids(table, self.config.id_column_for(table), ids)
                )
            except (SourceQueryError, ConfigurationError) as e:
                logger.error("Failed to get source data from %s: %s", table, e)
        return rows

    async def get_full_context(
        self,
        query: str,
        *,
        max_hops: int = 2,
        max_expanded_nodes: int = 20,
        include_source_data: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> FullContext:
        graph_context = await self.expand_query_with_graph(
            query, max_hops, max_expanded_nodes, cancel=cancel
        )

        source_data: list[dict[str, Any]] = []
        if include_source_data:
            source_data = await self.get_source_data_for_nodes(
                [*graph_context.matched_nodes, *graph_context.expanded_nodes[:10]]
            )

        combined = graph_context.context
        if source_data:
            combined += "\n\n**Source Data:**\n"
            combined += json.dumps(source_data[:5], indent=2, ensure_ascii=False, default=str)

        return FullContext(
            graph_context=graph_context,
            source_data=source_data,
            combined_context=combined,
        )
