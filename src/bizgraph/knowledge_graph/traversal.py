"""Multi-hop traversal and path finding over a GraphStore.

Traversal is undirected: an edge can be followed from either endpoint.
Edges are expanded in edge-id order, so when several minimum-hop paths
reach a node the one through the lowest edge ids is recorded.

Each dequeued node costs one edge query plus one batched node fetch for
its unvisited neighbors. Every call accepts an optional `cancel` event and
raises TraversalCancelled once it is set; timeouts belong to the caller
(`asyncio.wait_for`).
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

from .errors import NodeNotFoundError, TraversalCancelled
from .models import KGEdge, KGNode, Neighborhood, TraversalPath, TraversalResult
from .store import GraphStore


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise TraversalCancelled("graph traversal cancelled")


@dataclass(slots=True)
class GraphTraversal:
    """Read-only traversal engine; holds no state between calls."""

    store: GraphStore

    async def get_node(self, node_id: str) -> KGNode | None:
        return await self.store.get_node(node_id)

    async def find_nodes_by_name(self, name: str, limit: int = 10) -> list[KGNode]:
        """Case-insensitive substring match, most important first."""
        return await self.store.find_nodes_by_name(name, limit)

    async def find_nodes_by_type(self, node_type: str, limit: int = 100) -> list[KGNode]:
        return await self.store.find_nodes_by_type(node_type, limit)

    async def get_connected_edges(self, node_id: str) -> list[KGEdge]:
        return await self.store.get_connected_edges(node_id)

    async def get_edges_from(self, node_id: str) -> list[KGEdge]:
        return await self.store.get_edges_from(node_id)

    async def get_edges_to(self, node_id: str) -> list[KGEdge]:
        return await self.store.get_edges_to(node_id)

    async def _neighbors(
        self, node_id: str, relationship_types: list[str] | None
    ) -> list[KGEdge]:
        edges = await self.store.get_connected_edges(node_id)
        if relationship_types:
            wanted = set(relationship_types)
            edges = [e for e in edges if e.relationship_type in wanted]
        return sorted(edges, key=lambda e: e.id)

    async def _expand(
        self, node_id: str, visited: set[str], relationship_types: list[str] | None
    ) -> list[tuple[KGEdge, KGNode]]:
        """Unvisited neighbors of `node_id` in edge-id order; marks them visited."""
        steps: list[tuple[KGEdge, str]] = []
        for edge in await self._neighbors(node_id, relationship_types):
            next_id = edge.other_end(node_id)
            if next_id in visited:
                continue
            visited.add(next_id)
            steps.append((edge, next_id))
        if not steps:
            return []
        nodes = await self.store.get_nodes([next_id for _, next_id in steps])
        return [(edge, nodes[next_id]) for edge, next_id in steps if next_id in nodes]

    async def traverse(
        self,
        start_id: str,
        max_hops: int = 2,
        relationship_types: list[str] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> TraversalResult:
        """Breadth-first expansion from `start_id` up to `max_hops` edges.

        Every reached node is recorded once, with its first-discovered
        (minimum-hop) path. Raises NodeNotFoundError for an unknown start.
        """
        start = await self.store.get_node(start_id)
        if start is None:
            raise NodeNotFoundError(start_id)

        visited = {start_id}
        paths: list[TraversalPath] = []
        related: list[KGNode] = []
        queue: deque[tuple[str, TraversalPath, int]] = deque(
            [(start_id, TraversalPath(nodes=[start], edges=[]), 0)]
        )

        while queue:
            _check_cancel(cancel)
            node_id, path, depth = queue.popleft()
            if depth >= max_hops:
                continue

            for edge, next_node in await self._expand(node_id, visited, relationship_types):
                related.append(next_node)
                new_path = path.extend(edge, next_node)
                paths.append(new_path)
                queue.append((next_node.id, new_path, depth + 1))

        return TraversalResult(
            start_node=start,
            paths=paths,
            related_nodes=related,
            total_hops=max_hops,
        )

    async def find_shortest_path(
        self,
        from_id: str,
        to_id: str,
        max_hops: int = 5,
        *,
        relationship_types: list[str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> TraversalPath | None:
        """Minimum-hop path, or None if an endpoint is missing or it is longer than `max_hops`."""
        start = await self.store.get_node(from_id)
        end = await self.store.get_node(to_id)
        if start is None or end is None:
            return None
        if from_id == to_id:
            return TraversalPath(nodes=[start], edges=[])

        visited = {from_id}
        queue: deque[tuple[str, TraversalPath]] = deque(
            [(from_id, TraversalPath(nodes=[start], edges=[]))]
        )

        while queue:
            _check_cancel(cancel)
            node_id, path = queue.popleft()
            if path.length >= max_hops:
                continue

            for edge, next_node in await self._expand(node_id, visited, relationship_types):
                if next_node.id == to_id:
                    return path.extend(edge, end)
                queue.append((next_node.id, path.extend(edge, next_node)))

        return None

    async def get_neighborhood(
        self,
        node_id: str,
        depth: int = 1,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Neighborhood:
        result = await self.traverse(node_id, depth, cancel=cancel)

        seen: set[str] = set()
        edges: list[KGEdge] = []
        for path in result.paths:
            for edge in path.edges:
                if edge.id not in seen:
                    seen.add(edge.id)
                    edges.append(edge)

        return Neighborhood(nodes=[result.start_node, *result.related_nodes], edges=edges)
