from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from bizgraph.knowledge_graph.errors import NodeNotFoundError
from bizgraph.settings import settings

from .auth import require_api_key
from .services import GraphServices

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TraverseIn(BaseModel):
    node_id: str
    max_hops: int = Field(default=2, ge=0, le=6)
    relationship_types: list[str] | None = None


class NeighborhoodIn(BaseModel):
    node_id: str
    depth: int = Field(default=1, ge=0, le=4)


class PathIn(BaseModel):
    src_id: str
    dst_id: str
    max_hops: int = Field(default=5, ge=1, le=12)


class ExpandIn(BaseModel):
    query: str
    max_hops: int = Field(default=2, ge=0, le=4)
    max_expanded_nodes: int = Field(default=20, ge=0, le=200)


class ContextIn(ExpandIn):
    include_source_data: bool = False


async def _bounded(coro: Awaitable[T]) -> T:
    # traversal has no internal timeout; cap it here
    try:
        return await asyncio.wait_for(coro, timeout=settings.request_timeout_s)
    except asyncio.TimeoutError:
        logger.warning("Graph query exceeded %.1fs", settings.request_timeout_s)
        raise HTTPException(status_code=504, detail="graph query timed out")
    except NodeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def build_graph_router(services: GraphServices) -> APIRouter:
    r = APIRouter(prefix="/v1/graph", tags=["graph"], dependencies=[Depends(require_api_key)])

    @r.post("/build")
    async def build():
        stats = await services.pipeline.build()
        return {"message": "Knowledge graph built", "stats": stats.to_dict()}

    @r.delete("")
    async def clear():
        await services.pipeline.clear()
        return {"ok": True}

    @r.get("/stats")
    async def stats():
        return (await services.pipeline.get_stats()).to_dict()

    @r.get("/data")
    async def data(
        node_limit: int = Query(default=500, ge=1, le=5000),
        edge_limit: int = Query(default=1000, ge=1, le=20000),
    ):
        nodes, edges = await services.store.graph_data(node_limit=node_limit, edge_limit=edge_limit)
        node_ids = {n.id for n in nodes}
        links = [
            {
                "source": e.source_id,
                "target": e.target_id,
                "relationship_type": e.relationship_type,
                "weight": e.weight,
            }
            for e in edges
            if e.source_id in node_ids and e.target_id in node_ids
        ]
        return {"nodes": [n.to_dict() for n in nodes], "links": links}

    @r.get("/search")
    async def search(
        q: str | None = None,
        type: str | None = None,
        limit: int = Query(default=10, ge=1, le=200),
    ):
        if type:
            nodes = await services.traversal.find_nodes_by_type(type, limit)
        elif q:
            nodes = await services.traversal.find_nodes_by_name(q, limit)
        else:
            raise HTTPException(status_code=400, detail="q or type is required")
        return {"count": len(nodes), "nodes": [n.to_dict() for n in nodes]}

    @r.get("/nodes/{node_id}")
    async def get_node(node_id: str):
        node = await services.traversal.get_node(node_id)
        if node is None:
            raise HTTPException(status_code=404, detail="node not found")
        edges = await services.traversal.get_connected_edges(node_id)
        return {"node": node.to_dict(), "edges": [e.to_dict() for e in edges]}

    @r.get("/nodes/{node_id}/records")
    async def node_records(node_id: str):
        node = await services.traversal.get_node(node_id)
        if node is None:
            raise HTTPException(status_code=404, detail="node not found")

        fallback: dict[str, Any] = {**node.properties, "_node_name": node.name, "_node_type": node.type}
        if not node.source_table:
            return {"records": [fallback], "source": "properties"}

        records = await services.expander.get_source_data_for_nodes([node])
        if not records:
            return {
                "records": [fallback],
                "source": "properties",
                "message": f"no rows found in {node.source_table!r}",
            }
        return {"records": records, "source": node.source_table, "source_id": node.source_id}

    @r.post("/traverse")
    async def traverse(payload: TraverseIn):
        result = await _bounded(
            services.traversal.traverse(
                payload.node_id, payload.max_hops, payload.relationship_types
            )
        )
        return result.to_dict()

    @r.post("/neighborhood")
    async def neighborhood(payload: NeighborhoodIn):
        result = await _bounded(services.traversal.get_neighborhood(payload.node_id, payload.depth))
        return result.to_dict()

    @r.post("/shortest_path")
    async def shortest_path(payload: PathIn):
        path = await _bounded(
            services.traversal.find_shortest_path(payload.src_id, payload.dst_id, payload.max_hops)
        )
        return {"found": path is not None, "path": path.to_dict() if path else None}

    @r.post("/expand")
    async def expand(payload: ExpandIn):
        result = await _bounded(
            services.expander.expand_query_with_graph(
                payload.query, payload.max_hops, payload.max_expanded_nodes
            )
        )
        return result.to_dict()

    @r.post("/context")
    async def context(payload: ContextIn):
        result = await _bounded(
            services.expander.get_full_context(
                payload.query,
                max_hops=payload.max_hops,
                max_expanded_nodes=payload.max_expanded_nodes,
                include_source_data=payload.include_source_data,
            )
        )
        return result.to_dict()

    return r
