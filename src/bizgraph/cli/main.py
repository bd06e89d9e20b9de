#!/usr/bin/env python3
"""
bizgraph CLI - build and query the knowledge graph
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import click
from rich.console import Console
from rich.table import Table

from bizgraph.graph_service.services import build_services
from bizgraph.knowledge_graph.embeddings import build_embedder
from bizgraph.knowledge_graph.errors import NodeNotFoundError
from bizgraph.knowledge_graph.pg_store import PostgresGraphStore, PostgresSourceTables
from bizgraph.settings import settings

console = Console()


def _configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def graph_services(generate_embeddings=False):
    """Postgres-backed services for one CLI invocation."""
    store = await PostgresGraphStore.connect(
        settings.postgres_dsn,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        embedding_dim=settings.embedding_dim,
    )
    embedder = None
    if generate_embeddings:
        embedder = build_embedder(
            url=settings.embedding_url,
            model=settings.embedding_model,
            api_key=settings.embedding_api_key,
            dim=settings.embedding_dim,
            st_model=settings.st_model,
        )
    try:
        await store.ensure_schema()
        yield build_services(
            store,
            PostgresSourceTables(store.pool),
            embedder=embedder,
            generate_embeddings=generate_embeddings,
            embedding_batch_size=settings.embedding_batch_size,
        )
    finally:
        aclose = getattr(embedder, "aclose", None)
        if aclose is not None:
            await aclose()
        await store.close()


def print_stats(stats):
    console.print(f"[bold]Total Nodes:[/bold] {stats.total_nodes}")
    console.print(f"[bold]Total Edges:[/bold] {stats.total_edges}")
    console.print(f"[bold]Avg Connections:[/bold] {stats.avg_connections:.2f}")

    for title, counts in (("Nodes by Type", stats.nodes_by_type), ("Edges by Type", stats.edges_by_type)):
        table = Table(title=title)
        table.add_column("Type", style="cyan")
        table.add_column("Count", style="green", justify="right")
        for name, count in counts.items():
            table.add_row(name, str(count))
        console.print(table)

    if stats.skipped:
        console.print(f"[yellow]Skipped: {stats.skipped}[/yellow]")


@click.group()
def cli():
    """bizgraph - knowledge graph over your business tables"""
    _configure_logging()


@cli.command()
@click.option("--embeddings/--no-embeddings", default=None, help="Generate node embeddings (phase 4)")
def build(embeddings):
    """Extract nodes and edges, then score (and optionally embed) them"""
    enabled = settings.generate_embeddings if embeddings is None else embeddings

    async def run():
        async with graph_services(generate_embeddings=enabled) as svc:
            return await svc.pipeline.build()

    console.print("[bold]Building knowledge graph...[/bold]")
    print_stats(asyncio.run(run()))


@cli.command()
def stats():
    """Show graph statistics"""

    async def run():
        async with graph_services() as svc:
            return await svc.pipeline.get_stats()

    print_stats(asyncio.run(run()))


@cli.command()
@click.confirmation_option(prompt="Delete all knowledge graph nodes and edges?")
def clear():
    """Remove every edge and node"""

    async def run():
        async with graph_services() as svc:
            await svc.pipeline.clear()

    asyncio.run(run())
    console.print("[green]Knowledge graph cleared[/green]")


@cli.command()
@click.argument("query")
@click.option("--hops", default=2, help="Traversal depth per matched node")
@click.option("--source-data", is_flag=True, help="Append raw source rows")
def expand(query, hops, source_data):
    """Show the GraphRAG context for a query"""

    async def run():
        async with graph_services() as svc:
            return await svc.expander.get_full_context(
                query,
                max_hops=hops,
                max_expanded_nodes=settings.max_expanded_nodes,
                include_source_data=source_data,
            )

    result = asyncio.run(run())
    if not result.graph_context.matched_nodes:
        console.print("[yellow]No graph entities matched[/yellow]")
        return
    console.print(result.combined_context)


@cli.command()
@click.argument("src_id")
@click.argument("dst_id")
@click.option("--max-hops", default=5, help="Give up beyond this many edges")
def path(src_id, dst_id, max_hops):
    """Shortest path between two node ids"""

    async def run():
        async with graph_services() as svc:
            return await svc.traversal.find_shortest_path(src_id, dst_id, max_hops)

    found = asyncio.run(run())
    if found is None:
        console.print(f"[yellow]No path within {max_hops} hops[/yellow]")
        return

    table = Table(title=f"Path ({found.length} hops, weight {found.total_weight:.2f})")
    table.add_column("#", style="cyan", width=4)
    table.add_column("Node", style="white")
    table.add_column("Type", style="magenta")
    table.add_column("Via", style="blue")
    for i, node in enumerate(found.nodes):
        via = found.edges[i - 1].relationship_type if i else ""
        table.add_row(str(i), node.name, node.type, via)
    console.print(table)


@cli.command()
@click.argument("node_id")
@click.option("--hops", default=1, help="Neighborhood depth")
def neighbors(node_id, hops):
    """List nodes around a node"""

    async def run():
        async with graph_services() as svc:
            return await svc.traversal.get_neighborhood(node_id, hops)

    try:
        hood = asyncio.run(run())
    except NodeNotFoundError as e:
        raise click.ClickException(str(e))

    table = Table(title=f"Neighborhood of {node_id}")
    table.add_column("Id", style="cyan", overflow="fold")
    table.add_column("Type", style="magenta")
    table.add_column("Name", style="white")
    table.add_column("Importance", style="green", justify="right")
    for node in hood.nodes:
        table.add_row(node.id, node.type, node.name, f"{node.importance_score:.3f}")
    console.print(table)


def app() -> None:
    cli()


if __name__ == "__main__":
    app()
