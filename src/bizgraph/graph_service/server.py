from __future__ import annotations

import asyncio
import logging

import uvicorn

from bizgraph.knowledge_graph.embeddings import build_embedder
from bizgraph.knowledge_graph.pg_store import PostgresGraphStore, PostgresSourceTables
from bizgraph.settings import settings

from .app import create_app
from .services import build_services


async def _main() -> None:
    logging.basicConfig(
        level=(settings.log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = await PostgresGraphStore.connect(
        settings.postgres_dsn,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        embedding_dim=settings.embedding_dim,
    )
    await store.ensure_schema()

    embedder = build_embedder(
        url=settings.embedding_url,
        model=settings.embedding_model,
        api_key=settings.embedding_api_key,
        dim=settings.embedding_dim,
        st_model=settings.st_model,
    )
    services = build_services(
        store,
        PostgresSourceTables(store.pool),
        embedder=embedder,
        generate_embeddings=settings.generate_embeddings,
        embedding_batch_size=settings.embedding_batch_size,
    )
    app = create_app(services)

    config = uvicorn.Config(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_level=(settings.log_level or "info").lower(),
        loop="uvloop",
        http="httptools",
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    finally:
        aclose = getattr(embedder, "aclose", None)
        if aclose is not None:
            await aclose()
        await store.close()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
