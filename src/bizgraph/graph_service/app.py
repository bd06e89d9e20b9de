from __future__ import annotations

import os

from fastapi import FastAPI

from bizgraph import __version__

from .graph_api import build_graph_router
from .services import GraphServices


def create_app(services: GraphServices) -> FastAPI:
    app = FastAPI(title="bizgraph - Knowledge Graph Service", version=__version__)

    @app.get("/health")
    async def health():
        return {"ok": True, "host": os.uname().nodename}

    app.include_router(build_graph_router(services))
    return app
