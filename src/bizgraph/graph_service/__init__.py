"""HTTP surface for the knowledge graph (FastAPI)."""

from .app import create_app
from .services import GraphServices, build_services

__all__ = ["GraphServices", "build_services", "create_app"]
