"""bizgraph - knowledge graph extraction, traversal and GraphRAG-lite retrieval."""

__version__ = "0.1.0"
