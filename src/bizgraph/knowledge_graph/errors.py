"""Error taxonomy for the knowledge graph subsystem.

Only configuration and lookup errors escape to callers. Source, persistence
and embedding errors are raised by the storage/provider layers and absorbed
by the pipeline, which logs them and counts the skip.
"""

from __future__ import annotations


class KnowledgeGraphError(Exception):
    """Base class for knowledge graph failures."""


class ConfigurationError(KnowledgeGraphError, ValueError):
    """A node/edge extraction config is malformed (e.g. missing foreign key)."""


class SourceQueryError(KnowledgeGraphError):
    """A configured source table could not be read."""

    def __init__(self, table: str, cause: BaseException | None = None):
        self.table = table
        self.cause = cause
        super().__init__(f"failed to read source table {table!r}: {cause}")


class PersistenceError(KnowledgeGraphError):
    """A single node upsert or edge insert failed."""


class EmbeddingProviderError(KnowledgeGraphError):
    """The embedding collaborator failed for one input."""


class NodeNotFoundError(KnowledgeGraphError, LookupError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"node not found: {node_id}")


class TraversalCancelled(KnowledgeGraphError):
    """The caller's cancel event was set while a traversal was running."""
