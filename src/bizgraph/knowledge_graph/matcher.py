from __future__ import annotations

import logging
import string
from dataclasses import dataclass

from .entities import EntityExtractor
from .errors import KnowledgeGraphError
from .models import KGNode
from .traversal import GraphTraversal

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {"what", "where", "when", "which", "have", "does", "many", "much", "this", "that", "with"}
)


def query_tokens(query: str) -> list[str]:
    """Whitespace tokens longer than 3 chars that are not stop words.

    Surrounding punctuation is stripped ("Acme?" -> "Acme").
    """
    words = (w.strip(string.punctuation) for w in query.split())
    return [w for w in words if len(w) > 3 and w.lower() not in STOP_WORDS]


@dataclass(slots=True)
class EntityMatcher:
    """Maps a free-text query to candidate graph nodes.

    Two strategies, merged in order and de-duplicated by node id:
    typed entities from the extractor (top nodes of that type), then
    per-token name search. No ranking is applied across the merge.
    """

    traversal: GraphTraversal
    extractor: EntityExtractor | None = None
    nodes_per_entity: int = 5
    nodes_per_token: int = 3

    async def match_query_to_nodes(self, query: str) -> list[KGNode]:
        matched: dict[str, KGNode] = {}

        if self.extractor is not None:
            try:
                entities = await self.extractor.extract_entities(query)
            except KnowledgeGraphError as e:
                logger.warning("Entity extraction failed for query %r: %s", query, e)
                entities = []
            for resolved in entities:
                for node in await self.traversal.find_nodes_by_type(
                    resolved.entity.name, self.nodes_per_entity
                ):
                    matched.setdefault(node.id, node)

        for token in query_tokens(query):
            for node in await self.traversal.find_nodes_by_name(token, self.nodes_per_token):
                matched.setdefault(node.id, node)

        return list(matched.values())
