from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from .models import EntityRef, ResolvedEntity


class EntityExtractor(Protocol):
    """Resolves entity-type mentions in free text (e.g. "deals" -> opportunity)."""

    async def extract_entities(self, text: str) -> list[ResolvedEntity]: ...


DEFAULT_ALIASES: dict[str, tuple[str, ...]] = {
    "customer": ("customers", "client", "clients", "account", "accounts"),
    "employee": ("employees", "staff", "rep", "reps", "sales rep"),
    "product": ("products", "item", "items", "sku"),
    "category": ("categories", "product category"),
    "supplier": ("suppliers", "vendor", "vendors"),
    "opportunity": ("opportunities", "deal", "deals", "pipeline"),
    "ticket": ("tickets", "support ticket", "support case", "case", "cases"),
    "order": ("orders", "purchase", "purchases"),
    "public_company": ("public company", "public companies", "listed company", "ticker"),
    "industry": ("industries", "naics"),
    "economic_indicator": ("economic indicator", "economic indicators", "indicator", "indicators"),
}


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


@dataclass(slots=True)
class AliasEntityResolver:
    """Alias-table entity resolver.

    Exact type names score 1.0, aliases 0.95. Only when neither hits, a
    word of 3+ chars contained in a type name (or the reverse) scores 0.7.
    Results are sorted by confidence.
    """

    entities: dict[str, EntityRef] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_node_types(
        cls,
        node_types: Iterable[str],
        aliases: dict[str, tuple[str, ...]] | None = None,
    ) -> "AliasEntityResolver":
        alias_table = DEFAULT_ALIASES if aliases is None else aliases
        resolver = cls()
        for node_type in node_types:
            resolver.add(node_type, alias_table.get(node_type, ()))
        return resolver

    def add(self, name: str, aliases: Iterable[str] = ()) -> None:
        self.entities[name] = EntityRef(name=name, type="node_type")
        self.aliases[name.lower()] = name
        self.aliases[name.replace("_", " ").lower()] = name
        for alias in aliases:
            self.aliases[alias.lower()] = name

    async def extract_entities(self, text: str) -> list[ResolvedEntity]:
        lowered = text.lower()
        resolved: dict[str, ResolvedEntity] = {}

        # longest aliases first so "support ticket" wins over "ticket"
        for alias in sorted(self.aliases, key=len, reverse=True):
            name = self.aliases[alias]
            if name in resolved or not _contains_phrase(lowered, alias):
                continue
            exact = alias in (name.lower(), name.replace("_", " ").lower())
            resolved[name] = ResolvedEntity(
                entity=self.entities[name],
                confidence=1.0 if exact else 0.95,
                matched_alias=alias,
                match_type="exact" if exact else "alias",
            )

        if not resolved:
            for word in re.findall(r"[a-z0-9_]+", lowered):
                if len(word) < 3:
                    continue
                for name, ref in self.entities.items():
                    if name in resolved:
                        continue
                    n = name.lower()
                    if word in n or n in word:
                        resolved[name] = ResolvedEntity(
                            entity=ref, confidence=0.7, matched_alias=word, match_type="fuzzy"
                        )

        return sorted(resolved.values(), key=lambda r: r.confidence, reverse=True)
