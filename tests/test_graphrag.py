"""
Tests for GraphRAG-lite query expansion, entity matching and context rendering
"""
import json
from unittest.mock import AsyncMock

import pytest

from bizgraph.knowledge_graph.entities import AliasEntityResolver
from bizgraph.knowledge_graph.errors import KnowledgeGraphError
from bizgraph.knowledge_graph.graphrag import GraphRAGExpander, build_context_from_graph
from bizgraph.knowledge_graph.matcher import EntityMatcher, query_tokens
from bizgraph.knowledge_graph.models import KGEdge, KGNode, TraversalPath
from bizgraph.knowledge_graph.traversal import GraphTraversal

from conftest import TEST_CONFIG
from graph_helpers import add_node, link, node_for


def make_expander(store, sources=None, extractor=None, nodes_per_token=3):
    traversal = GraphTraversal(store)
    matcher = EntityMatcher(traversal, extractor, nodes_per_token=nodes_per_token)
    return GraphRAGExpander(traversal, matcher, sources, TEST_CONFIG)


def names(nodes):
    return [n.name for n in nodes]


class TestExpandQuery:
    @pytest.mark.asyncio
    async def test_no_match_short_circuits(self, built, store):
        result = await make_expander(store).expand_query_with_graph("zzzz qqqq")

        assert result.original_query == "zzzz qqqq"
        assert result.matched_nodes == []
        assert result.expanded_nodes == []
        assert result.paths == []
        assert result.context == ""

    @pytest.mark.asyncio
    async def test_expands_matched_nodes(self, built, store):
        result = await make_expander(store).expand_query_with_graph("Tell me about Acme")

        assert names(result.matched_nodes) == ["Acme Corp", "Acme Deal", "Acme Expansion"]
        # first come first served across seeds, matched nodes included
        assert names(result.expanded_nodes) == ["Acme Deal", "Acme Expansion", "Acme Corp"]
        assert len(result.paths) == 6
        assert result.context.startswith("**Relevant Entities:**\n")
        assert '- customer: "Acme Corp" (email: ops@acme.test, segment: enterprise)' in result.context
        assert "- Acme Deal → Acme Corp → Acme Expansion (HAS_OPPORTUNITY)" in result.context

    @pytest.mark.asyncio
    async def test_expanded_node_cap(self, built, store):
        result = await make_expander(store).expand_query_with_graph("Acme", max_expanded_nodes=1)

        assert names(result.expanded_nodes) == ["Acme Deal"]
        assert len(result.paths) == 6

    @pytest.mark.asyncio
    async def test_only_five_seeds(self, store):
        for i in range(7):
            widget = await add_node(store, f"widget {i}")
            await link(store, widget, await add_node(store, f"part {i}"), "HAS_PART")

        result = await make_expander(store, nodes_per_token=10).expand_query_with_graph(
            "widget", max_hops=1
        )

        assert len(result.matched_nodes) == 7
        assert names(result.expanded_nodes) == [f"part {i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_path_cap(self, store):
        hub = await add_node(store, "hubnode")
        for i in range(12):
            await link(store, hub, await add_node(store, f"spoke {i}"))

        result = await make_expander(store).expand_query_with_graph("hubnode", max_hops=1)

        assert len(result.paths) == 10
        assert len(result.expanded_nodes) == 12

    @pytest.mark.asyncio
    async def test_vanished_seed_is_skipped(self, built, store):
        traversal = GraphTraversal(store)
        ghost = KGNode(id="ghost", type="customer", name="Ghost")
        matcher = AsyncMock()
        matcher.match_query_to_nodes.return_value = [ghost]

        result = await GraphRAGExpander(traversal, matcher).expand_query_with_graph("ghost")

        assert names(result.matched_nodes) == ["Ghost"]
        assert result.expanded_nodes == []
        assert result.context == '**Relevant Entities:**\n- customer: "Ghost"'


class TestContextRendering:
    def test_exact_layout(self):
        acme = KGNode(id="1", type="customer", name="Acme", properties={"segment": "smb", "industry": None})
        deal = KGNode(id="2", type="opportunity", name="Big Deal")
        edge = KGEdge(id="e1", source_id="1", target_id="2", relationship_type="HAS_OPPORTUNITY")
        path = TraversalPath(nodes=[acme], edges=[]).extend(edge, deal)

        text = build_context_from_graph([acme], [deal], [path])

        assert text == (
            "**Relevant Entities:**\n"
            '- customer: "Acme" (segment: smb)\n'
            "\n**Related Entities:**\n"
            '- opportunity: "Big Deal"\n'
            "\n**Relationships:**\n"
            "- Acme → Big Deal (HAS_OPPORTUNITY)"
        )

    def test_only_first_edge_type_is_shown(self):
        a, b, c = (KGNode(id=x, type="t", name=x.upper()) for x in "abc")
        path = (
            TraversalPath(nodes=[a], edges=[])
            .extend(KGEdge(id="1", source_id="a", target_id="b", relationship_type="FIRST"), b)
            .extend(KGEdge(id="2", source_id="b", target_id="c", relationship_type="SECOND"), c)
        )

        text = build_context_from_graph([], [], [path])

        assert text == "\n**Relationships:**\n- A → B → C (FIRST)"

    def test_section_limits(self):
        nodes = [KGNode(id=str(i), type="t", name=f"n{i}") for i in range(12)]
        edge = KGEdge(id="e", source_id="0", target_id="1", relationship_type="R")
        paths = [TraversalPath(nodes=[nodes[0], nodes[1]], edges=[edge]) for _ in range(7)]

        lines = build_context_from_graph(nodes, nodes, paths).splitlines()

        assert sum(1 for line in lines if line.startswith('- t: "')) == 20
        assert sum(1 for line in lines if line.startswith("- n0 → n1")) == 5

    def test_empty(self):
        assert build_context_from_graph([], [], []) == ""


class TestSourceData:
    @pytest.mark.asyncio
    async def test_rows_grouped_by_table(self, built, store, sources):
        expander = make_expander(store, sources)
        nodes = [
            node_for(store, "sample_customers", 2),
            node_for(store, "sample_tickets", 10),
            node_for(store, "sample_customers", 1),
            node_for(store, "sample_customers", 2),
        ]

        rows = await expander.get_source_data_for_nodes(nodes)

        assert [r["id"] for r in rows] == [1, 2, 10]

    @pytest.mark.asyncio
    async def test_failing_table_is_logged_and_skipped(self, built, store, sources, caplog):
        expander = make_expander(store, sources)
        gone = KGNode(id="x", type="invoice", name="INV-1", source_table="sample_gone", source_id="1")

        rows = await expander.get_source_data_for_nodes([gone, node_for(store, "sample_tickets", 10)])

        assert [r["subject"] for r in rows] == ["Login broken"]
        assert "sample_gone" in caplog.text

    @pytest.mark.asyncio
    async def test_without_sources(self, built, store):
        assert await make_expander(store).get_source_data_for_nodes(list(store.nodes.values())) == []


class TestFullContext:
    @pytest.mark.asyncio
    async def test_graph_only(self, built, store, sources):
        full = await make_expander(store, sources).get_full_context("Globex")

        assert full.source_data == []
        assert full.combined_context == full.graph_context.context

    @pytest.mark.asyncio
    async def test_with_source_data(self, built, store, sources):
        full = await make_expander(store, sources).get_full_context("Globex", include_source_data=True)

        assert [r.get("name", r.get("subject")) for r in full.source_data] == [
            "Globex",
            "Globex Renewal",
            "Login broken",
        ]
        head, _, tail = full.combined_context.partition("\n\n**Source Data:**\n")
        assert head == full.graph_context.context
        assert json.loads(tail)[0]["email"] == "it@globex.test"

    @pytest.mark.asyncio
    async def test_no_match_has_no_source_section(self, built, store, sources):
        full = await make_expander(store, sources).get_full_context("nothing here", include_source_data=True)

        assert full.combined_context == ""
        assert full.source_data == []


class TestMatcher:
    def test_query_tokens(self):
        assert query_tokens("What does Acme, Inc. have?") == ["Acme"]
        assert query_tokens("Which tickets with Globex") == ["tickets", "Globex"]

    @pytest.mark.asyncio
    async def test_entity_type_match_comes_first(self, built, store):
        resolver = AliasEntityResolver.from_node_types(c.node_type for c in TEST_CONFIG.nodes)
        matcher = EntityMatcher(GraphTraversal(store), resolver)

        nodes = await matcher.match_query_to_nodes("show open deals for Globex")

        assert names(nodes) == [
            "Acme Deal",
            "Acme Expansion",
            "Globex Renewal",
            "Orphan Deal",
            "Globex",
        ]

    @pytest.mark.asyncio
    async def test_extractor_failure_falls_back_to_tokens(self, built, store):
        extractor = AsyncMock()
        extractor.extract_entities.side_effect = KnowledgeGraphError("model offline")
        matcher = EntityMatcher(GraphTraversal(store), extractor)

        assert names(await matcher.match_query_to_nodes("Initech")) == ["Initech"]

    @pytest.mark.asyncio
    async def test_token_results_are_deduplicated(self, built, store):
        matcher = EntityMatcher(GraphTraversal(store))

        nodes = await matcher.match_query_to_nodes("Acme Acme Expansion")

        assert names(nodes) == ["Acme Corp", "Acme Deal", "Acme Expansion"]


class TestAliasResolver:
    @pytest.fixture
    def resolver(self):
        return AliasEntityResolver.from_node_types(
            ["customer", "opportunity", "ticket", "employee", "public_company"]
        )

    @pytest.mark.asyncio
    async def test_exact_and_alias(self, resolver):
        found = await resolver.extract_entities("Deals for each customer")

        assert [(r.entity.name, r.confidence, r.match_type) for r in found] == [
            ("customer", 1.0, "exact"),
            ("opportunity", 0.95, "alias"),
        ]
        assert found[0].entity.type == "node_type"

    @pytest.mark.asyncio
    async def test_longest_alias_wins(self, resolver):
        (found,) = await resolver.extract_entities("open a support ticket")

        assert found.entity.name == "ticket"
        assert found.matched_alias == "support ticket"

    @pytest.mark.asyncio
    async def test_underscored_type_matches_spaced_text(self, resolver):
        (found,) = await resolver.extract_entities("largest public company by revenue")

        assert found.entity.name == "public_company"
        assert found.confidence == 1.0

    @pytest.mark.asyncio
    async def test_word_boundaries(self, resolver):
        assert await resolver.extract_entities("rep") != []
        assert await resolver.extract_entities("repository") == []

    @pytest.mark.asyncio
    async def test_fuzzy_only_without_direct_hits(self, resolver):
        (found,) = await resolver.extract_entities("oppor")

        assert found.entity.name == "opportunity"
        assert found.confidence == 0.7
        assert found.match_type == "fuzzy"

    @pytest.mark.asyncio
    async def test_custom_aliases(self):
        resolver = AliasEntityResolver()
        resolver.add("customer", ["patron"])

        (found,) = await resolver.extract_entities("top patron")

        assert found.entity.name == "customer"
        assert found.matched_alias == "patron"
