"""
Tests for extraction config validation and settings
"""
import pytest

from bizgraph.knowledge_graph.config import (
    DEFAULT_EDGE_CONFIGS,
    check_identifier,
    default_extraction_config,
    quote_ident,
    validate_edge_config,
    validate_node_config,
)
from bizgraph.knowledge_graph.errors import ConfigurationError
from bizgraph.knowledge_graph.models import EdgeExtractionConfig, ForeignKey, NodeExtractionConfig
from bizgraph.settings import BizGraphSettings


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["sample_customers", "_tmp", "Col2"])
    def test_plain_identifiers(self, name):
        assert check_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "2col", "a-b", 'x"; drop', "a b", "schema.table"])
    def test_rejected(self, name):
        with pytest.raises(ConfigurationError):
            check_identifier(name)

    def test_quote(self):
        assert quote_ident("customer_id") == '"customer_id"'


class TestDefaults:
    def test_default_configs_validate(self):
        config = default_extraction_config()
        for node in config.nodes:
            validate_node_config(node)
        for edge in config.edges:
            validate_edge_config(edge)
        assert len(config.nodes) == 12
        assert len(config.edges) == 7

    def test_edge_endpoints_are_configured_node_types(self):
        config = default_extraction_config()
        types = {n.node_type for n in config.nodes}
        for edge in config.edges:
            assert edge.source_node_type in types
            assert edge.target_node_type in types

    def test_product_edges_start_at_referenced_record(self):
        by_name = {e.name: e for e in DEFAULT_EDGE_CONFIGS}

        assert by_name["product_belongs_to_category"].source_node_type == "category"
        assert by_name["product_supplied_by"].source_node_type == "supplier"
        assert by_name["product_supplied_by"].target_node_type == "nw_product"

    def test_id_column_lookup(self):
        config = default_extraction_config()
        assert config.id_column_for("sample_customers") == "id"
        assert config.id_column_for("unknown") == "id"


class TestValidation:
    def test_node_type_required(self):
        with pytest.raises(ConfigurationError):
            validate_node_config(NodeExtractionConfig("sample_customers", "", "name"))

    def test_bad_property_column(self):
        with pytest.raises(ConfigurationError):
            validate_node_config(
                NodeExtractionConfig("t", "x", "name", property_columns=("ok", "not ok"))
            )

    def test_edge_needs_relationship_type(self):
        cfg = EdgeExtractionConfig("e", "", "a", "b", foreign_key=ForeignKey("t", "a_id"))
        with pytest.raises(ConfigurationError):
            validate_edge_config(cfg)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            check_identifier("1bad")


class TestSettings:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("BIZGRAPH_BIND_PORT", "9100")
        monkeypatch.setenv("BIZGRAPH_GENERATE_EMBEDDINGS", "true")

        s = BizGraphSettings()

        assert s.bind_port == 9100
        assert s.generate_embeddings is True

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BIZGRAPH_API_KEY", raising=False)
        s = BizGraphSettings()

        assert s.api_key is None
        assert s.default_max_hops == 2
        assert s.max_expanded_nodes == 20
