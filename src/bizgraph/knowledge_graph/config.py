"""Extraction mapping from business tables to graph nodes and edges.

FK edges point from the referenced record to the record holding the FK:
`sample_opportunities.customer_id` yields customer -[HAS_OPPORTUNITY]-> opportunity.
"""

from __future__ import annotations

import re

from .errors import ConfigurationError
from .models import (
    EdgeExtractionConfig,
    ExtractionConfig,
    ForeignKey,
    NodeExtractionConfig,
)

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(name: str) -> str:
    """Return `name` if it is a plain SQL identifier, else raise ConfigurationError."""
    if not isinstance(name, str) or not _IDENT.fullmatch(name):
        raise ConfigurationError(f"invalid SQL identifier: {name!r}")
    return name


def quote_ident(name: str) -> str:
    return '"' + check_identifier(name) + '"'


def validate_node_config(cfg: NodeExtractionConfig) -> None:
    if not cfg.node_type:
        raise ConfigurationError(f"{cfg.source_table}: node_type is required")
    for ident in (cfg.source_table, cfg.id_column, cfg.name_column, *cfg.property_columns):
        check_identifier(ident)


def validate_edge_config(cfg: EdgeExtractionConfig) -> None:
    if cfg.foreign_key is None:
        raise ConfigurationError(f"{cfg.name}: foreign_key is required")
    if not cfg.relationship_type:
        raise ConfigurationError(f"{cfg.name}: relationship_type is required")
    fk = cfg.foreign_key
    for ident in (fk.table, fk.source_column, fk.target_column or "id"):
        check_identifier(ident)


DEFAULT_NODE_CONFIGS: tuple[NodeExtractionConfig, ...] = (
    # core business entities
    NodeExtractionConfig(
        source_table="sample_customers",
        node_type="customer",
        name_column="name",
        property_columns=("email", "company", "segment", "industry", "health_score", "churn_risk"),
    ),
    NodeExtractionConfig(
        source_table="sample_employees",
        node_type="employee",
        name_column="name",
        property_columns=("email", "department", "title", "status"),
    ),
    # products
    NodeExtractionConfig(
        source_table="sample_products",
        node_type="product",
        name_column="name",
        property_columns=("sku", "category", "price", "stock_quantity"),
    ),
    NodeExtractionConfig(
        source_table="nw_products",
        node_type="nw_product",
        name_column="product_name",
        property_columns=("quantity_per_unit", "unit_price", "units_in_stock", "discontinued"),
    ),
    NodeExtractionConfig(
        source_table="nw_categories",
        node_type="category",
        name_column="category_name",
        property_columns=("description",),
    ),
    NodeExtractionConfig(
        source_table="nw_suppliers",
        node_type="supplier",
        name_column="company_name",
        property_columns=("contact_name", "city", "country", "phone"),
    ),
    # sales & CRM
    NodeExtractionConfig(
        source_table="sample_opportunities",
        node_type="opportunity",
        name_column="name",
        property_columns=("stage", "amount", "probability", "owner"),
    ),
    NodeExtractionConfig(
        source_table="sample_tickets",
        node_type="ticket",
        name_column="subject",
        property_columns=("priority", "status", "category"),
    ),
    # orders have no name column; the id doubles as the name
    NodeExtractionConfig(
        source_table="nw_orders",
        node_type="order",
        name_column="id",
        property_columns=("order_date", "shipped_date", "freight", "ship_city", "ship_country"),
    ),
    # public data
    NodeExtractionConfig(
        source_table="public_companies",
        node_type="public_company",
        name_column="name",
        property_columns=(
            "ticker",
            "sector",
            "industry",
            "market_cap",
            "pe_ratio",
            "revenue",
            "employees",
            "country",
            "last_price",
        ),
    ),
    NodeExtractionConfig(
        source_table="industry_statistics",
        node_type="industry",
        name_column="naics_title",
        property_columns=("naics_code", "year", "establishments", "employment", "annual_payroll", "average_wage"),
    ),
    NodeExtractionConfig(
        source_table="economic_indicators",
        node_type="economic_indicator",
        name_column="indicator_name",
        property_columns=("indicator", "value", "date", "unit", "frequency"),
    ),
)


DEFAULT_EDGE_CONFIGS: tuple[EdgeExtractionConfig, ...] = (
    EdgeExtractionConfig(
        name="customer_has_opportunity",
        relationship_type="HAS_OPPORTUNITY",
        source_node_type="customer",
        target_node_type="opportunity",
        foreign_key=ForeignKey(table="sample_opportunities", source_column="customer_id"),
    ),
    EdgeExtractionConfig(
        name="customer_has_ticket",
        relationship_type="HAS_TICKET",
        source_node_type="customer",
        target_node_type="ticket",
        foreign_key=ForeignKey(table="sample_tickets", source_column="customer_id"),
    ),
    EdgeExtractionConfig(
        name="customer_placed_order",
        relationship_type="PLACED_ORDER",
        source_node_type="customer",
        target_node_type="order",
        foreign_key=ForeignKey(table="nw_orders", source_column="customer_id"),
    ),
    EdgeExtractionConfig(
        name="employee_processed_order",
        relationship_type="PROCESSED",
        source_node_type="employee",
        target_node_type="order",
        foreign_key=ForeignKey(table="nw_orders", source_column="employee_id"),
    ),
    EdgeExtractionConfig(
        name="product_belongs_to_category",
        relationship_type="BELONGS_TO",
        source_node_type="category",
        target_node_type="nw_product",
        foreign_key=ForeignKey(table="nw_products", source_column="category_id"),
    ),
    EdgeExtractionConfig(
        name="product_supplied_by",
        relationship_type="SUPPLIED_BY",
        source_node_type="supplier",
        target_node_type="nw_product",
        foreign_key=ForeignKey(table="nw_products", source_column="supplier_id"),
    ),
    EdgeExtractionConfig(
        name="employee_reports_to",
        relationship_type="REPORTS_TO",
        source_node_type="employee",
        target_node_type="employee",
        foreign_key=ForeignKey(table="sample_employees", source_column="manager_id"),
    ),
)


def default_extraction_config() -> ExtractionConfig:
    return ExtractionConfig(nodes=DEFAULT_NODE_CONFIGS, edges=DEFAULT_EDGE_CONFIGS)
