"""
Pytest configuration and fixtures
"""
import copy

import pytest
import pytest_asyncio

from bizgraph.knowledge_graph.memory_store import InMemoryGraphStore, InMemorySourceTables
from bizgraph.knowledge_graph.models import (
    EdgeExtractionConfig,
    ExtractionConfig,
    ForeignKey,
    NodeExtractionConfig,
)
from bizgraph.knowledge_graph.pipeline import KnowledgeGraphPipeline


BUSINESS_TABLES = {
    "sample_customers": [
        {"id": 1, "name": "Acme Corp", "email": "ops@acme.test", "segment": "enterprise", "industry": None},
        {"id": 2, "name": "Globex", "email": "it@globex.test", "segment": "smb", "industry": "energy"},
        {"id": 3, "name": "Initech", "email": "pm@initech.test", "segment": "smb", "industry": "software"},
    ],
    "sample_opportunities": [
        {"id": 5, "name": "Acme Deal", "customer_id": 1, "stage": "proposal", "amount": 50000},
        {"id": 6, "name": "Globex Renewal", "customer_id": 2, "stage": "won", "amount": 12000},
        {"id": 7, "name": "Acme Expansion", "customer_id": 1, "stage": "discovery", "amount": 80000},
        {"id": 8, "name": "Orphan Deal", "customer_id": None, "stage": "lost", "amount": 0},
    ],
    "sample_tickets": [
        {"id": 10, "subject": "Login broken", "customer_id": 2, "priority": "high"},
    ],
    "sample_employees": [
        {"id": 100, "name": "Dana Scott", "title": "VP Sales", "manager_id": None},
        {"id": 101, "name": "Lee Park", "title": "Account Exec", "manager_id": 100},
    ],
}


TEST_CONFIG = ExtractionConfig(
    nodes=(
        NodeExtractionConfig(
            source_table="sample_customers",
            node_type="customer",
            name_column="name",
            property_columns=("email", "segment", "industry"),
        ),
        NodeExtractionConfig(
            source_table="sample_opportunities",
            node_type="opportunity",
            name_column="name",
            property_columns=("stage", "amount"),
        ),
        NodeExtractionConfig(
            source_table="sample_tickets",
            node_type="ticket",
            name_column="subject",
            property_columns=("priority",),
        ),
        NodeExtractionConfig(
            source_table="sample_employees",
            node_type="employee",
            name_column="name",
            property_columns=("title",),
        ),
    ),
    edges=(
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
            weight=0.5,
        ),
        EdgeExtractionConfig(
            name="employee_reports_to",
            relationship_type="REPORTS_TO",
            source_node_type="employee",
            target_node_type="employee",
            foreign_key=ForeignKey(table="sample_employees", source_column="manager_id"),
        ),
    ),
)


@pytest.fixture
def store():
    return InMemoryGraphStore()


@pytest.fixture
def sources():
    return InMemorySourceTables(tables=copy.deepcopy(BUSINESS_TABLES))


@pytest.fixture
def pipeline(store, sources):
    return KnowledgeGraphPipeline(store, sources, TEST_CONFIG)


@pytest_asyncio.fixture
async def built(pipeline):
    """Pipeline after one full build over BUSINESS_TABLES."""
    await pipeline.build()
    return pipeline
