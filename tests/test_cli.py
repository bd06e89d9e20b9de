"""
Tests for the bizgraph CLI, with Postgres swapped for in-memory services
"""
from contextlib import asynccontextmanager

import pytest
from click.testing import CliRunner

from bizgraph.cli import main as cli_main
from bizgraph.graph_service import build_services

from conftest import TEST_CONFIG


@pytest.fixture
def services(store, sources):
    return build_services(store, sources, config=TEST_CONFIG)


@pytest.fixture
def runner(services, monkeypatch):
    @asynccontextmanager
    async def fake_services(generate_embeddings=False):
        yield services

    monkeypatch.setattr(cli_main, "graph_services", fake_services)
    return CliRunner()


def test_build_prints_stats(runner):
    result = runner.invoke(cli_main.cli, ["build", "--no-embeddings"])

    assert result.exit_code == 0, result.output
    assert "Total Nodes: 10" in result.output
    assert "HAS_OPPORTUNITY" in result.output


def test_clear_requires_confirmation(runner, store):
    runner.invoke(cli_main.cli, ["build"])

    aborted = runner.invoke(cli_main.cli, ["clear"], input="n\n")
    assert aborted.exit_code != 0
    assert len(store.nodes) == 10

    done = runner.invoke(cli_main.cli, ["clear", "--yes"])
    assert done.exit_code == 0
    assert store.nodes == {}


def test_expand(runner):
    runner.invoke(cli_main.cli, ["build"])

    result = runner.invoke(cli_main.cli, ["expand", "Globex", "--hops", "1"])

    assert result.exit_code == 0, result.output
    assert "Relevant Entities" in result.output


def test_expand_without_match(runner):
    result = runner.invoke(cli_main.cli, ["expand", "nothing matches"])

    assert "No graph entities matched" in result.output


def test_neighbors_unknown_node(runner):
    result = runner.invoke(cli_main.cli, ["neighbors", "missing"])

    assert result.exit_code == 1
    assert "node not found" in result.output
