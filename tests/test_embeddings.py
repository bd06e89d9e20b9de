"""
Tests for embedding providers
"""
import math

import httpx
import pytest

from bizgraph.knowledge_graph.embeddings import HttpEmbedder, StubEmbedder, build_embedder
from bizgraph.knowledge_graph.errors import EmbeddingProviderError


def http_embedder(handler, **kwargs):
    client = httpx.AsyncClient(base_url="http://embed.test/v1", transport=httpx.MockTransport(handler))
    return HttpEmbedder("http://embed.test/v1", model="m", dim=3, client=client, **kwargs)


@pytest.mark.asyncio
async def test_stub_is_deterministic_and_normalized():
    e = StubEmbedder(dim=16)

    a = await e.embed("customer: Acme")
    b = await e.embed("customer: Acme")

    assert a == b
    assert len(a) == 16
    assert math.isclose(sum(x * x for x in a), 1.0)


@pytest.mark.asyncio
async def test_stub_empty_text():
    assert await StubEmbedder(dim=4).embed("") == [0.0] * 4


@pytest.mark.asyncio
async def test_http_embedder_posts_openai_payload():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={"data": [{"embedding": [1, 2, 3]}]})

    e = http_embedder(handler)
    try:
        assert await e.embed("hello") == [1.0, 2.0, 3.0]
    finally:
        await e.aclose()

    assert seen["path"] == "/v1/embeddings"
    assert b'"input":["hello"]' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_http_error_becomes_provider_error():
    e = http_embedder(lambda request: httpx.Response(401, json={"error": "bad key"}))

    with pytest.raises(EmbeddingProviderError):
        await e.embed("hello")


@pytest.mark.asyncio
async def test_malformed_payload_becomes_provider_error():
    e = http_embedder(lambda request: httpx.Response(200, json={"data": []}))

    with pytest.raises(EmbeddingProviderError):
        await e.embed("hello")


def test_build_embedder_defaults_to_stub():
    e = build_embedder(url=None, model="m", api_key=None, dim=32)

    assert isinstance(e, StubEmbedder)
    assert e.dim == 32


def test_build_embedder_prefers_url():
    e = build_embedder(url="http://embed.test/v1", model="m", api_key="k", dim=8)

    assert isinstance(e, HttpEmbedder)
    assert e.dim == 8
