from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .errors import EmbeddingProviderError


class Embedder(Protocol):
    dim: int

    async def embed(self, text: str) -> list[float]: ...


@dataclass
class StubEmbedder:
    """Deterministic byte-hash embedder; no model, no network."""

    dim: int = 1536

    async def embed(self, text: str) -> list[float]:
        v = [0.0] * self.dim
        b = text.encode("utf-8", errors="ignore")
        for i, ch in enumerate(b):
            v[(i + ch) % self.dim] += 1.0
        # normalize
        norm = sum(x * x for x in v) ** 0.5
        if norm:
            v = [x / norm for x in v]
        return v


TransientHttpError = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


class HttpEmbedder:
    """OpenAI-compatible `/embeddings` client.

    Keep one instance per process; it owns a pooled httpx.AsyncClient.
    """

    def __init__(
        self,
        base_url: str,
        *,
        model: str,
        api_key: str | None = None,
        dim: int = 1536,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.dim = dim
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(connect=10.0, read=60.0, write=20.0, pool=10.0),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        reraise=True,
        stop=stop_after_attempt(4),
        wait=wait_exponential_jitter(initial=0.5, max=8.0),
        retry=retry_if_exception_type(TransientHttpError),
    )
    async def _post(self, text: str) -> dict:
        resp = await self._client.post("/embeddings", json={"model": self.model, "input": [text]})
        resp.raise_for_status()
        return resp.json()

    async def embed(self, text: str) -> list[float]:
        try:
            payload = await self._post(text)
            return [float(x) for x in payload["data"][0]["embedding"]]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingProviderError(f"embedding request failed: {e}") from e


class SentenceTransformersEmbedder:
    def __init__(self, model_name: str):
        from sentence_transformers import SentenceTransformer

        self._m = SentenceTransformer(model_name)
        self.dim = int(self._m.get_sentence_embedding_dimension() or 384)

    async def embed(self, text: str) -> list[float]:
        try:
            vec = await asyncio.to_thread(self._m.encode, [text], normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingProviderError(f"local embedding failed: {e}") from e
        return [float(x) for x in vec[0]]


def build_embedder(
    *,
    url: str | None,
    model: str,
    api_key: str | None,
    dim: int,
    st_model: str | None = None,
) -> Embedder:
    if url:
        return HttpEmbedder(url, model=model, api_key=api_key, dim=dim)
    if st_model:
        return SentenceTransformersEmbedder(st_model)
    return StubEmbedder(dim=dim)
