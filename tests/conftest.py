import hashlib
import math
import re
from typing import List

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from qdrant_client import QdrantClient

from unified_rag.cache import RedisMemoryCache
from unified_rag.coordinator import RetrievalCoordinator
from unified_rag.metrics import MetricsCollector
from unified_rag.search import QdrantMemorySearch

DIM = 1536
INSTANCE = "CC"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubEmbedder:
    """Deterministic bag-of-words vectors; texts sharing words score higher."""

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls: List[str] = []

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        if not any(vec):
            vec[0] = 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec]

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return self.vector(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [await self.embed(t) for t in texts]


@pytest.fixture
def redis_client():
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def embedder():
    return StubEmbedder()


@pytest.fixture
def qdrant():
    client = QdrantClient(location=":memory:")
    yield client
    client.close()


@pytest.fixture
def cache(redis_client):
    return RedisMemoryCache(redis_client, INSTANCE)


@pytest.fixture
def search(qdrant, embedder):
    return QdrantMemorySearch(qdrant, "test_memories", embedder, embedding_dim=DIM, metrics=MetricsCollector())


@pytest.fixture
def coordinator(cache, search):
    return RetrievalCoordinator(cache, search, INSTANCE)
