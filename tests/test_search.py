import pytest
from qdrant_client import models as qmodels

from unified_rag.config import Settings
from unified_rag.errors import EmbeddingError, VectorStoreError
from unified_rag.models import Memory, MemoryMetadata, SearchRequest
from unified_rag.search import QdrantMemorySearch

from conftest import DIM, StubEmbedder


def make_memory(content: str, **meta) -> Memory:
    return Memory(instance_id="CC", content=content, metadata=MemoryMetadata(**meta))


def test_construction_creates_missing_collection(qdrant, embedder):
    assert not qdrant.collection_exists("fresh")

    QdrantMemorySearch(qdrant, "fresh", embedder, embedding_dim=DIM)

    info = qdrant.get_collection("fresh")
    assert info.config.params.vectors.size == DIM
    assert info.config.params.vectors.distance == qmodels.Distance.COSINE


def test_existing_collection_is_accepted_without_validation(qdrant, embedder):
    qdrant.create_collection(
        "legacy",
        vectors_config=qmodels.VectorParams(size=8, distance=qmodels.Distance.DOT),
    )

    QdrantMemorySearch(qdrant, "legacy", embedder, embedding_dim=DIM)

    assert qdrant.get_collection("legacy").config.params.vectors.size == 8


def test_bootstrap_failure_raises_vector_store_error(embedder):
    class Unreachable:
        def collection_exists(self, collection_name):
            raise ConnectionError("connection refused")

    with pytest.raises(VectorStoreError):
        QdrantMemorySearch(Unreachable(), "x", embedder)


@pytest.mark.anyio
async def test_index_then_search_returns_nearest_first(search, embedder):
    target = make_memory("outage postmortem for the billing cluster", category="ops")
    unrelated = make_memory("recipe for sourdough bread", category="kitchen")
    await search.index(target)
    await search.index(unrelated)

    result = await search.search(SearchRequest(query="billing outage", limit=5))

    assert result.memories[0].id == target.id
    assert result.memories[0].content == target.content
    assert result.memories[0].relevance_score > result.memories[1].relevance_score
    assert result.total_results == 2
    assert result.cache_hits == 0
    assert result.source == "vector"
    assert result.query_embedding == embedder.vector("billing outage")
    assert result.search_time_ms >= 0


@pytest.mark.anyio
async def test_search_uses_existing_embedding_when_present(search, embedder):
    memory = make_memory("anything", category="ops")
    memory.embedding = embedder.vector("completely different words")

    await search.index(memory)

    assert embedder.calls == []


@pytest.mark.anyio
async def test_search_filters_are_conjunctive(search):
    both = make_memory("incident review", category="ops", tags=["incident", "review"])
    wrong_category = make_memory("incident review", category="dev", tags=["incident"])
    wrong_tags = make_memory("incident review", category="ops", tags=["planning"])
    for m in (both, wrong_category, wrong_tags):
        await search.index(m)

    result = await search.search(
        SearchRequest(query="incident", category_filter="ops", tags_filter=["incident", "other"])
    )

    assert [m.id for m in result.memories] == [both.id]


@pytest.mark.anyio
async def test_search_respects_limit(search):
    for i in range(5):
        await search.index(make_memory(f"note number {i}"))

    result = await search.search(SearchRequest(query="note", limit=2))

    assert len(result.memories) == 2


@pytest.mark.anyio
async def test_threshold_is_advisory_by_default(search, qdrant, embedder):
    await search.index(make_memory("alpha beta gamma"))
    await search.index(make_memory("unrelated words entirely"))

    advisory = await search.search(SearchRequest(query="alpha", threshold=0.99))
    assert len(advisory.memories) == 2

    strict = QdrantMemorySearch(qdrant, "test_memories", embedder, embedding_dim=DIM, enforce_threshold=True)
    enforced = await strict.search(SearchRequest(query="alpha", threshold=0.3))
    assert [m.content for m in enforced.memories] == ["alpha beta gamma"]


@pytest.mark.anyio
async def test_index_rejects_wrong_dimension(search):
    memory = make_memory("short vector")
    memory.embedding = [0.1, 0.2, 0.3]

    with pytest.raises(EmbeddingError):
        await search.index(memory)


@pytest.mark.anyio
async def test_delete_is_idempotent(search, qdrant):
    memory = make_memory("to be deleted")
    await search.index(memory)

    await search.delete(str(memory.id))
    await search.delete(str(memory.id))
    await search.delete("not-a-uuid")

    assert qdrant.retrieve("test_memories", ids=[str(memory.id)]) == []


@pytest.mark.anyio
async def test_update_embedding_keeps_payload(search, qdrant, embedder):
    memory = make_memory("original text", category="ops")
    await search.index(memory)
    new_vector = embedder.vector("replacement vector words")

    await search.update_embedding(str(memory.id), new_vector)

    point = qdrant.retrieve("test_memories", ids=[str(memory.id)], with_payload=True, with_vectors=True)[0]
    assert point.payload["content"] == "original text"
    assert point.payload["metadata"]["category"] == "ops"
    assert point.vector == pytest.approx(new_vector, abs=1e-5)


@pytest.mark.anyio
async def test_update_embedding_missing_point_is_noop(search, qdrant, embedder):
    missing = make_memory("never indexed")

    await search.update_embedding(str(missing.id), embedder.vector("x"))

    assert qdrant.count("test_memories").count == 0


@pytest.mark.anyio
async def test_query_failure_is_typed(qdrant):
    search = QdrantMemorySearch(qdrant, "test_memories", StubEmbedder(), embedding_dim=DIM)

    def boom(**_kwargs):
        raise RuntimeError("qdrant went away")

    search.client = type("Broken", (), {"query_points": staticmethod(boom)})()

    with pytest.raises(VectorStoreError) as excinfo:
        await search.search(SearchRequest(query="anything"))
    assert "qdrant went away" in str(excinfo.value)


@pytest.mark.anyio
async def test_configured_threshold_applies_when_request_leaves_it_unset(qdrant, embedder):
    settings = Settings(
        _env_file=None, similarity_threshold=0.3, enforce_similarity_threshold=True, qdrant_collection="strict"
    )
    strict = QdrantMemorySearch.from_settings(qdrant, embedder, settings)
    await strict.index(make_memory("alpha beta gamma"))
    await strict.index(make_memory("unrelated words entirely"))

    unset = await strict.search(SearchRequest(query="alpha"))
    tightened = await strict.search(SearchRequest(query="alpha", threshold=0.9))

    assert [m.content for m in unset.memories] == ["alpha beta gamma"]
    assert tightened.memories == []
