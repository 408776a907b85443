import asyncio
import logging
import time
from typing import List, Optional, Protocol
from uuid import UUID

from qdrant_client import QdrantClient, models

from .config import Settings
from .errors import EmbeddingError, VectorStoreError
from .metrics import MetricsCollector
from .models import DEFAULT_LIMIT, DEFAULT_THRESHOLD, Memory, SearchRequest, SearchResult
from .qdrant_utils import ensure_collection_exists

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: List[str]) -> List[List[float]]: ...


class QdrantMemorySearch:
    """Semantic indexing and nearest-neighbour retrieval of memories."""

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str,
        embedder: Embedder,
        embedding_dim: int = 1536,
        enforce_threshold: bool = False,
        metrics: Optional[MetricsCollector] = None,
        default_limit: int = DEFAULT_LIMIT,
        default_threshold: float = DEFAULT_THRESHOLD,
    ):
        self.client = client
        self.collection_name = collection_name
        self.embedder = embedder
        self.embedding_dim = embedding_dim
        self.enforce_threshold = enforce_threshold
        self.metrics = metrics
        self.default_limit = default_limit
        self.default_threshold = default_threshold
        ensure_collection_exists(client, collection_name, embedding_dim)

    @classmethod
    def from_settings(
        cls,
        client: QdrantClient,
        embedder: Embedder,
        settings: Settings,
        metrics: Optional[MetricsCollector] = None,
    ) -> "QdrantMemorySearch":
        return cls(
            client,
            settings.qdrant_collection,
            embedder,
            embedding_dim=settings.embedding_dim,
            enforce_threshold=settings.enforce_similarity_threshold,
            metrics=metrics,
            default_limit=settings.max_results,
            default_threshold=settings.similarity_threshold,
        )

    def _build_filter(self, request: SearchRequest) -> Optional[models.Filter]:
        """Category must equal, tags must share at least one value; both must hold."""
        must = []
        if request.category_filter is not None:
            must.append(
                models.FieldCondition(key="metadata.category", match=models.MatchValue(value=request.category_filter))
            )
        if request.tags_filter is not None:
            must.append(
                models.FieldCondition(key="metadata.tags", match=models.MatchAny(any=request.tags_filter))
            )
        return models.Filter(must=must) if must else None

    async def search(self, request: SearchRequest) -> SearchResult:
        start_time = time.perf_counter()
        request = request.with_defaults(self.default_limit, self.default_threshold)
        query_embedding = await self.embedder.embed(request.query)

        search_args = {
            "collection_name": self.collection_name,
            "query": query_embedding,
            "query_filter": self._build_filter(request),
            "limit": request.limit,
            "with_payload": True,
        }
        # The threshold is advisory unless enforcement is switched on
        if self.enforce_threshold:
            search_args["score_threshold"] = request.threshold

        query_start = time.perf_counter()
        try:
            response = await asyncio.to_thread(self.client.query_points, **search_args)
        except Exception as e:
            logger.error(f"Qdrant search failed: {e}", exc_info=True)
            raise VectorStoreError("Vector search failed", e)
        finally:
            if self.metrics is not None:
                self.metrics.record_qdrant_query((time.perf_counter() - query_start) * 1000)

        memories = [Memory.from_payload(point.payload or {}, score=point.score) for point in response.points]

        return SearchResult(
            memories=memories,
            query_embedding=query_embedding,
            cache_hits=0,
            total_results=len(memories),
            search_time_ms=int((time.perf_counter() - start_time) * 1000),
            source="vector",
        )

    async def index(self, memory: Memory) -> None:
        """Upserts the memory as a point keyed by its id, embedding it first if needed."""
        embedding = memory.embedding
        if embedding is None:
            embedding = await self.embedder.embed(memory.content)
        if len(embedding) != self.embedding_dim:
            raise EmbeddingError(
                f"Memory {memory.id} has a {len(embedding)}-dimension embedding, expected {self.embedding_dim}"
            )

        point = models.PointStruct(id=str(memory.id), vector=embedding, payload=memory.to_payload())
        try:
            await asyncio.to_thread(
                self.client.upsert,
                collection_name=self.collection_name,
                points=[point],
            )
        except Exception as e:
            logger.error(f"Qdrant upsert failed for {memory.id}: {e}")
            raise VectorStoreError(f"Failed to index memory {memory.id}", e)

    async def delete(self, memory_id: str) -> None:
        """Removes the point if present. Ids that cannot be point ids are treated as absent."""
        try:
            point_id = str(UUID(str(memory_id)))
        except ValueError:
            return
        try:
            await asyncio.to_thread(
                self.client.delete,
                collection_name=self.collection_name,
                points_selector=models.PointIdsList(points=[point_id]),
            )
        except Exception as e:
            logger.error(f"Qdrant delete failed for {memory_id}: {e}")
            raise VectorStoreError(f"Failed to delete memory {memory_id}", e)

    async def update_embedding(self, memory_id: str, embedding: List[float]) -> None:
        """Replaces a point's vector, keeping its payload. Missing points are left alone."""
        if len(embedding) != self.embedding_dim:
            raise EmbeddingError(f"Expected a {self.embedding_dim}-dimension embedding, got {len(embedding)}")
        try:
            point_id = str(UUID(str(memory_id)))
        except ValueError:
            return
        try:
            existing = await asyncio.to_thread(
                self.client.retrieve,
                collection_name=self.collection_name,
                ids=[point_id],
                with_payload=True,
                with_vectors=False,
            )
            if not existing:
                return
            # Qdrant replaces whole points, so the payload is written back unchanged
            await asyncio.to_thread(
                self.client.upsert,
                collection_name=self.collection_name,
                points=[models.PointStruct(id=point_id, vector=embedding, payload=existing[0].payload)],
            )
        except Exception as e:
            logger.error(f"Qdrant embedding update failed for {memory_id}: {e}")
            raise VectorStoreError(f"Failed to update embedding for {memory_id}", e)

    async def ping(self) -> bool:
        try:
            await asyncio.to_thread(self.client.get_collections)
            return True
        except Exception:
            return False
