import asyncio
import logging
import time
from typing import Dict, List, Optional

from .cache import RedisMemoryCache, create_redis_client
from .config import Settings
from .embeddings import EmbeddingProvider
from .errors import UnifiedRagError
from .metrics import MetricsCollector
from .models import (
    DEFAULT_IMPORTANCE,
    DEFAULT_LIMIT,
    DEFAULT_THRESHOLD,
    CacheStats,
    Memory,
    MemoryMetadata,
    SearchRequest,
    SearchResult,
    StoreRequest,
    StoreResult,
)
from .qdrant_utils import create_qdrant_client
from .search import QdrantMemorySearch

logger = logging.getLogger(__name__)


class RetrievalCoordinator:
    """
    Composes the Redis cache and the Qdrant index behind one API.

    Search is a two-tier waterfall: in hybrid mode the cache scan answers
    when it finds anything, otherwise the vector index does. Results from the
    two tiers are never merged.

    Writes go to both stores without a transaction. The contract is eventually
    consistent and best-effort: a reader may see a record in one store and not
    yet (or no longer) in the other, and a failed index write after a
    successful cache write is reported, not rolled back.
    """

    def __init__(
        self,
        cache: RedisMemoryCache,
        search: QdrantMemorySearch,
        instance_id: str,
        metrics: Optional[MetricsCollector] = None,
        default_limit: int = DEFAULT_LIMIT,
        default_threshold: float = DEFAULT_THRESHOLD,
    ):
        self.cache = cache
        self.search_layer = search
        self.instance_id = instance_id
        self.metrics = metrics or MetricsCollector()
        self.default_limit = default_limit
        self.default_threshold = default_threshold

    async def search(self, request: SearchRequest) -> SearchResult:
        start_time = time.perf_counter()
        # Both tiers see the same limit and threshold
        request = request.with_defaults(self.default_limit, self.default_threshold)
        try:
            if not request.hybrid_mode:
                return await self._vector_search(request)

            warnings: List[str] = []
            try:
                cached = await self.cache.search_cached(request, warnings)
            except UnifiedRagError as e:
                logger.warning(f"Cache search failed, falling back to vector search: {e}")
                warnings.append(f"cache search failed: {e}")
                cached = []

            if cached:
                self.metrics.record_cache_hit()
                logger.info(f"[CACHE HIT] for query: {request.query}")
                self.metrics.record_soft_failures(len(warnings))
                return SearchResult(
                    memories=cached,
                    cache_hits=len(cached),
                    total_results=len(cached),
                    search_time_ms=int((time.perf_counter() - start_time) * 1000),
                    source="cache",
                    warnings=warnings,
                )

            self.metrics.record_cache_miss()
            logger.info(f"[CACHE MISS] for query: {request.query}")
            result = await self._vector_search(request)
            result.warnings = warnings + result.warnings
            self.metrics.record_soft_failures(len(warnings))
            return result
        finally:
            self.metrics.record_search_latency((time.perf_counter() - start_time) * 1000)

    async def _vector_search(self, request: SearchRequest) -> SearchResult:
        try:
            return await self.search_layer.search(request)
        except UnifiedRagError:
            self.metrics.record_error("vector_search_failed")
            raise

    async def store(self, request: StoreRequest) -> StoreResult:
        """Creates a memory, embeds it, then writes it to the cache and the index."""
        memory = Memory(
            instance_id=self.instance_id,
            content=request.content,
            metadata=MemoryMetadata(
                category=request.category,
                tags=request.tags,
                importance=request.importance if request.importance is not None else DEFAULT_IMPORTANCE,
                chain_id=request.chain_id,
                parent_id=request.parent_id,
                framework=request.framework,
            ),
        )
        memory_id = str(memory.id)
        warnings: List[str] = []

        memory.embedding = await self.search_layer.embedder.embed(request.content)

        # No TTL: primary records do not expire
        await self.cache.set(memory_id, memory, ttl=None, warnings=warnings)

        indexed = True
        try:
            await self.search_layer.index(memory)
        except UnifiedRagError as e:
            indexed = False
            self.metrics.record_error("index_failed")
            logger.warning(f"Memory {memory_id} cached but not indexed: {e}")
            warnings.append(f"memory cached but not indexed: {e}")

        self.metrics.record_store()
        self.metrics.record_soft_failures(len(warnings))
        logger.info(f"Stored memory {memory_id} (indexed={indexed}, warnings={len(warnings)})")
        return StoreResult(
            memory_id=memory.id,
            cached=True,
            indexed=indexed,
            embedding_generated=True,
            warnings=warnings,
        )

    async def get(self, memory_id: str, warnings: Optional[List[str]] = None) -> Optional[Memory]:
        return await self.cache.get(memory_id, warnings)

    async def forget(self, memory_id: str) -> List[str]:
        """Removes a memory from both stores. Both removals are attempted; the first error is raised."""
        warnings: List[str] = []
        first_error: Optional[UnifiedRagError] = None
        try:
            await self.cache.invalidate(memory_id, warnings)
        except UnifiedRagError as e:
            first_error = e
        try:
            await self.search_layer.delete(memory_id)
        except UnifiedRagError as e:
            first_error = first_error or e
        if first_error is not None:
            self.metrics.record_error("forget_failed")
            raise first_error
        self.metrics.record_soft_failures(len(warnings))
        return warnings

    async def stats(self) -> CacheStats:
        return await self.cache.get_stats()

    async def ping(self) -> Dict[str, str]:
        checks = {}
        try:
            checks["redis_cache"] = "ok" if await self.cache.ping() else "degraded"
        except Exception as e:
            checks["redis_cache"] = f"degraded: {str(e)[:100]}"
        checks["qdrant_index"] = "ok" if await self.search_layer.ping() else "degraded"
        return checks

    async def close(self) -> None:
        """Releases the Redis pool and the Qdrant client."""
        # A client built on an explicit pool does not close it by default
        await self.cache.client.aclose(close_connection_pool=True)
        self.search_layer.client.close()


async def build_coordinator(settings: Settings) -> RetrievalCoordinator:
    """Wires clients, layers and coordinator from explicit settings."""
    redis_client = create_redis_client(settings)
    qdrant_client = create_qdrant_client(settings)
    metrics = MetricsCollector()
    embedder = EmbeddingProvider(settings, redis_client=redis_client)
    # Collection bootstrap is blocking I/O
    search = await asyncio.to_thread(
        QdrantMemorySearch.from_settings, qdrant_client, embedder, settings, metrics
    )
    cache = RedisMemoryCache.from_settings(redis_client, settings)
    return RetrievalCoordinator(
        cache,
        search,
        settings.instance_id,
        metrics=metrics,
        default_limit=settings.max_results,
        default_threshold=settings.similarity_threshold,
    )
