"""UnifiedRAG: hybrid Redis cache and Qdrant retrieval of stored memories."""

__version__ = "0.1.0"

from .cache import RedisMemoryCache
from .coordinator import RetrievalCoordinator, build_coordinator
from .embeddings import EmbeddingProvider
from .models import (
    CacheStats,
    Memory,
    MemoryMetadata,
    SearchRequest,
    SearchResult,
    StoreRequest,
    StoreResult,
)
from .search import QdrantMemorySearch

__all__ = [
    "RedisMemoryCache",
    "RetrievalCoordinator",
    "build_coordinator",
    "EmbeddingProvider",
    "QdrantMemorySearch",
    "CacheStats",
    "Memory",
    "MemoryMetadata",
    "SearchRequest",
    "SearchResult",
    "StoreRequest",
    "StoreResult",
]
