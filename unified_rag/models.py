# unified_rag/models.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import SerializationError

DEFAULT_LIMIT = 20
DEFAULT_THRESHOLD = 0.7
DEFAULT_IMPORTANCE = 5

# relevance_score only lives on search results
_PERSIST_EXCLUDE = {"relevance_score"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryMetadata(BaseModel):
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    importance: int = DEFAULT_IMPORTANCE
    chain_id: Optional[str] = None
    parent_id: Optional[UUID] = None
    framework: Optional[str] = None
    source: str = "unified_rag"


class Memory(BaseModel):
    id: UUID = Field(default_factory=uuid4, frozen=True)
    instance_id: str
    content: str
    embedding: Optional[List[float]] = None
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    access_count: int = 0
    relevance_score: float = 0.0

    def to_json(self) -> str:
        return self.model_dump_json(exclude=_PERSIST_EXCLUDE)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe dict stored as the Qdrant point payload."""
        return self.model_dump(mode="json", exclude=_PERSIST_EXCLUDE)

    @classmethod
    def from_json(cls, raw: str) -> "Memory":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise SerializationError("Stored memory is not valid JSON for Memory", e)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], score: Optional[float] = None) -> "Memory":
        try:
            memory = cls.model_validate(payload)
        except ValidationError as e:
            raise SerializationError("Vector payload does not describe a Memory", e)
        if score is not None:
            memory.relevance_score = score
        return memory


_memory_list = TypeAdapter(List[Memory])


def dump_memory_list(memories: List[Memory]) -> str:
    return "[" + ",".join(m.to_json() for m in memories) + "]"


def load_memory_list(raw: str) -> List[Memory]:
    try:
        return _memory_list.validate_json(raw)
    except ValidationError as e:
        raise SerializationError("Cached result list could not be decoded", e)


class SearchRequest(BaseModel):
    query: str
    # None falls back to the configured MAX_RESULTS / SIMILARITY_THRESHOLD
    limit: Optional[int] = Field(None, ge=1)
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    category_filter: Optional[str] = None
    tags_filter: Optional[List[str]] = None
    instance_filter: Optional[List[str]] = None
    hybrid_mode: bool = True

    def with_defaults(self, limit: int, threshold: float) -> "SearchRequest":
        """Copy with unset limit and threshold filled in."""
        return self.model_copy(update={
            "limit": self.limit if self.limit is not None else limit,
            "threshold": self.threshold if self.threshold is not None else threshold,
        })


class SearchResult(BaseModel):
    memories: List[Memory] = Field(default_factory=list)
    search_id: UUID = Field(default_factory=uuid4)
    query_embedding: Optional[List[float]] = None
    cache_hits: int = 0
    total_results: int = 0
    search_time_ms: int = 0
    source: str = "vector"
    warnings: List[str] = Field(default_factory=list)


class StoreRequest(BaseModel):
    content: str = Field(..., min_length=1)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    importance: Optional[int] = Field(None, ge=1, le=10)
    chain_id: Optional[str] = None
    parent_id: Optional[UUID] = None
    framework: Optional[str] = None


class StoreResult(BaseModel):
    memory_id: UUID
    cached: bool
    indexed: bool
    embedding_generated: bool
    warnings: List[str] = Field(default_factory=list)


class CacheStats(BaseModel):
    total_keys: int = 0
    memory_usage_bytes: int = 0
    # Not tracked by the cache layer; kept at zero
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    avg_retrieval_time_ms: float = 0.0
