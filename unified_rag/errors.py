"""Typed failures raised by the cache, search and coordinator layers."""

from typing import Optional

from redis import exceptions as redis_exceptions


class UnifiedRagError(Exception):
    """Base exception for the retrieval coordinator.

    ``cause`` keeps the underlying library exception, ``retryable`` tells
    callers whether repeating the call may succeed.
    """

    retryable = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigurationError(UnifiedRagError):
    """Missing credential or invalid setting."""
    pass


class CacheConnectionError(UnifiedRagError):
    """Redis could not be reached or refused the command."""
    retryable = True


class PoolExhaustedError(CacheConnectionError):
    """No pooled Redis connection became available in time."""
    retryable = True


class VectorStoreError(UnifiedRagError):
    """Qdrant collection, query, upsert or delete failure."""
    pass


class EmbeddingError(UnifiedRagError):
    """The embedding provider failed or returned an unusable vector."""
    pass


class SerializationError(UnifiedRagError):
    """A stored payload could not be encoded or decoded."""
    pass


def translate_redis_error(exc: Exception, action: str) -> UnifiedRagError:
    """Map a redis-py exception onto the typed hierarchy."""
    if isinstance(exc, UnifiedRagError):
        return exc
    if isinstance(exc, redis_exceptions.ConnectionError) and "No connection available" in str(exc):
        return PoolExhaustedError(f"Redis pool exhausted during {action}", exc)
    if isinstance(exc, (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError)):
        return CacheConnectionError(f"Redis unreachable during {action}", exc)
    if isinstance(exc, redis_exceptions.RedisError):
        return CacheConnectionError(f"Redis command failed during {action}", exc)
    return UnifiedRagError(f"Unexpected failure during {action}", exc)
