import json
import logging
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import Settings
from .errors import SerializationError, translate_redis_error
from .keys import CacheKeys, md5_hex
from .models import (
    DEFAULT_LIMIT,
    CacheStats,
    Memory,
    SearchRequest,
    dump_memory_list,
    load_memory_list,
    utcnow,
)

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> redis.Redis:
    """Builds a client over a bounded pool; waiting past the pool timeout raises."""
    pool = redis.BlockingConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_pool_size,
        timeout=settings.redis_pool_timeout_seconds,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=pool)


def _soft_fail(warnings: Optional[List[str]], message: str) -> None:
    logger.warning(message)
    if warnings is not None:
        warnings.append(message)


class RedisMemoryCache:
    """
    Fast exact-key and filtered-scan access to memory records.

    The primary record is authoritative. Metadata hashes, tag sets and chain
    lists are derived indexes maintained best-effort: their failures are
    reported through the optional ``warnings`` sink instead of raising.
    Redis failures on the primary record propagate as typed errors.
    """

    def __init__(
        self,
        client: redis.Redis,
        instance_id: str,
        query_cache_ttl: int = 3600,
        scan_page_size: int = 100,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.client = client
        self.keys = CacheKeys(instance_id)
        self.query_cache_ttl = query_cache_ttl
        self.scan_page_size = scan_page_size
        self.default_limit = default_limit

    @classmethod
    def from_settings(cls, client: redis.Redis, settings: Settings) -> "RedisMemoryCache":
        return cls(
            client,
            settings.instance_id,
            query_cache_ttl=settings.cache_ttl_seconds,
            scan_page_size=settings.scan_page_size,
            default_limit=settings.max_results,
        )

    async def get(self, key: str, warnings: Optional[List[str]] = None) -> Optional[Memory]:
        """Fetches a memory by id and records the access. Absent ids return None."""
        try:
            raw = await self.client.get(self.keys.thought(key))
        except RedisError as e:
            raise translate_redis_error(e, f"get {key}")
        if raw is None:
            return None

        memory = Memory.from_json(raw)
        await self._record_access(key, warnings)
        return memory

    async def _record_access(self, key: str, warnings: Optional[List[str]]) -> None:
        meta_key = self.keys.metadata(key)
        try:
            pipe = self.client.pipeline(transaction=False)
            pipe.hincrby(meta_key, "access_count", 1)
            pipe.hset(meta_key, "last_accessed", utcnow().isoformat())
            await pipe.execute()
        except RedisError as e:
            _soft_fail(warnings, f"access metadata update failed for {key}: {e}")

    async def set(
        self,
        key: str,
        memory: Memory,
        ttl: Optional[int] = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        """
        Writes the record, then its metadata hash, tag sets and chain list.

        The four writes are not atomic. Only the record write can raise; a
        failed index write leaves that index out of step with the record.
        """
        try:
            await self.client.set(self.keys.thought(key), memory.to_json(), ex=ttl)
        except RedisError as e:
            raise translate_redis_error(e, f"set {key}")

        created = memory.created_at.isoformat()
        meta = {
            "thought_id": key,
            "instance": self.keys.instance,
            "importance": memory.metadata.importance,
            "category": memory.metadata.category or "",
            "tags": json.dumps(memory.metadata.tags),
            "created_at": created,
            "last_accessed": created,
            "access_count": 0,
        }
        try:
            await self.client.hset(self.keys.metadata(key), mapping=meta)
        except RedisError as e:
            _soft_fail(warnings, f"metadata write failed for {key}: {e}")

        for tag in memory.metadata.tags:
            try:
                await self.client.sadd(self.keys.tag(tag), key)
            except RedisError as e:
                _soft_fail(warnings, f"tag index '{tag}' not updated for {key}: {e}")

        if memory.metadata.chain_id:
            try:
                await self.client.rpush(self.keys.chain(memory.metadata.chain_id), key)
            except RedisError as e:
                _soft_fail(warnings, f"chain '{memory.metadata.chain_id}' not updated for {key}: {e}")

    def query_hash(self, request: SearchRequest) -> str:
        # Every field takes part, filters and hybrid flag included
        return md5_hex(request.model_dump_json())

    async def search_cached(
        self, request: SearchRequest, warnings: Optional[List[str]] = None
    ) -> List[Memory]:
        """
        Answers a request from a previously cached scan or a fresh prefix scan.

        Cached lists are returned verbatim until their TTL lapses, so they may
        be stale. The scan visits every record of the instance, which is
        O(stored records) per uncached request.
        """
        cache_key = self.keys.query_cache(self.query_hash(request))
        try:
            cached = await self.client.get(cache_key)
        except RedisError as e:
            cached = None
            _soft_fail(warnings, f"query cache lookup failed: {e}")
        if cached:
            try:
                return load_memory_list(cached)
            except SerializationError as e:
                _soft_fail(warnings, f"discarding unreadable query cache entry {cache_key}: {e}")

        results = await self._scan(request, warnings)

        if results:
            try:
                await self.client.set(cache_key, dump_memory_list(results), ex=self.query_cache_ttl)
            except RedisError as e:
                _soft_fail(warnings, f"query cache write failed: {e}")
        return results

    async def _scan(self, request: SearchRequest, warnings: Optional[List[str]]) -> List[Memory]:
        limit = request.limit or self.default_limit
        results: List[Memory] = []
        cursor = 0
        try:
            while True:
                cursor, keys = await self.client.scan(
                    cursor=cursor, match=self.keys.thought_pattern(), count=self.scan_page_size
                )
                if keys:
                    values = await self.client.mget(keys)
                    for key, raw in zip(keys, values):
                        if raw is None:
                            continue  # removed between SCAN and MGET
                        try:
                            memory = Memory.from_json(raw)
                        except SerializationError as e:
                            _soft_fail(warnings, f"skipping unreadable record {key}: {e}")
                            continue
                        if not self._matches(memory, request):
                            continue
                        results.append(memory)
                        if len(results) >= limit:
                            return results
                if cursor == 0:
                    return results
        except RedisError as e:
            raise translate_redis_error(e, "pattern scan")

    @staticmethod
    def _matches(memory: Memory, request: SearchRequest) -> bool:
        if request.category_filter is not None and memory.metadata.category != request.category_filter:
            return False
        if request.tags_filter is not None and not any(t in memory.metadata.tags for t in request.tags_filter):
            return False
        if request.instance_filter is not None and memory.instance_id not in request.instance_filter:
            return False
        return True

    async def invalidate(self, key: str, warnings: Optional[List[str]] = None) -> None:
        """Removes a record, its metadata and its tag/chain index entries. Missing ids are a no-op."""
        thought_key = self.keys.thought(key)
        try:
            raw = await self.client.get(thought_key)
        except RedisError as e:
            raise translate_redis_error(e, f"invalidate {key}")

        if raw is not None:
            try:
                memory = Memory.from_json(raw)
            except SerializationError as e:
                memory = None
                _soft_fail(warnings, f"cannot read {key} to clean its indexes: {e}")
            if memory is not None:
                await self._drop_from_indexes(key, memory, warnings)

        try:
            await self.client.delete(thought_key, self.keys.metadata(key))
        except RedisError as e:
            raise translate_redis_error(e, f"invalidate {key}")

    async def _drop_from_indexes(self, key: str, memory: Memory, warnings: Optional[List[str]]) -> None:
        for tag in memory.metadata.tags:
            try:
                await self.client.srem(self.keys.tag(tag), key)
            except RedisError as e:
                _soft_fail(warnings, f"tag index '{tag}' still lists {key}: {e}")
        if memory.metadata.chain_id:
            try:
                await self.client.lrem(self.keys.chain(memory.metadata.chain_id), 0, key)
            except RedisError as e:
                _soft_fail(warnings, f"chain '{memory.metadata.chain_id}' still lists {key}: {e}")

    async def tag_members(self, tag: str) -> set:
        return await self.client.smembers(self.keys.tag(tag))

    async def chain_members(self, chain_id: str) -> List[str]:
        return await self.client.lrange(self.keys.chain(chain_id), 0, -1)

    async def access_metadata(self, key: str) -> dict:
        return await self.client.hgetall(self.keys.metadata(key))

    async def get_stats(self) -> CacheStats:
        total_keys = 0
        try:
            async for _ in self.client.scan_iter(match=self.keys.thought_pattern(), count=self.scan_page_size):
                total_keys += 1
            info = await self.client.info("memory")
        except RedisError as e:
            raise translate_redis_error(e, "stats")
        return CacheStats(total_keys=total_keys, memory_usage_bytes=int(info.get("used_memory", 0)))

    async def ping(self) -> bool:
        return await self.client.ping()
