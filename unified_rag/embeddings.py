import asyncio
import json
import logging
from typing import List, Optional

import redis.asyncio as redis
from openai import OpenAI, OpenAIError
from redis.exceptions import RedisError

from .config import Settings
from .errors import EmbeddingError
from .keys import CacheKeys

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """
    Turns text into fixed-length vectors through an OpenAI-compatible API.

    Ollama is reached through its OpenAI-compatible ``/v1`` endpoint. When a
    Redis client is given, vectors are memoized under ``um:embedding:<md5>``.
    """

    def __init__(
        self,
        settings: Settings,
        redis_client: Optional[redis.Redis] = None,
        client: Optional[OpenAI] = None,
    ):
        self.provider = settings.embedding_model_provider
        self.model = settings.embedding_model_name
        self.dim = settings.embedding_dim
        self.memo_ttl = settings.embedding_cache_ttl_seconds
        self.redis_client = redis_client if settings.embedding_cache_enabled else None
        self.keys = CacheKeys(settings.instance_id)

        if client is not None:
            self.openai_cli = client
        elif self.provider == "ollama":
            self.openai_cli = OpenAI(base_url=f"{settings.ollama_api_url}/v1", api_key="ollama")
            logger.info(f"Embeddings via OLLAMA base_url={settings.ollama_api_url}/v1 model={self.model}")
        else:
            settings.require_embedding_credentials()
            self.openai_cli = OpenAI(api_key=settings.openai_api_key)
            logger.info(f"Embeddings via OPENAI model={self.model}")

    async def embed(self, text: str) -> List[float]:
        """Creates an embedding for a single text."""
        memoized = await self._memo_get(text)
        if memoized is not None:
            return memoized

        vectors = await self._create([text])
        if not vectors:
            raise EmbeddingError("No embedding returned")
        await self._memo_set(text, vectors[0])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Creates embeddings for several texts, preserving input order."""
        if not texts:
            return []
        vectors = await self._create(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        for text, vector in zip(texts, vectors):
            await self._memo_set(text, vector)
        return vectors

    async def _create(self, texts: List[str]) -> List[List[float]]:
        try:
            res = await asyncio.to_thread(
                self.openai_cli.embeddings.create,
                input=texts,
                model=self.model,
            )
        except OpenAIError as e:
            logger.error(f"Failed to get embedding for provider {self.provider}: {e}", exc_info=True)
            raise EmbeddingError(f"Embedding provider '{self.provider}' failed", e)

        vectors = [item.embedding for item in sorted(res.data, key=lambda item: item.index)]
        for vector in vectors:
            if len(vector) != self.dim:
                raise EmbeddingError(
                    f"Model '{self.model}' returned {len(vector)} dimensions, expected {self.dim}"
                )
        return vectors

    async def _memo_get(self, text: str) -> Optional[List[float]]:
        if self.redis_client is None:
            return None
        try:
            cached = await self.redis_client.get(self.keys.embedding(text))
        except RedisError as e:
            logger.warning(f"Embedding memo lookup failed: {e}")
            return None
        if not cached:
            return None
        try:
            vector = json.loads(cached)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable embedding memo entry")
            return None
        return vector if len(vector) == self.dim else None

    async def _memo_set(self, text: str, vector: List[float]) -> None:
        if self.redis_client is None:
            return
        try:
            await self.redis_client.set(self.keys.embedding(text), json.dumps(vector), ex=self.memo_ttl)
        except RedisError as e:
            logger.warning(f"Embedding memo write failed: {e}")
