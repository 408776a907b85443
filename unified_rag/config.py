# unified_rag/config.py
from functools import lru_cache
from pathlib import Path
from typing import Optional
import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


def _resolve_env_file() -> str:
    # Start from package directory and search upwards
    here = Path(__file__).resolve().parent
    for p in [here, *here.parents]:
        f = p / ".env"
        if f.exists():
            return str(f)
    # Fallback: search from cwd
    cwd = Path.cwd()
    for p in [cwd, *cwd.parents]:
        f = p / ".env"
        if f.exists():
            return str(f)
    # Final fallback: next to config.py
    return str(Path(__file__).resolve().parent / ".env")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_resolve_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Redis (cache store)
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_pool_size: int = 10
    redis_pool_timeout_seconds: float = 5.0

    # Qdrant (vector index)
    qdrant_host: str = "127.0.0.1"
    qdrant_port: int = 6333
    qdrant_protocol: str = "http"
    qdrant_api_key: Optional[str] = None
    qdrant_timeout_seconds: int = 30
    qdrant_collection: str = "unified_rag"

    # Embeddings
    openai_api_key: Optional[str] = None
    embedding_model_provider: str = "openai"
    embedding_model_name: str = "text-embedding-3-small"
    embedding_dim: int = 1536
    embedding_cache_enabled: bool = True
    embedding_cache_ttl_seconds: int = 604800
    ollama_api_url: str = "http://localhost:11434"

    # Retrieval
    instance_id: str = "CC"
    max_results: int = 20
    similarity_threshold: float = 0.7
    enforce_similarity_threshold: bool = False
    cache_ttl_seconds: int = 3600
    scan_page_size: int = 100

    @field_validator("embedding_model_provider", "qdrant_protocol", mode="before")
    def _normalize_lower(cls, value: str) -> str:
        if isinstance(value, str):
            return value.lower().strip()
        return value

    @model_validator(mode="after")
    def _check_limits(self) -> "Settings":
        if self.redis_pool_size < 1:
            raise ValueError("REDIS_POOL_SIZE must be at least 1")
        if self.max_results < 1:
            raise ValueError("MAX_RESULTS must be at least 1")
        if self.embedding_model_provider not in {"openai", "ollama"}:
            raise ValueError(f"Unsupported embedding provider: {self.embedding_model_provider}")
        return self

    @property
    def redis_url(self) -> str:
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def qdrant_url(self) -> str:
        return f"{self.qdrant_protocol}://{self.qdrant_host}:{self.qdrant_port}"

    def require_embedding_credentials(self) -> None:
        """Fail fast when the configured embedding provider has no credentials."""
        if self.embedding_model_provider == "openai" and not self.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is required when EMBEDDING_MODEL_PROVIDER is 'openai'"
            )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def log_settings_summary(logger: logging.Logger, settings: Settings) -> None:
    logger.info(f"[CONFIG] env_file = {Settings.model_config.get('env_file')}")
    logger.info(f"[CONFIG] instance_id={settings.instance_id} collection={settings.qdrant_collection}")
    logger.info(f"[CONFIG] redis={settings.redis_host}:{settings.redis_port} qdrant={settings.qdrant_url}")
    logger.info(
        f"[CONFIG] embedding_provider={settings.embedding_model_provider} "
        f"embedding_model={settings.embedding_model_name} embedding_dim={settings.embedding_dim}"
    )
