"""Runtime configuration for the ConvRAG services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="convrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Embeddings
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 384
    use_model_embeddings: bool = False

    # Generation
    generator_model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    generator_max_new_tokens: int = 512
    generator_temperature: float = 0.3
    use_model_generator: bool = False

    # Retrieval
    retrieval_k: int = 4
    index_backend: Literal["memory", "chroma"] = "memory"
    chroma_persist_dir: Path | None = None
    chroma_collection: str = "convrag-default"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # Generation cache
    cache_enabled: bool = True
    cache_backend: Literal["memory", "sqlite"] = "memory"
    cache_path: Path = Path("./.convrag-cache.sqlite")
    cache_max_generations: int = 64

    # Pipeline
    question_key: str = "question"
    chat_history_key: str = "chat_history"
    return_source_documents: bool = True

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
