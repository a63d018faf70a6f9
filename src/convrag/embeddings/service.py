"""Embedding function adapters consumed by the similarity indexes."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from convrag.errors import UpstreamCallError

LOGGER = logging.getLogger(__name__)

Vector = Tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding adapters."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None


class EmbeddingFunction(Protocol):
    """Turns text into fixed-length vectors."""

    def embed_query(self, text: str) -> Vector:
        """Return the embedding vector for a query string."""

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Vector]:
        """Return one embedding vector per input text, in order."""


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddings:
    """Deterministic lightweight embeddings used for testing and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dim(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_query(self, text: str) -> Vector:
        return self._hash_to_vector(text)

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Vector]:
        return [self._hash_to_vector(text) for text in texts]


class HuggingFaceEmbeddingFunction:
    """Sentence-embedding model loaded through LangChain's HuggingFace wrapper."""

    def __init__(self, config: EmbeddingConfig | None = None, client: LangChainEmbeddings | None = None) -> None:
        self._config = config or EmbeddingConfig()
        if client is not None:
            self._client = client
            return
        model_kwargs = {"device": self._config.device} if self._config.device else {}
        try:
            self._client = HuggingFaceEmbeddings(
                model_name=self._config.model,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": self._config.normalize},
                cache_folder=self._config.cache_folder,
            )
        except Exception as exc:
            raise UpstreamCallError(f"Failed to load embedding model {self._config.model}: {exc}") from exc
        LOGGER.info("Loaded embedding model %s", self._config.model)

    def embed_query(self, text: str) -> Vector:
        try:
            vector = self._client.embed_query(text)
        except Exception as exc:
            raise UpstreamCallError(f"Embedding query failed: {exc}") from exc
        return self._finish(vector)

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Vector]:
        if not texts:
            return []
        try:
            vectors = self._client.embed_documents(list(texts))
        except Exception as exc:
            raise UpstreamCallError(f"Embedding documents failed: {exc}") from exc
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise UpstreamCallError("Mismatch between number of texts and embedding vectors")
        if vectors and len(vectors[0]) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vectors[0]),
            )
        return [self._finish(vector) for vector in vectors]

    def _finish(self, vector: Sequence[float]) -> Vector:
        if not self._config.normalize:
            return tuple(vector)
        return _normalize(vector)
