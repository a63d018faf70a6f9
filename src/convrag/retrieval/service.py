"""Retrieval layer built on top of similarity indexes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from convrag.embeddings.service import EmbeddingFunction
from convrag.models import Document
from convrag.retrieval.index import DEFAULT_K, SimilarityIndex, similarity_search


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    k: int = DEFAULT_K
    filter: Any | None = None


class Retriever(Protocol):
    """Turns a text query into ranked documents."""

    async def get_relevant_documents(self, query: str) -> Sequence[Document]:
        """Return documents relevant to ``query``, best first."""


class VectorIndexRetriever:
    """Retriever that embeds the query and searches a similarity index.

    Results are never memoized here; every call reaches the index.
    """

    def __init__(
        self,
        index: SimilarityIndex,
        embeddings: EmbeddingFunction,
        config: RetrievalConfig | None = None,
    ) -> None:
        self._index = index
        self._embeddings = embeddings
        self._config = config or RetrievalConfig()

    @property
    def index(self) -> SimilarityIndex:
        return self._index

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    async def get_relevant_documents(self, query: str) -> Sequence[Document]:
        return await similarity_search(
            self._index,
            self._embeddings,
            query,
            self._config.k,
            self._config.filter,
        )

    async def add_documents(self, documents: Sequence[Document]) -> Sequence[str]:
        """Embed ``documents`` and store them in the underlying index."""

        if not documents:
            return []
        vectors = await asyncio.to_thread(
            self._embeddings.embed_documents,
            [document.content for document in documents],
        )
        return await self._index.add_vectors(vectors, documents)


def as_retriever(
    index: SimilarityIndex,
    embeddings: EmbeddingFunction,
    *,
    k: int = DEFAULT_K,
    filter: Any | None = None,
) -> VectorIndexRetriever:
    return VectorIndexRetriever(index, embeddings, RetrievalConfig(k=k, filter=filter))
