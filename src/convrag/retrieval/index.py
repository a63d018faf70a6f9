"""Similarity index contract and an in-memory implementation.

Every index ranks stored vectors against a query vector and returns at most
``k`` scored documents, best first. The concrete index decides what ``filter``
means and which score direction is "better"; the two shipped indexes both use
cosine similarity, so higher scores are closer.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Callable, Mapping, Protocol, Sequence
from uuid import uuid4

from convrag.embeddings.service import EmbeddingFunction
from convrag.models import Document, ScoredDocument

DEFAULT_K = 4

DocumentFilter = Mapping[str, Any] | Callable[[Document], bool]


class SimilarityIndex(Protocol):
    """Nearest-neighbour search over a fixed-dimension vector space."""

    async def similarity_search_by_vector(
        self,
        vector: Sequence[float],
        k: int,
        filter: Any | None = None,
    ) -> Sequence[ScoredDocument]:
        """Return up to ``k`` documents ordered best to worst."""

    async def add_vectors(self, vectors: Sequence[Sequence[float]], documents: Sequence[Document]) -> Sequence[str]:
        """Store ``documents`` under the matching ``vectors``; return their ids."""


async def similarity_search_with_score(
    index: SimilarityIndex,
    embeddings: EmbeddingFunction,
    query: str,
    k: int = DEFAULT_K,
    filter: Any | None = None,
) -> Sequence[ScoredDocument]:
    """Embed ``query`` and run the vector search against ``index``."""

    vector = await asyncio.to_thread(embeddings.embed_query, query)
    return await index.similarity_search_by_vector(vector, k, filter)


async def similarity_search(
    index: SimilarityIndex,
    embeddings: EmbeddingFunction,
    query: str,
    k: int = DEFAULT_K,
    filter: Any | None = None,
) -> list[Document]:
    """Like :func:`similarity_search_with_score` but drops the scores."""

    results = await similarity_search_with_score(index, embeddings, query, k, filter)
    return [result.document for result in results]


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise ValueError(f"Vector dimension mismatch: {len(left)} != {len(right)}")
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if not norm:
        return 0.0
    return dot / norm


def _matches(document: Document, filter: DocumentFilter | None) -> bool:
    if filter is None:
        return True
    if callable(filter):
        return bool(filter(document))
    return all(document.metadata.get(key) == value for key, value in filter.items())


class InMemorySimilarityIndex:
    """Brute-force cosine index held in process memory.

    ``filter`` may be a mapping (every key must equal the document's metadata
    value) or a predicate taking a :class:`Document`. Scores are cosine
    similarities, higher is closer.
    """

    def __init__(self, dim: int | None = None) -> None:
        self._dim = dim
        self._ids: list[str] = []
        self._vectors: list[tuple[float, ...]] = []
        self._documents: list[Document] = []

    def __len__(self) -> int:
        return len(self._documents)

    async def add_vectors(self, vectors: Sequence[Sequence[float]], documents: Sequence[Document]) -> Sequence[str]:
        if len(vectors) != len(documents):
            raise ValueError("Number of vectors must match number of documents")
        ids: list[str] = []
        for vector, document in zip(vectors, documents):
            if self._dim is None:
                self._dim = len(vector)
            elif len(vector) != self._dim:
                raise ValueError(f"Expected vectors of dimension {self._dim}, got {len(vector)}")
            doc_id = uuid4().hex
            self._ids.append(doc_id)
            self._vectors.append(tuple(vector))
            self._documents.append(document)
            ids.append(doc_id)
        return ids

    async def similarity_search_by_vector(
        self,
        vector: Sequence[float],
        k: int,
        filter: DocumentFilter | None = None,
    ) -> Sequence[ScoredDocument]:
        if k <= 0:
            return []
        scored = [
            ScoredDocument(document=document, score=cosine_similarity(vector, stored))
            for stored, document in zip(self._vectors, self._documents)
            if _matches(document, filter)
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:k]


__all__ = [
    "DEFAULT_K",
    "DocumentFilter",
    "InMemorySimilarityIndex",
    "SimilarityIndex",
    "cosine_similarity",
    "similarity_search",
    "similarity_search_with_score",
]
