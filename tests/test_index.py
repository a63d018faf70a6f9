"""Tests for the similarity-search contract."""

from __future__ import annotations

import asyncio
from typing import Sequence
from uuid import uuid4

import chromadb
import pytest

from convrag.embeddings import EmbeddingConfig, HashEmbeddings
from convrag.models import Document
from convrag.retrieval import (
    ChromaSimilarityIndex,
    InMemorySimilarityIndex,
    similarity_search,
    similarity_search_with_score,
)


class CountingEmbeddings(HashEmbeddings):
    def __init__(self) -> None:
        super().__init__(EmbeddingConfig(dim=16))
        self.queries: list[str] = []

    def embed_query(self, text: str):
        self.queries.append(text)
        return super().embed_query(text)


class BrokenEmbeddings(HashEmbeddings):
    def embed_query(self, text: str):
        raise RuntimeError("embedding service down")


CORPUS = [
    Document(content="alpha", metadata={"topic": "greek"}),
    Document(content="beta", metadata={"topic": "greek"}),
    Document(content="lorem ipsum", metadata={"topic": "latin"}),
]


def _populate(index, embeddings: HashEmbeddings, documents: Sequence[Document] = CORPUS) -> None:
    vectors = embeddings.embed_documents([document.content for document in documents])
    asyncio.run(index.add_vectors(vectors, documents))


def _chroma_index() -> ChromaSimilarityIndex:
    return ChromaSimilarityIndex(f"test-{uuid4().hex[:12]}", client=chromadb.EphemeralClient())


@pytest.fixture(params=["memory", "chroma"])
def index(request):
    if request.param == "memory":
        return InMemorySimilarityIndex()
    return _chroma_index()


def test_k_zero_returns_empty_but_still_embeds(index):
    embeddings = CountingEmbeddings()
    _populate(index, embeddings)

    results = asyncio.run(similarity_search(index, embeddings, "alpha", k=0))

    assert results == []
    assert embeddings.queries == ["alpha"]


def test_k_larger_than_corpus_returns_everything(index):
    embeddings = CountingEmbeddings()
    _populate(index, embeddings)

    results = asyncio.run(similarity_search(index, embeddings, "alpha", k=50))

    assert sorted(document.content for document in results) == ["alpha", "beta", "lorem ipsum"]


def test_results_are_ordered_best_first(index):
    embeddings = CountingEmbeddings()
    _populate(index, embeddings)

    scored = asyncio.run(similarity_search_with_score(index, embeddings, "beta", k=3))

    assert scored[0].document.content == "beta"
    assert scored[0].score == pytest.approx(1.0, abs=1e-3)
    scores = [item.score for item in scored]
    assert scores == sorted(scores, reverse=True)


def test_filter_restricts_results(index):
    embeddings = CountingEmbeddings()
    _populate(index, embeddings)

    results = asyncio.run(similarity_search(index, embeddings, "alpha", k=5, filter={"topic": "latin"}))

    assert [document.content for document in results] == ["lorem ipsum"]
    assert all(document.metadata["topic"] == "latin" for document in results)


def test_empty_index_returns_nothing(index):
    assert asyncio.run(similarity_search(index, CountingEmbeddings(), "anything", k=4)) == []


def test_embedding_failure_propagates(index):
    _populate(index, CountingEmbeddings())
    with pytest.raises(RuntimeError, match="embedding service down"):
        asyncio.run(similarity_search(index, BrokenEmbeddings(EmbeddingConfig(dim=16)), "alpha"))


def test_in_memory_index_accepts_predicate_filter():
    embeddings = CountingEmbeddings()
    index = InMemorySimilarityIndex()
    _populate(index, embeddings)

    results = asyncio.run(
        similarity_search(index, embeddings, "alpha", k=5, filter=lambda document: document.content.startswith("b")),
    )

    assert [document.content for document in results] == ["beta"]


def test_in_memory_index_rejects_dimension_mismatch():
    index = InMemorySimilarityIndex(dim=4)
    with pytest.raises(ValueError):
        asyncio.run(index.add_vectors([(1.0, 0.0)], [Document(content="x")]))


def test_chroma_index_round_trips_structured_metadata():
    embeddings = CountingEmbeddings()
    index = _chroma_index()
    document = Document(content="alpha", metadata={"topic": "greek", "tags": ["a", "b"]})
    _populate(index, embeddings, [document])

    results = asyncio.run(similarity_search(index, embeddings, "alpha", k=1))

    assert results == [document]
    assert index.count() == 1
    index.reset()
    assert index.count() == 0


def test_chroma_index_keeps_user_extra_key():
    embeddings = CountingEmbeddings()
    index = _chroma_index()
    document = Document(content="alpha", metadata={"_extra": "user value", "tags": ["a"]})
    _populate(index, embeddings, [document])

    results = asyncio.run(similarity_search(index, embeddings, "alpha", k=1))

    assert results == [document]


def test_chroma_index_rejects_reserved_metadata_key():
    index = _chroma_index()
    document = Document(content="alpha", metadata={"__convrag_extra__": "{}"})

    with pytest.raises(ValueError, match="reserved"):
        _populate(index, CountingEmbeddings(), [document])
    assert index.count() == 0
