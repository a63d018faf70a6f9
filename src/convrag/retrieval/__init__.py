"""Retrieval components."""

from .chroma import ChromaSimilarityIndex
from .index import (
    DEFAULT_K,
    InMemorySimilarityIndex,
    SimilarityIndex,
    similarity_search,
    similarity_search_with_score,
)
from .service import RetrievalConfig, Retriever, VectorIndexRetriever, as_retriever

__all__ = [
    "DEFAULT_K",
    "ChromaSimilarityIndex",
    "InMemorySimilarityIndex",
    "RetrievalConfig",
    "Retriever",
    "SimilarityIndex",
    "VectorIndexRetriever",
    "as_retriever",
    "similarity_search",
    "similarity_search_with_score",
]
