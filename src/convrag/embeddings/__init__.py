"""Embedding adapters."""

from .service import EmbeddingConfig, EmbeddingFunction, HashEmbeddings, HuggingFaceEmbeddingFunction, Vector

__all__ = [
    "EmbeddingConfig",
    "EmbeddingFunction",
    "HashEmbeddings",
    "HuggingFaceEmbeddingFunction",
    "Vector",
]
