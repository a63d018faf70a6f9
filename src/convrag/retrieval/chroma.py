"""Chroma-backed similarity index."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Sequence
from uuid import uuid4

import chromadb
from chromadb.api import ClientAPI

from convrag.errors import UpstreamCallError
from convrag.models import Document, ScoredDocument

_SCALAR_TYPES = (str, int, float, bool)
_EXTRA_KEY = "__convrag_extra__"


class ChromaSimilarityIndex:
    """Similarity index stored in a Chroma collection using cosine space.

    ``filter`` is passed through as Chroma's ``where`` clause, so it can only
    reference scalar metadata fields. Scores are ``1 - cosine distance``;
    higher is closer.
    """

    def __init__(
        self,
        collection_name: str = "convrag",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    async def add_vectors(self, vectors: Sequence[Sequence[float]], documents: Sequence[Document]) -> Sequence[str]:
        if len(vectors) != len(documents):
            raise ValueError("Number of vectors must match number of documents")
        if not documents:
            return []
        metadatas = [self._serialize_metadata(document.metadata) for document in documents]
        ids = [uuid4().hex for _ in documents]
        await asyncio.to_thread(
            self._call,
            "upsert",
            ids=ids,
            documents=[document.content for document in documents],
            embeddings=[list(vector) for vector in vectors],
            metadatas=metadatas,
        )
        return ids

    async def similarity_search_by_vector(
        self,
        vector: Sequence[float],
        k: int,
        filter: Mapping[str, Any] | None = None,
    ) -> Sequence[ScoredDocument]:
        if k <= 0:
            return []
        return await asyncio.to_thread(self._query, list(vector), k, filter)

    def count(self) -> int:
        return int(self._call("count"))

    def reset(self) -> None:
        ids = self._call("get", include=[]).get("ids") or []
        if ids:
            self._call("delete", ids=list(ids))

    def _query(self, vector: list[float], k: int, filter: Mapping[str, Any] | None) -> Sequence[ScoredDocument]:
        available = self.count()
        if available == 0:
            return []
        results = self._call(
            "query",
            query_embeddings=[vector],
            n_results=min(k, available),
            where=dict(filter) if filter else None,
        )
        return self._deserialize_results(results)

    def _call(self, method: str, **kwargs: Any) -> Any:
        try:
            return getattr(self._collection, method)(**kwargs)
        except Exception as exc:
            raise UpstreamCallError(f"Chroma {method} failed on {self._collection.name}: {exc}") from exc

    def _serialize_metadata(self, metadata: Mapping[str, Any]) -> MutableMapping[str, object]:
        serialized: MutableMapping[str, object] = {}
        extra: Dict[str, object] = {}
        if _EXTRA_KEY in metadata:
            raise ValueError(f"Metadata key {_EXTRA_KEY!r} is reserved")
        for key, value in metadata.items():
            if isinstance(value, _SCALAR_TYPES):
                serialized[key] = value
            else:
                extra[key] = value
        # Chroma rejects empty metadata, so the extra payload is always present.
        serialized[_EXTRA_KEY] = json.dumps(extra, default=str)
        return serialized

    def _deserialize_results(self, results: Mapping[str, object]) -> Sequence[ScoredDocument]:
        documents = self._first(results.get("documents", []))
        metadatas = self._first(results.get("metadatas", []))
        distances = self._first(results.get("distances", []))
        scored: list[ScoredDocument] = []
        for index, content in enumerate(documents):
            metadata = metadatas[index] if index < len(metadatas) else None
            distance = distances[index] if index < len(distances) else None
            scored.append(
                ScoredDocument(
                    document=Document(content=content or "", metadata=self._deserialize_metadata(metadata)),
                    score=1.0 - float(distance) if distance is not None else 0.0,
                ),
            )
        return scored

    @staticmethod
    def _deserialize_metadata(metadata: Mapping[str, object] | None) -> Dict[str, object]:
        if not metadata:
            return {}
        restored = {key: value for key, value in metadata.items() if key != _EXTRA_KEY}
        extra = metadata.get(_EXTRA_KEY)
        if isinstance(extra, str) and extra:
            try:
                loaded = json.loads(extra)
            except json.JSONDecodeError:
                loaded = {}
            if isinstance(loaded, dict):
                restored.update(loaded)
        return restored

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list):
            return list(value[0] or []) if value else []
        return []
