"""Generation cache keyed by prompt, model and sample position.

A cached LLM call occupies a run of slots ``0, 1, 2, ...`` under the same
``(prompt, model)`` pair, one slot per generation. Lookups scan the run from
slot 0 and stop at the first hole, so a run with a missing slot 0 reads as a
miss even when later slots exist.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Protocol, Sequence

from convrag.cache.store import KeyValueStore
from convrag.metrics.observability import PipelineMetrics, get_logger
from convrag.models import Generation


def get_cache_key(prompt: str, llm_key: str, index: int | str) -> str:
    """Derive the storage key for one generation slot."""

    # ASCII escapes keep lone surrogates encodable.
    payload = json.dumps([prompt, llm_key, str(index)])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the generation cache."""

    max_generations: int = 64

    def __post_init__(self) -> None:
        if self.max_generations < 1:
            raise ValueError("max_generations must be at least 1")


class GenerationCache(Protocol):
    """Maps a (prompt, model) pair to an ordered list of generations."""

    async def lookup(self, prompt: str, llm_key: str) -> list[Generation] | None:
        """Return the cached generations or ``None`` on a miss; never an empty list."""

    async def update(self, prompt: str, llm_key: str, generations: Sequence[Generation]) -> None:
        """Write ``generations`` at their positional slots."""


class KeyValueGenerationCache:
    """Generation cache over any :class:`KeyValueStore`.

    ``update`` is not atomic: if the store fails on slot ``i``, slots before
    ``i`` stay written. Slots past the end of a shorter rewrite are left in
    place, so a later lookup can still return the older, longer run.
    """

    _logger = get_logger("cache")

    def __init__(self, store: KeyValueStore, config: CacheConfig | None = None) -> None:
        self._store = store
        self._config = config or CacheConfig()

    @property
    def store(self) -> KeyValueStore:
        return self._store

    async def lookup(self, prompt: str, llm_key: str) -> list[Generation] | None:
        generations: list[Generation] = []
        reads = 0
        for index in range(self._config.max_generations):
            value = await self._store.get(get_cache_key(prompt, llm_key, index))
            reads += 1
            if value is None:
                break
            generations.append(Generation(text=value))
        else:
            self._logger.warning(
                "cache.scan_cap_reached",
                llm_key=llm_key,
                max_generations=self._config.max_generations,
            )
        hit = bool(generations)
        PipelineMetrics.observe_cache_lookup(hit, reads)
        self._logger.debug("cache.hit" if hit else "cache.miss", llm_key=llm_key, generations=len(generations))
        return generations if hit else None

    async def update(self, prompt: str, llm_key: str, generations: Sequence[Generation]) -> None:
        """Write ``generations`` at their positional slots.

        Runs longer than ``max_generations`` could never be read back whole,
        so they are skipped and nothing is written.
        """

        if len(generations) > self._config.max_generations:
            self._logger.warning(
                "cache.update_skipped",
                llm_key=llm_key,
                generations=len(generations),
                max_generations=self._config.max_generations,
            )
            return
        for index, generation in enumerate(generations):
            await self._store.set(get_cache_key(prompt, llm_key, index), generation.text)
            PipelineMetrics.observe_cache_write()
