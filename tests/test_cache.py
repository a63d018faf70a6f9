"""Tests for the generation cache slot protocol."""

from __future__ import annotations

import asyncio

import pytest

from convrag.cache import CacheConfig, InMemoryKeyValueStore, KeyValueGenerationCache, get_cache_key
from convrag.models import Generation


class FlakyStore(InMemoryKeyValueStore):
    def __init__(self, fail_on_write: int | None = None, fail_on_read: bool = False) -> None:
        super().__init__()
        self.writes = 0
        self.reads = 0
        self._fail_on_write = fail_on_write
        self._fail_on_read = fail_on_read

    async def get(self, key: str) -> str | None:
        self.reads += 1
        if self._fail_on_read:
            raise ConnectionError("store unavailable")
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        if self.writes == self._fail_on_write:
            raise ConnectionError("store unavailable")
        self.writes += 1
        await super().set(key, value)


def _texts(generations: list[Generation] | None) -> list[str] | None:
    return None if generations is None else [generation.text for generation in generations]


def test_update_then_lookup_returns_generations_in_order():
    cache = KeyValueGenerationCache(InMemoryKeyValueStore())
    generations = [Generation(text="first"), Generation(text="second"), Generation(text="third")]

    asyncio.run(cache.update("prompt", "model-a", generations))

    assert _texts(asyncio.run(cache.lookup("prompt", "model-a"))) == ["first", "second", "third"]


def test_lookup_of_unwritten_pair_is_none():
    cache = KeyValueGenerationCache(InMemoryKeyValueStore())
    assert asyncio.run(cache.lookup("never", "model-a")) is None


def test_pairs_are_isolated_by_model():
    cache = KeyValueGenerationCache(InMemoryKeyValueStore())
    asyncio.run(cache.update("prompt", "model-a", [Generation(text="a")]))
    assert asyncio.run(cache.lookup("prompt", "model-b")) is None


def test_missing_slot_zero_is_a_miss_even_if_slot_one_exists():
    store = InMemoryKeyValueStore()
    asyncio.run(store.set(get_cache_key("prompt", "model-a", 1), "orphan"))
    cache = KeyValueGenerationCache(store)

    assert asyncio.run(cache.lookup("prompt", "model-a")) is None


def test_first_gap_terminates_scan():
    store = InMemoryKeyValueStore()
    for index in (0, 1, 3):
        asyncio.run(store.set(get_cache_key("prompt", "model-a", index), f"slot-{index}"))
    cache = KeyValueGenerationCache(store)

    assert _texts(asyncio.run(cache.lookup("prompt", "model-a"))) == ["slot-0", "slot-1"]


def test_shorter_update_overwrites_without_truncating():
    cache = KeyValueGenerationCache(InMemoryKeyValueStore())
    asyncio.run(cache.update("prompt", "m", [Generation(text=t) for t in ("a", "b", "c")]))
    asyncio.run(cache.update("prompt", "m", [Generation(text="z")]))

    assert _texts(asyncio.run(cache.lookup("prompt", "m"))) == ["z", "b", "c"]


def test_lookup_scan_is_capped():
    store = InMemoryKeyValueStore()
    for index, text in enumerate(("a", "b", "c")):
        asyncio.run(store.set(get_cache_key("prompt", "m", index), text))
    cache = KeyValueGenerationCache(store, CacheConfig(max_generations=2))

    assert _texts(asyncio.run(cache.lookup("prompt", "m"))) == ["a", "b"]


def test_update_longer_than_cap_is_skipped():
    store = InMemoryKeyValueStore()
    cache = KeyValueGenerationCache(store, CacheConfig(max_generations=2))

    asyncio.run(cache.update("prompt", "m", [Generation(text=t) for t in ("a", "b", "c")]))

    assert len(store) == 0
    assert asyncio.run(cache.lookup("prompt", "m")) is None


def test_update_at_cap_round_trips():
    cache = KeyValueGenerationCache(InMemoryKeyValueStore(), CacheConfig(max_generations=2))

    asyncio.run(cache.update("prompt", "m", [Generation(text=t) for t in ("a", "b")]))

    assert _texts(asyncio.run(cache.lookup("prompt", "m"))) == ["a", "b"]


def test_cache_config_rejects_non_positive_cap():
    with pytest.raises(ValueError):
        CacheConfig(max_generations=0)


def test_cache_key_is_deterministic_and_distinct_per_index():
    assert get_cache_key("p", "m", 0) == get_cache_key("p", "m", 0)
    assert get_cache_key("p", "m", 0) == get_cache_key("p", "m", "0")
    keys = {get_cache_key("p", "m", index) for index in range(50)}
    assert len(keys) == 50


def test_cache_key_does_not_confuse_field_boundaries():
    assert get_cache_key("a_b", "c", 0) != get_cache_key("a", "b_c", 0)


def test_cache_key_accepts_lone_surrogates_and_non_ascii():
    key = get_cache_key("caf\udce9", "m", 0)

    assert len(key) == 64
    assert key != get_cache_key("café", "m", 0)
    assert get_cache_key("café", "m", 0) == get_cache_key("café", "m", 0)


def test_lookup_and_update_with_surrogate_prompt():
    cache = KeyValueGenerationCache(InMemoryKeyValueStore())

    asyncio.run(cache.update("caf\udce9", "m", [Generation(text="x")]))

    assert _texts(asyncio.run(cache.lookup("caf\udce9", "m"))) == ["x"]


def test_partial_update_keeps_slots_written_before_failure():
    store = FlakyStore(fail_on_write=2)
    cache = KeyValueGenerationCache(store)

    with pytest.raises(ConnectionError):
        asyncio.run(cache.update("prompt", "m", [Generation(text=t) for t in ("a", "b", "c")]))

    assert _texts(asyncio.run(cache.lookup("prompt", "m"))) == ["a", "b"]


def test_store_errors_propagate_from_lookup():
    cache = KeyValueGenerationCache(FlakyStore(fail_on_read=True))
    with pytest.raises(ConnectionError):
        asyncio.run(cache.lookup("prompt", "m"))


def test_lookup_reads_one_slot_per_generation_plus_terminator():
    store = FlakyStore()
    cache = KeyValueGenerationCache(store)
    asyncio.run(cache.update("prompt", "m", [Generation(text="a"), Generation(text="b")]))

    asyncio.run(cache.lookup("prompt", "m"))

    assert store.writes == 2
    assert store.reads == 3
