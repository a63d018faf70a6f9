"""Tests for language model adapters and the cached wrapper."""

from __future__ import annotations

import asyncio

from convrag.cache import InMemoryKeyValueStore, KeyValueGenerationCache
from convrag.models import Generation
from convrag.services.chains import CONDENSE_QUESTION_TEMPLATE, QA_TEMPLATE
from convrag.services.generation import CachedLanguageModel, TemplateLanguageModel


class SamplingLLM:
    model_identifier = "sampler"

    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt: str) -> list[Generation]:
        self.calls += 1
        return [Generation(text=f"{prompt}-{i}") for i in range(3)]


def test_cached_model_serves_repeated_prompt_from_cache():
    llm = SamplingLLM()
    cached = CachedLanguageModel(llm, KeyValueGenerationCache(InMemoryKeyValueStore()))

    first = asyncio.run(cached.generate("p"))
    second = asyncio.run(cached.generate("p"))

    assert llm.calls == 1
    assert [g.text for g in second] == [g.text for g in first] == ["p-0", "p-1", "p-2"]


def test_cached_model_keys_on_model_identifier():
    store = InMemoryKeyValueStore()
    asyncio.run(KeyValueGenerationCache(store).update("p", "other-model", [Generation(text="stale")]))
    llm = SamplingLLM()

    result = asyncio.run(CachedLanguageModel(llm, KeyValueGenerationCache(store)).generate("p"))

    assert llm.calls == 1
    assert result[0].text == "p-0"


def test_template_model_echoes_follow_up_for_condense_prompt():
    llm = TemplateLanguageModel()
    prompt = CONDENSE_QUESTION_TEMPLATE.format(chat_history="Human: hi", question="What is X?")

    assert asyncio.run(llm.generate(prompt)) == [Generation(text="What is X?")]


def test_template_model_quotes_first_passage_for_qa_prompt():
    llm = TemplateLanguageModel()
    prompt = QA_TEMPLATE.format(context="X is a letter.\n\nY is another.", question="What is X?")

    [generation] = asyncio.run(llm.generate(prompt))

    assert "What is X?" in generation.text
    assert generation.text.endswith("X is a letter.")


def test_template_model_without_context_declines():
    llm = TemplateLanguageModel()
    prompt = QA_TEMPLATE.format(context="", question="What is X?")

    [generation] = asyncio.run(llm.generate(prompt))

    assert "not have enough relevant context" in generation.text
