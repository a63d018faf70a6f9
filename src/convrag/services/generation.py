"""Language model backends for ConvRAG."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from convrag.cache.service import GenerationCache
from convrag.errors import UpstreamCallError
from convrag.models import Generation

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for text generation."""

    model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    max_new_tokens: int = 512
    temperature: float = 0.3
    n: int = 1
    device: str | None = None


class LanguageModel(Protocol):
    """Prompt in, ordered generations out."""

    @property
    def model_identifier(self) -> str:
        """Stable identifier used to key cached generations."""

    async def generate(self, prompt: str) -> list[Generation]:
        """Return one or more generations for ``prompt``."""


_STANDALONE_RE = re.compile(r"Follow Up Input:\s*(?P<question>.*?)\s*Standalone question:\s*$", re.DOTALL)
_QUESTION_RE = re.compile(r"Question:\s*(?P<question>.*?)\s*Helpful Answer:\s*$", re.DOTALL)
_CONTEXT_RE = re.compile(r"answer the question at the end\..*?\n\n(?P<context>.*)\n\nQuestion:", re.DOTALL)


class TemplateLanguageModel:
    """Deterministic model used for tests and offline environments.

    It recognises the two default prompts: condensation prompts echo the
    follow-up question, answer prompts quote the first context passage.
    """

    def __init__(self, model_identifier: str = "template") -> None:
        self._model_identifier = model_identifier
        self.calls = 0

    @property
    def model_identifier(self) -> str:
        return self._model_identifier

    async def generate(self, prompt: str) -> list[Generation]:
        self.calls += 1
        standalone = _STANDALONE_RE.search(prompt)
        if standalone:
            return [Generation(text=standalone.group("question").strip())]
        question = _QUESTION_RE.search(prompt)
        context = _CONTEXT_RE.search(prompt)
        if question is None:
            return [Generation(text=prompt.strip().splitlines()[-1] if prompt.strip() else "")]
        passages = context.group("context").strip() if context else ""
        if not passages:
            return [Generation(text="I do not have enough relevant context to answer that question.")]
        first = passages.split("\n\n")[0]
        return [
            Generation(
                text=f"Based on the provided documents, here is the best match for '{question.group('question')}': {first}",
            ),
        ]


class TransformersLanguageModel:
    """Causal language model served through HuggingFace Transformers."""

    def __init__(self, config: GenerationConfig | None = None) -> None:
        self._config = config or GenerationConfig()
        try:
            from transformers import AutoModelForCausalLM, AutoTokenizer

            self._tokenizer = AutoTokenizer.from_pretrained(self._config.model, trust_remote_code=True)
            self._model = AutoModelForCausalLM.from_pretrained(self._config.model, trust_remote_code=True)
        except Exception as exc:
            raise UpstreamCallError(f"Failed to load generation model {self._config.model}: {exc}") from exc
        if self._tokenizer.pad_token is None and self._tokenizer.eos_token is not None:
            self._tokenizer.pad_token = self._tokenizer.eos_token
        if getattr(self._model.config, "pad_token_id", None) is None and self._tokenizer.pad_token_id is not None:
            self._model.config.pad_token_id = self._tokenizer.pad_token_id
        if self._config.device:
            self._model.to(self._config.device)
        LOGGER.info("Loaded generation model %s", self._config.model)

    @property
    def model_identifier(self) -> str:
        c = self._config
        return f"transformers:{c.model}:max_new_tokens={c.max_new_tokens}:temperature={c.temperature}:n={c.n}"

    async def generate(self, prompt: str) -> list[Generation]:
        return await asyncio.to_thread(self._generate_sync, prompt)

    def _generate_sync(self, prompt: str) -> list[Generation]:
        try:
            inputs = self._tokenizer(prompt, return_tensors="pt")
            if self._config.device:
                inputs = inputs.to(self._config.device)
            kwargs: dict[str, Any] = {
                "max_new_tokens": self._config.max_new_tokens,
                "num_return_sequences": self._config.n,
                "pad_token_id": self._tokenizer.pad_token_id,
            }
            if self._config.temperature > 0:
                kwargs.update(do_sample=True, temperature=self._config.temperature)
            outputs = self._model.generate(**inputs, **kwargs)
        except Exception as exc:
            raise UpstreamCallError(f"Generation failed for {self._config.model}: {exc}") from exc
        prompt_length = inputs["input_ids"].shape[-1]
        return [
            Generation(text=self._tokenizer.decode(output[prompt_length:], skip_special_tokens=True).strip())
            for output in outputs
        ]


class CachedLanguageModel:
    """Wraps a model so repeated prompts are served from a generation cache."""

    def __init__(self, model: LanguageModel, cache: GenerationCache) -> None:
        self._model = model
        self._cache = cache

    @property
    def model_identifier(self) -> str:
        return self._model.model_identifier

    async def generate(self, prompt: str) -> list[Generation]:
        cached = await self._cache.lookup(prompt, self.model_identifier)
        if cached is not None:
            return cached
        generations = await self._model.generate(prompt)
        if generations:
            await self._cache.update(prompt, self.model_identifier, generations)
        return generations
