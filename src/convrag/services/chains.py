"""Sub-chains used by the conversational pipeline.

A chain maps an input dict to an output dict and advertises its output keys.
``LLMChain`` renders a prompt and returns the first generation; it is the
default question condenser. ``StuffDocumentsChain`` concatenates every
retrieved document into one prompt and is the default answer synthesizer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from langchain_core.prompts import PromptTemplate

from convrag.errors import UpstreamCallError
from convrag.models import Document
from convrag.services.generation import LanguageModel

CONDENSE_QUESTION_TEMPLATE = """Given the following conversation and a follow up question, rephrase the follow up question to be a standalone question.

Chat History:
{chat_history}
Follow Up Input: {question}
Standalone question:"""

QA_TEMPLATE = """Use the following pieces of context to answer the question at the end. If you don't know the answer, just say that you don't know, don't try to make up an answer.

{context}

Question: {question}
Helpful Answer:"""


@dataclass(frozen=True)
class PromptConfig:
    """Prompt templates and document formatting for the default chains."""

    condense_question_template: str = CONDENSE_QUESTION_TEMPLATE
    qa_template: str = QA_TEMPLATE
    document_template: str = "{page_content}"
    document_separator: str = "\n\n"


class Chain(Protocol):
    """Callable unit that maps named inputs to named outputs."""

    @property
    def output_keys(self) -> Sequence[str]:
        """Names of the fields returned by :meth:`acall`."""

    async def acall(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        """Run the chain."""


class LLMChain:
    """Formats a prompt and returns the model's first generation."""

    def __init__(self, llm: LanguageModel, prompt: PromptTemplate | str, output_key: str = "text") -> None:
        self._llm = llm
        self._prompt = PromptTemplate.from_template(prompt) if isinstance(prompt, str) else prompt
        self._output_key = output_key

    @property
    def llm(self) -> LanguageModel:
        return self._llm

    @property
    def prompt(self) -> PromptTemplate:
        return self._prompt

    @property
    def input_keys(self) -> Sequence[str]:
        return list(self._prompt.input_variables)

    @property
    def output_keys(self) -> Sequence[str]:
        return [self._output_key]

    async def acall(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        return {self._output_key: await self.apredict(**{key: inputs[key] for key in self.input_keys})}

    async def apredict(self, **values: Any) -> str:
        text = self._prompt.format(**values)
        generations = await self._llm.generate(text)
        if not generations:
            raise UpstreamCallError(f"Language model {self._llm.model_identifier!r} returned no generations")
        return generations[0].text


class StuffDocumentsChain:
    """Stuffs all input documents into a single prompt for the wrapped chain."""

    def __init__(
        self,
        llm_chain: LLMChain,
        *,
        document_variable_name: str = "context",
        input_key: str = "input_documents",
        config: PromptConfig | None = None,
    ) -> None:
        self._llm_chain = llm_chain
        self._document_variable_name = document_variable_name
        self._input_key = input_key
        self._config = config or PromptConfig()
        self._document_prompt = PromptTemplate.from_template(self._config.document_template)

    @property
    def output_keys(self) -> Sequence[str]:
        return self._llm_chain.output_keys

    def format_documents(self, documents: Sequence[Document]) -> str:
        parts = []
        for document in documents:
            values = {
                key: document.metadata.get(key, "")
                for key in self._document_prompt.input_variables
                if key != "page_content"
            }
            parts.append(self._document_prompt.format(page_content=document.content, **values))
        return self._config.document_separator.join(parts)

    async def acall(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        documents: Sequence[Document] = inputs[self._input_key]
        values = {key: value for key, value in inputs.items() if key != self._input_key}
        values[self._document_variable_name] = self.format_documents(documents)
        return await self._llm_chain.acall(values)


def load_condense_chain(llm: LanguageModel, config: PromptConfig | None = None) -> LLMChain:
    config = config or PromptConfig()
    return LLMChain(llm, config.condense_question_template)


def load_qa_chain(llm: LanguageModel, config: PromptConfig | None = None) -> StuffDocumentsChain:
    """Build the default "stuff" answer synthesizer."""

    config = config or PromptConfig()
    return StuffDocumentsChain(LLMChain(llm, config.qa_template), config=config)
