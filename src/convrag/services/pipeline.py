"""Conversational retrieval pipeline.

Stages run strictly in order: validate the input, normalize the history,
condense the follow-up into a standalone question, retrieve documents,
synthesize the answer and optionally attach the retrieved documents. Any
failure aborts the remaining stages and reaches the caller unchanged.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Sequence

from convrag.errors import AmbiguousOutputError, MissingInputError
from convrag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from convrag.models import Document
from convrag.retrieval.service import Retriever
from convrag.services.chains import Chain, PromptConfig, load_condense_chain, load_qa_chain
from convrag.services.generation import LanguageModel
from convrag.services.history import get_chat_history_string


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for the conversational retrieval pipeline."""

    question_key: str = "question"
    chat_history_key: str = "chat_history"
    return_source_documents: bool = False
    source_documents_key: str = "source_documents"


class ConversationalRetrievalPipeline:
    """Answers follow-up questions grounded in retrieved documents."""

    _logger = get_logger("pipeline")

    def __init__(
        self,
        retriever: Retriever,
        question_generator: Chain,
        combine_documents_chain: Chain,
        config: PipelineConfig | None = None,
    ) -> None:
        self._retriever = retriever
        self._question_generator = question_generator
        self._combine_documents_chain = combine_documents_chain
        self._config = config or PipelineConfig()

    @classmethod
    def from_llm(
        cls,
        llm: LanguageModel,
        retriever: Retriever,
        *,
        config: PipelineConfig | None = None,
        prompts: PromptConfig | None = None,
        condense_llm: LanguageModel | None = None,
    ) -> "ConversationalRetrievalPipeline":
        """Build the pipeline with the default condense and "stuff" QA chains."""

        prompts = prompts or PromptConfig()
        return cls(
            retriever=retriever,
            question_generator=load_condense_chain(condense_llm or llm, prompts),
            combine_documents_chain=load_qa_chain(llm, prompts),
            config=config,
        )

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def input_keys(self) -> list[str]:
        return [self._config.question_key, self._config.chat_history_key]

    @property
    def output_keys(self) -> list[str]:
        keys = list(self._combine_documents_chain.output_keys)
        if self._config.return_source_documents:
            keys.append(self._config.source_documents_key)
        return keys

    get_chat_history_string = staticmethod(get_chat_history_string)

    async def __call__(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        return await self.ainvoke(inputs)

    def invoke(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        """Run the pipeline from synchronous code that has no running event loop."""

        return asyncio.run(self.ainvoke(inputs))

    async def ainvoke(self, inputs: Mapping[str, Any]) -> dict[str, Any]:
        question_key = self._config.question_key
        history_key = self._config.chat_history_key
        if question_key not in inputs:
            raise MissingInputError(question_key, "Question")
        if history_key not in inputs:
            raise MissingInputError(history_key, "Chat history")
        question: str = inputs[question_key]

        async with self._stage("normalize_history"):
            chat_history = get_chat_history_string(inputs[history_key])

        new_question = question
        if chat_history:
            async with self._stage("condense_question"):
                with TimedSection(PipelineMetrics.observe_condense) as timer:
                    result = await self._question_generator.acall(
                        {"question": question, "chat_history": chat_history},
                    )
                keys = list(result)
                if len(keys) != 1:
                    raise AmbiguousOutputError(keys)
                new_question = result[keys[0]]
            self._logger.info("condense.complete", duration_seconds=timer.duration, question=new_question)

        async with self._stage("retrieve"):
            with TimedSection() as timer:
                documents: Sequence[Document] = await self._retriever.get_relevant_documents(new_question)
            PipelineMetrics.observe_retrieval(timer.duration, len(documents))
        self._logger.info(
            "retrieval.complete",
            question=new_question,
            document_count=len(documents),
            duration_seconds=timer.duration,
        )

        async with self._stage("synthesize"):
            with TimedSection(PipelineMetrics.observe_synthesis) as timer:
                result = await self._combine_documents_chain.acall(
                    {"question": new_question, "input_documents": documents, "chat_history": chat_history},
                )
        self._logger.info("synthesis.complete", duration_seconds=timer.duration, output_keys=list(result))

        self._logger.info("pipeline.complete", condensed=bool(chat_history), document_count=len(documents))
        if self._config.return_source_documents:
            return {**result, self._config.source_documents_key: documents}
        return result

    def serialize(self) -> dict[str, Any]:
        raise NotImplementedError("ConversationalRetrievalPipeline cannot be serialized.")

    @classmethod
    def deserialize(cls, data: Mapping[str, Any], values: Mapping[str, Any]) -> "ConversationalRetrievalPipeline":
        raise NotImplementedError("ConversationalRetrievalPipeline cannot be deserialized.")

    @asynccontextmanager
    async def _stage(self, stage: str) -> AsyncIterator[None]:
        try:
            yield
        except Exception as exc:
            self._logger.error("pipeline.stage_failed", stage=stage, error=type(exc).__name__, detail=str(exc))
            exc.add_note(f"convrag pipeline stage: {stage}")
            raise
