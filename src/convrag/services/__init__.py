"""Service layer orchestrations for ConvRAG."""

from .chains import Chain, LLMChain, PromptConfig, StuffDocumentsChain, load_condense_chain, load_qa_chain
from .generation import CachedLanguageModel, GenerationConfig, LanguageModel, TemplateLanguageModel, TransformersLanguageModel
from .history import get_chat_history_string
from .pipeline import ConversationalRetrievalPipeline, PipelineConfig

__all__ = [
    "CachedLanguageModel",
    "Chain",
    "ConversationalRetrievalPipeline",
    "GenerationConfig",
    "LLMChain",
    "LanguageModel",
    "PipelineConfig",
    "PromptConfig",
    "StuffDocumentsChain",
    "TemplateLanguageModel",
    "TransformersLanguageModel",
    "get_chat_history_string",
    "load_condense_chain",
    "load_qa_chain",
]
