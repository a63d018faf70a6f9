"""Pydantic models for the ConvRAG API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TurnModel(BaseModel):
    role: Literal["human", "assistant", "other"] = Field(..., description="Speaker of the turn")
    content: str = Field(..., description="What the speaker said")


class ChatRequest(BaseModel):
    question: str = Field(..., min_length=1, description="Follow-up question to answer")
    chat_history: Union[List[TurnModel], List[str], str] = Field(
        default_factory=list,
        description="Prior turns, a deprecated flat list of alternating human/assistant strings, or a transcript",
    )


class SourceDocumentModel(BaseModel):
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChatResponse(BaseModel):
    answer: str
    source_documents: List[SourceDocumentModel] = Field(default_factory=list)
    latency_ms: float


class TextIngestionRequest(BaseModel):
    """Payload for indexing raw text content."""

    texts: List[str] = Field(..., description="List of raw text snippets to index")
    metadatas: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="Optional metadata per text, aligned by position",
    )


class DocumentIngestionResponse(BaseModel):
    ids: List[str]
    count: int = Field(..., ge=0)
