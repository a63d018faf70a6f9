"""Shared domain models used across the ConvRAG pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class Role(str, Enum):
    """Speaker of a conversation turn."""

    HUMAN = "human"
    ASSISTANT = "assistant"
    OTHER = "other"


@dataclass(frozen=True)
class Turn:
    """One speaker's contribution to a conversation."""

    role: Role
    content: str
    label: str | None = None

    @classmethod
    def human(cls, content: str) -> "Turn":
        return cls(role=Role.HUMAN, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Turn":
        return cls(role=Role.ASSISTANT, content=content)


@dataclass(frozen=True)
class Document:
    """Unit of retrievable text with free-form metadata."""

    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredDocument:
    """Document returned from a similarity index together with its score."""

    document: Document
    score: float


@dataclass(frozen=True)
class Generation:
    """One sampled output of a language model call."""

    text: str
    info: Mapping[str, Any] | None = None
