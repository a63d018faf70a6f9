"""Chat history normalization.

Callers may hand the pipeline its history in several shapes. Each shape is
detected once, tagged, converted to the canonical tuple of turns and then
rendered as a ``Human:`` / ``Assistant:`` transcript.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any, Sequence, Union

from langchain_core.messages import BaseMessage

from convrag.metrics.observability import get_logger
from convrag.models import Role, Turn

Conversation = tuple[Turn, ...]

LEGACY_HISTORY_WARNING = (
    "Passing chat history as an array of strings is deprecated. "
    "Pass a sequence of Turn objects instead."
)

_MESSAGE_ROLES = {"human": Role.HUMAN, "ai": Role.ASSISTANT}

_logger = get_logger("history")


@dataclass(frozen=True)
class PreformattedTranscript:
    """History that already is a transcript string; used verbatim."""

    text: str


@dataclass(frozen=True)
class TurnList:
    turns: Conversation


@dataclass(frozen=True)
class LegacyPairwise:
    """Deprecated flat string history: even positions human, odd assistant."""

    messages: tuple[str, ...]


HistoryFormat = Union[PreformattedTranscript, TurnList, LegacyPairwise]


def _is_string_pair(item: Any) -> bool:
    return isinstance(item, (list, tuple)) and all(isinstance(part, str) for part in item)


def _to_turn(item: Any) -> Turn:
    if isinstance(item, Turn):
        return item
    if isinstance(item, BaseMessage):
        role = _MESSAGE_ROLES.get(item.type, Role.OTHER)
        label = None if role is not Role.OTHER else item.type
        return Turn(role=role, content=str(item.content), label=label)
    raise TypeError(f"Unsupported chat history entry: {type(item).__name__}")


def detect_history_format(history: Any) -> HistoryFormat:
    """Classify ``history`` into one of the supported shapes."""

    if isinstance(history, str):
        return PreformattedTranscript(history)
    if not isinstance(history, Sequence):
        raise TypeError(f"Unsupported chat history type: {type(history).__name__}")
    if not history:
        return TurnList(())
    first = history[0]
    if isinstance(first, str) and all(isinstance(item, str) for item in history):
        return LegacyPairwise(tuple(history))
    if _is_string_pair(first) and all(_is_string_pair(item) for item in history):
        return LegacyPairwise(tuple(message for pair in history for message in pair))
    return TurnList(tuple(_to_turn(item) for item in history))


def to_conversation(history_format: HistoryFormat) -> Conversation:
    """Convert a tagged history into turns. Transcripts have no turn structure."""

    if isinstance(history_format, TurnList):
        return history_format.turns
    if isinstance(history_format, LegacyPairwise):
        warnings.warn(LEGACY_HISTORY_WARNING, DeprecationWarning, stacklevel=3)
        _logger.warning("history.legacy_format", messages=len(history_format.messages))
        return tuple(
            Turn.human(message) if position % 2 == 0 else Turn.assistant(message)
            for position, message in enumerate(history_format.messages)
        )
    raise TypeError("A preformatted transcript cannot be converted into turns")


def format_turn(turn: Turn) -> str:
    if turn.role is Role.HUMAN:
        return f"Human: {turn.content}"
    if turn.role is Role.ASSISTANT:
        return f"Assistant: {turn.content}"
    return turn.content


def format_transcript(conversation: Sequence[Turn]) -> str:
    return "\n".join(format_turn(turn) for turn in conversation)


def get_chat_history_string(history: Any) -> str:
    """Render any supported history shape as a newline-joined transcript."""

    history_format = detect_history_format(history)
    if isinstance(history_format, PreformattedTranscript):
        return history_format.text
    return format_transcript(to_conversation(history_format))
