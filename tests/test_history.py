"""Tests for chat history normalization."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from convrag.models import Role, Turn
from convrag.services.history import (
    LegacyPairwise,
    PreformattedTranscript,
    TurnList,
    detect_history_format,
    get_chat_history_string,
    to_conversation,
)


def test_legacy_flat_history_normalizes_to_alternating_turns():
    history = ["hi", "hello", "how are you", "good"]

    with pytest.warns(DeprecationWarning):
        turns = to_conversation(detect_history_format(history))

    assert turns == (
        Turn(Role.HUMAN, "hi"),
        Turn(Role.ASSISTANT, "hello"),
        Turn(Role.HUMAN, "how are you"),
        Turn(Role.ASSISTANT, "good"),
    )


def test_legacy_flat_history_formats_as_transcript():
    with pytest.warns(DeprecationWarning):
        transcript = get_chat_history_string(["hi", "hello", "how are you", "good"])

    assert transcript == "Human: hi\nAssistant: hello\nHuman: how are you\nAssistant: good"


def test_legacy_pairs_are_flattened():
    with pytest.warns(DeprecationWarning):
        transcript = get_chat_history_string([("hi", "hello"), ("bye", "see you")])

    assert transcript == "Human: hi\nAssistant: hello\nHuman: bye\nAssistant: see you"


def test_turn_list_keeps_order_and_renders_other_roles_raw():
    history = [
        Turn.human("What is X?"),
        Turn.assistant("X is a letter."),
        Turn(Role.OTHER, "System notice", label="system"),
    ]

    assert get_chat_history_string(history) == "Human: What is X?\nAssistant: X is a letter.\nSystem notice"


def test_langchain_messages_are_mapped_by_type():
    history = [HumanMessage(content="hi"), AIMessage(content="hello"), SystemMessage(content="note")]

    history_format = detect_history_format(history)

    assert isinstance(history_format, TurnList)
    assert [turn.role for turn in history_format.turns] == [Role.HUMAN, Role.ASSISTANT, Role.OTHER]
    assert get_chat_history_string(history) == "Human: hi\nAssistant: hello\nnote"


def test_string_history_is_used_verbatim():
    assert detect_history_format("Human: hi") == PreformattedTranscript("Human: hi")
    assert get_chat_history_string("Human: hi") == "Human: hi"


def test_empty_history_is_an_empty_transcript():
    assert get_chat_history_string([]) == ""
    assert get_chat_history_string("") == ""


def test_detects_legacy_format():
    assert isinstance(detect_history_format(["a", "b"]), LegacyPairwise)


def test_turn_history_does_not_warn(recwarn):
    get_chat_history_string([Turn.human("hi")])
    assert not [w for w in recwarn if issubclass(w.category, DeprecationWarning)]


@pytest.mark.parametrize("history", [42, [1, 2], [Turn.human("hi"), "oops"]])
def test_unsupported_history_raises_type_error(history):
    with pytest.raises(TypeError):
        get_chat_history_string(history)
