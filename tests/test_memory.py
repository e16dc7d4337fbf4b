from __future__ import annotations

import pytest

from llm_oracle.llm import ROLE_ASSISTANT, ROLE_USER, ChatMessage
from llm_oracle.memory import InteractionMemory


def test_missing_conversation_has_no_history():
    mem = InteractionMemory()
    assert mem.get_history("nope") is None
    assert "nope" not in mem
    assert len(mem) == 0


def test_history_is_kept_in_insertion_order():
    mem = InteractionMemory(max_entries=10)
    mem.add_interaction("a", "hello", ROLE_USER)
    mem.add_interaction("a", "hi there", ROLE_ASSISTANT)
    assert mem.get_history("a") == [
        ChatMessage(ROLE_USER, "hello"),
        ChatMessage(ROLE_ASSISTANT, "hi there"),
    ]


@pytest.mark.parametrize("inserts", [1, 3, 4, 9])
def test_history_length_is_capped_with_most_recent_kept(inserts):
    bound = 4
    mem = InteractionMemory(max_entries=bound)
    for i in range(inserts):
        mem.add_interaction("conv", f"m{i}", ROLE_USER)

    history = mem.get_history("conv")
    assert len(history) == min(inserts, bound)
    expected = [f"m{i}" for i in range(max(0, inserts - bound), inserts)]
    assert [m.content for m in history] == expected


def test_conversations_are_independent_and_clearable():
    mem = InteractionMemory(max_entries=2)
    mem.add_interaction("a", "a1", ROLE_USER)
    mem.add_interaction("b", "b1", ROLE_USER)
    mem.add_interaction("b", "b2", ROLE_USER)
    mem.add_interaction("b", "b3", ROLE_USER)

    assert [m.content for m in mem.get_history("a")] == ["a1"]
    assert [m.content for m in mem.get_history("b")] == ["b2", "b3"]

    mem.clear("b")
    assert mem.get_history("b") is None
    assert len(mem) == 1


def test_returned_history_is_a_copy():
    mem = InteractionMemory()
    mem.add_interaction("a", "one", ROLE_USER)
    history = mem.get_history("a")
    history.append(ChatMessage(ROLE_USER, "not stored"))
    assert len(mem.get_history("a")) == 1


def test_bound_must_be_positive():
    with pytest.raises(ValueError):
        InteractionMemory(max_entries=0)
