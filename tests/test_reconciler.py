"""Tests for TypingReconciler."""

from __future__ import annotations

import random

from models import TypedTextState, TypingInstruction
from reconciler import TypingReconciler, apply_instruction, common_prefix_length


def _reconciler() -> TypingReconciler:
    return TypingReconciler(clock=lambda: 42.0)


def test_extension_only_types_the_suffix() -> None:
    state = TypedTextState()
    reconciler = _reconciler()
    reconciler.reconcile("hello", state)

    instruction = reconciler.reconcile("hello world", state)

    assert instruction == TypingInstruction(erase_count=0, insert_text=" world")
    assert state.visible == "hello world"
    assert state.last_update_time == 42.0


def test_rewrite_erases_back_to_common_prefix() -> None:
    state = TypedTextState()
    reconciler = _reconciler()
    reconciler.reconcile("hello world", state)

    instruction = reconciler.reconcile("help", state)

    assert instruction == TypingInstruction(erase_count=8, insert_text="p")
    assert state.committed == "hel"
    assert state.pending == "p"


def test_reconcile_same_text_is_noop() -> None:
    state = TypedTextState()
    reconciler = _reconciler()
    reconciler.reconcile("hello there", state)

    instruction = reconciler.reconcile("hello there", state)

    assert instruction.is_noop
    assert state.visible == "hello there"


def test_empty_text_erases_everything() -> None:
    state = TypedTextState()
    reconciler = _reconciler()
    reconciler.reconcile("abc", state)

    instruction = reconciler.reconcile("", state)

    assert instruction == TypingInstruction(erase_count=3, insert_text="")
    assert state.visible == ""


def test_applying_instructions_reproduces_the_new_text() -> None:
    rng = random.Random(11)
    alphabet = "ab c"
    reconciler = _reconciler()
    state = TypedTextState()
    typed = ""
    for _ in range(300):
        new_text = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 12)))
        instruction = reconciler.reconcile(new_text, state)

        assert instruction.erase_count <= len(typed)
        typed = apply_instruction(typed, instruction)
        assert typed == new_text
        assert state.visible == new_text


def test_reset_forgets_visible_text() -> None:
    state = TypedTextState(committed="abc", pending="def")
    _reconciler().reset(state)
    assert state.visible == ""


def test_common_prefix_length() -> None:
    assert common_prefix_length("", "abc") == 0
    assert common_prefix_length("abc", "abd") == 2
    assert common_prefix_length("abc", "abc") == 3
    assert common_prefix_length("abc", "abcdef") == 3
