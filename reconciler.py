"""Turns the next stabilized text into backspaces and keystrokes."""

from __future__ import annotations

import time
from typing import Callable

from models import TypedTextState, TypingInstruction


def common_prefix_length(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    i = 0
    while i < limit and a[i] == b[i]:
        i += 1
    return i


def apply_instruction(text: str, instruction: TypingInstruction) -> str:
    """What a buffer holding ``text`` contains after the instruction is typed."""
    kept = text[: max(0, len(text) - instruction.erase_count)]
    return kept + instruction.insert_text


class TypingReconciler:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock

    def reconcile(self, new_text: str, state: TypedTextState) -> TypingInstruction:
        visible = state.visible
        k = common_prefix_length(visible, new_text)
        state.committed = new_text[:k]
        state.pending = new_text[k:]
        state.last_update_time = self._clock()
        return TypingInstruction(erase_count=len(visible) - k, insert_text=state.pending)

    def reset(self, state: TypedTextState) -> None:
        state.committed = ""
        state.pending = ""
        state.last_update_time = self._clock()
