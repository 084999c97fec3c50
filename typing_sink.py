"""Typing sinks that apply erase/insert instructions at the current cursor."""

from __future__ import annotations

import logging
import sys
import time

from errors import TYPING_FAILED
from models import TypingInstruction
from reconciler import apply_instruction

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

try:
    from pynput.keyboard import Controller, Key
except Exception:  # pragma: no cover
    Controller = None  # type: ignore
    Key = None  # type: ignore

logger = logging.getLogger(__name__)


class TypingError(RuntimeError):
    code = TYPING_FAILED


def _require_keyboard() -> None:
    if Controller is None or Key is None:
        raise TypingError("keyboard dependency missing")


class KeyboardTypingSink:
    """Sends backspaces, then types the new text key by key."""

    def __init__(self, key_delay_s: float = 0.0) -> None:
        self._key_delay_s = key_delay_s
        self._keyboard = None

    def _controller(self):  # noqa: ANN202
        _require_keyboard()
        if self._keyboard is None:
            self._keyboard = Controller()
        return self._keyboard

    def apply(self, instruction: TypingInstruction) -> None:
        if instruction.is_noop:
            return
        keyboard = self._controller()
        for _ in range(instruction.erase_count):
            keyboard.press(Key.backspace)
            keyboard.release(Key.backspace)
            if self._key_delay_s:
                time.sleep(self._key_delay_s)
        if instruction.insert_text:
            keyboard.type(instruction.insert_text)
        logger.debug("typed -%d +%r", instruction.erase_count, instruction.insert_text)


class ClipboardTypingSink(KeyboardTypingSink):
    """Erases with backspaces, then pastes the new text through the clipboard.

    Faster than typing for long insertions and safe for characters the
    keyboard layout cannot produce. The previous clipboard is restored.
    """

    def __init__(self, restore_delay_s: float = 0.1, key_delay_s: float = 0.0) -> None:
        super().__init__(key_delay_s=key_delay_s)
        self._restore_delay_s = restore_delay_s
        self._modifier_name = "cmd" if sys.platform == "darwin" else "ctrl"

    def apply(self, instruction: TypingInstruction) -> None:
        if instruction.is_noop:
            return
        if pyperclip is None:
            raise TypingError("clipboard dependency missing")
        keyboard = self._controller()
        if instruction.erase_count:
            super().apply(TypingInstruction(erase_count=instruction.erase_count))
        if not instruction.insert_text:
            return

        old_clip: str | None = None
        try:
            old_clip = pyperclip.paste()
            pyperclip.copy(instruction.insert_text)
            modifier = getattr(Key, self._modifier_name)
            keyboard.press(modifier)
            keyboard.press("v")
            keyboard.release("v")
            keyboard.release(modifier)
            time.sleep(self._restore_delay_s)
        finally:
            if old_clip is not None:
                pyperclip.copy(old_clip)


class BufferTypingSink:
    """Applies instructions to an in-memory string; used for dry runs and tests."""

    def __init__(self) -> None:
        self.text = ""
        self.instructions: list[TypingInstruction] = []

    def apply(self, instruction: TypingInstruction) -> None:
        self.instructions.append(instruction)
        self.text = apply_instruction(self.text, instruction)


def create_typing_sink(kind: str):  # noqa: ANN201
    kind = (kind or "keyboard").lower()
    if kind == "keyboard":
        return KeyboardTypingSink()
    if kind == "clipboard":
        return ClipboardTypingSink()
    if kind in ("none", "dry-run", "buffer"):
        return BufferTypingSink()
    raise ValueError(f"unknown typing sink {kind!r}")
