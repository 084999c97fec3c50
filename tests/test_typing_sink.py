from __future__ import annotations

from unittest.mock import MagicMock

import pytest

import typing_sink
from models import TypingInstruction
from typing_sink import (
    BufferTypingSink,
    ClipboardTypingSink,
    KeyboardTypingSink,
    TypingError,
    create_typing_sink,
)


def _fake_keyboard(monkeypatch) -> MagicMock:  # noqa: ANN001
    controller = MagicMock()
    key = MagicMock()
    monkeypatch.setattr(typing_sink, "Controller", lambda: controller)
    monkeypatch.setattr(typing_sink, "Key", key)
    return controller


def test_keyboard_sink_fails_when_dependencies_missing(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(typing_sink, "Controller", None)
    monkeypatch.setattr(typing_sink, "Key", None)

    with pytest.raises(TypingError):
        KeyboardTypingSink().apply(TypingInstruction(insert_text="hello"))


def test_keyboard_sink_erases_then_types(monkeypatch) -> None:  # noqa: ANN001
    controller = _fake_keyboard(monkeypatch)

    KeyboardTypingSink().apply(TypingInstruction(erase_count=3, insert_text="p"))

    assert controller.press.call_count == 3
    assert controller.release.call_count == 3
    controller.type.assert_called_once_with("p")


def test_noop_instruction_touches_nothing(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(typing_sink, "Controller", None)
    KeyboardTypingSink().apply(TypingInstruction())


def test_clipboard_sink_pastes_and_restores(monkeypatch) -> None:  # noqa: ANN001
    controller = _fake_keyboard(monkeypatch)
    clipboard = MagicMock()
    clipboard.paste.return_value = "previous"
    monkeypatch.setattr(typing_sink, "pyperclip", clipboard)

    ClipboardTypingSink(restore_delay_s=0.0).apply(TypingInstruction(erase_count=1, insert_text=" world"))

    assert [c.args[0] for c in clipboard.copy.call_args_list] == [" world", "previous"]
    controller.press.assert_any_call("v")
    controller.type.assert_not_called()


def test_clipboard_sink_requires_pyperclip(monkeypatch) -> None:  # noqa: ANN001
    _fake_keyboard(monkeypatch)
    monkeypatch.setattr(typing_sink, "pyperclip", None)

    with pytest.raises(TypingError):
        ClipboardTypingSink().apply(TypingInstruction(insert_text="hi"))


def test_buffer_sink_applies_instructions() -> None:
    sink = BufferTypingSink()
    sink.apply(TypingInstruction(insert_text="hello world"))
    sink.apply(TypingInstruction(erase_count=8, insert_text="p"))

    assert sink.text == "help"
    assert len(sink.instructions) == 2


def test_buffer_sink_erase_past_start_clears_text() -> None:
    sink = BufferTypingSink()
    sink.apply(TypingInstruction(insert_text="hi"))
    sink.apply(TypingInstruction(erase_count=5, insert_text="yo"))

    assert sink.text == "yo"


def test_create_typing_sink() -> None:
    assert isinstance(create_typing_sink("keyboard"), KeyboardTypingSink)
    assert isinstance(create_typing_sink("clipboard"), ClipboardTypingSink)
    assert isinstance(create_typing_sink("none"), BufferTypingSink)
    with pytest.raises(ValueError):
        create_typing_sink("telegraph")
