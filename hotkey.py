"""Global hotkey adapter based on pynput.

In push-to-talk mode ``on_press`` fires when the key goes down and
``on_release`` when it comes up. In toggle mode each press alternates
between the two and key releases are ignored.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class GlobalHotkeyAdapter:
    def __init__(self, hotkey_name: str = "Key.alt_l", toggle: bool = False) -> None:
        self._hotkey_name = hotkey_name
        self._toggle = toggle
        self._listener: Optional[object] = None
        self._pressed = False
        self._active = False
        self._lock = threading.Lock()
        self._on_press: Callable[[], None] = lambda: None
        self._on_release: Callable[[], None] = lambda: None

    def start(self, on_press: Callable[[], None], on_release: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_press = on_press
        self._on_release = on_release
        self._listener = keyboard.Listener(on_press=self.handle_press, on_release=self.handle_release)
        self._listener.start()
        logger.info("listening for %s (%s)", self._hotkey_name, "toggle" if self._toggle else "push-to-talk")

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def handle_press(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if self._pressed:
                return
            self._pressed = True
            if self._toggle:
                self._active = not self._active
                callback = self._on_press if self._active else self._on_release
            else:
                callback = self._on_press
        callback()

    def handle_release(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if not self._pressed:
                return
            self._pressed = False
            if self._toggle:
                return
        self._on_release()
