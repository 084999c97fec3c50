"""Protocol interfaces for the collaborators the pipeline orchestrator drives."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Protocol

import numpy as np

from models import AudioFrame, Candidate, TypingInstruction


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class SpeechEngine(Protocol):
    def initialize(self) -> None:
        """Load the model or check credentials; raises ``EngineUnavailable``."""

    def transcribe(self, samples: np.ndarray, sample_rate: int) -> Candidate: ...


class TypingSink(Protocol):
    def apply(self, instruction: TypingInstruction) -> None: ...


class HotkeySource(Protocol):
    def start(self, on_press: Callable[[], None], on_release: Callable[[], None]) -> None: ...

    def stop(self) -> None: ...
