"""Core data models for the dictation pipeline."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np

from errors import MALFORMED_ENGINE_OUTPUT

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    FINALIZING = "FINALIZING"
    ERROR = "ERROR"


class TranscriptionMode(str, Enum):
    STREAMING = "streaming"
    BATCH = "batch"


class VadEventKind(str, Enum):
    NO_CHANGE = "no_change"
    SPEECH_STARTED = "speech_started"
    SPEECH_CONTINUING = "speech_continuing"
    SPEECH_ENDED = "speech_ended"


class DecisionKind(str, Enum):
    EMIT = "emit"
    SUPPRESS = "suppress"


@dataclass(frozen=True)
class AudioFrame:
    """A block of mono float32 samples in [-1, 1].

    ``timestamp`` is the capture time in seconds on a monotonic clock.
    """

    samples: np.ndarray
    sample_rate: int = 16000
    timestamp: float = 0.0

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)


# ---------------------------------------------------------------------------
# VAD state variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Speaking:
    start_time: float


@dataclass(frozen=True)
class SilenceAfterSpeech:
    speech_start: float
    silence_start: float


VadState = Union[Idle, Speaking, SilenceAfterSpeech]


@dataclass(frozen=True)
class VadEvent:
    kind: VadEventKind
    duration: float = 0.0


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    text: str
    timestamp: float = 0.0
    probability: Optional[float] = None
    is_special: bool = False


@dataclass(frozen=True)
class Candidate:
    text: str
    tokens: tuple[Token, ...] = ()
    confidence: float = 0.0
    malformed: bool = False

    @classmethod
    def from_tokens(cls, text: str, tokens: Sequence[Token]) -> "Candidate":
        """Build a candidate whose confidence is the mean non-special token probability.

        Missing or out-of-range probabilities make the whole result malformed:
        it keeps its text but gets zero confidence so the stabilizer suppresses it.
        """
        tokens = tuple(tokens)
        probabilities = []
        for token in tokens:
            if token.is_special:
                continue
            p = token.probability
            if p is None or not isinstance(p, (int, float)) or math.isnan(p) or not 0.0 <= p <= 1.0:
                logger.warning("%s: token %r has probability %r", MALFORMED_ENGINE_OUTPUT, token.text, p)
                return cls(text=text, tokens=tokens, confidence=0.0, malformed=True)
            probabilities.append(float(p))
        if not probabilities:
            if text.strip():
                logger.warning("%s: no scored tokens for %r", MALFORMED_ENGINE_OUTPUT, text)
                return cls(text=text, tokens=tokens, confidence=0.0, malformed=True)
            return cls(text=text, tokens=tokens, confidence=0.0)
        return cls(text=text, tokens=tokens, confidence=sum(probabilities) / len(probabilities))


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    text: str = ""

    @property
    def emitted(self) -> bool:
        return self.kind == DecisionKind.EMIT


# ---------------------------------------------------------------------------
# Per-session text state
# ---------------------------------------------------------------------------


@dataclass
class StabilizationState:
    last_emitted_text: str = ""
    last_confidence: float = 0.0


@dataclass
class TypedTextState:
    """What has been placed at the cursor.

    ``committed`` is the prefix kept across the last reconcile and ``pending``
    the suffix that the last instruction typed; the cursor shows both.
    """

    committed: str = ""
    pending: str = ""
    last_update_time: float = 0.0

    @property
    def visible(self) -> str:
        return self.committed + self.pending


@dataclass(frozen=True)
class TypingInstruction:
    erase_count: int = 0
    insert_text: str = ""

    @property
    def is_noop(self) -> bool:
        return self.erase_count == 0 and not self.insert_text


@dataclass
class TranscriptUpdate:
    """Published to ``on_text`` after every instruction sent to the typing sink."""

    text: str
    instruction: TypingInstruction
    confidence: float
    final: bool = False
