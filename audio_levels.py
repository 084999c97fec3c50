"""Sample-level helpers: energy, decibels and PCM conversion."""

from __future__ import annotations

import numpy as np

SILENCE_DB = -60.0

_BARS = (
    (-10.0, "████████"),
    (-20.0, "██████░░"),
    (-30.0, "████░░░░"),
    (-40.0, "██░░░░░░"),
)


def rms(samples: np.ndarray) -> float:
    if samples is None or len(samples) == 0:
        return 0.0
    data = np.asarray(samples, dtype=np.float64)
    value = float(np.sqrt(np.mean(data * data)))
    if np.isnan(value):
        return 0.0
    return value


def level_db(samples: np.ndarray) -> float:
    """RMS level in dBFS, clamped to ``SILENCE_DB`` for empty or silent input."""
    value = rms(samples)
    if value <= 0.0:
        return SILENCE_DB
    return max(SILENCE_DB, 20.0 * float(np.log10(value)))


def level_bar(db: float) -> str:
    for floor, bar in _BARS:
        if db > floor:
            return bar
    return "░░░░░░░░"


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    return np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
