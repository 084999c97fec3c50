"""Energy-based voice activity detection."""

from __future__ import annotations

import logging

from audio_levels import rms
from models import AudioFrame, Idle, SilenceAfterSpeech, Speaking, VadEvent, VadEventKind, VadState

logger = logging.getLogger(__name__)

SMOOTHING_ALPHA = 0.95


class VoiceActivityDetector:
    """Classifies frames as speech or silence from an exponentially smoothed RMS.

    A dip below the threshold only ends speech once it has lasted longer than
    ``max_silence_duration``; shorter dips are reported as continuation. The
    detector has no lookahead, so ``min_speech_duration`` is left to callers.
    Time is taken from the frame timestamps, never the wall clock.
    """

    def __init__(
        self,
        energy_threshold: float = 0.01,
        max_silence_duration: float = 1.0,
        min_speech_duration: float = 0.3,
        alpha: float = SMOOTHING_ALPHA,
    ) -> None:
        self.energy_threshold = energy_threshold
        self.max_silence_duration = max_silence_duration
        self.min_speech_duration = min_speech_duration
        self._alpha = alpha
        self._energy = 0.0
        self._state: VadState = Idle()

    @property
    def state(self) -> VadState:
        return self._state

    @property
    def current_energy(self) -> float:
        return self._energy

    def reset(self) -> None:
        self._energy = 0.0
        self._state = Idle()

    def process(self, frame: AudioFrame) -> VadEvent:
        energy = rms(frame.samples)
        self._energy = self._alpha * self._energy + (1.0 - self._alpha) * energy
        voiced = self._energy > self.energy_threshold
        now = frame.timestamp
        state = self._state

        if isinstance(state, Idle):
            if voiced:
                self._state = Speaking(now)
                logger.debug("speech started at %.3f (energy %.4f)", now, self._energy)
                return VadEvent(VadEventKind.SPEECH_STARTED)
            return VadEvent(VadEventKind.NO_CHANGE)

        if isinstance(state, Speaking):
            if voiced:
                return VadEvent(VadEventKind.SPEECH_CONTINUING)
            self._state = SilenceAfterSpeech(state.start_time, now)
            return VadEvent(VadEventKind.NO_CHANGE)

        # SilenceAfterSpeech
        if voiced:
            self._state = Speaking(state.speech_start)
            return VadEvent(VadEventKind.SPEECH_CONTINUING)
        if now - state.silence_start > self.max_silence_duration:
            duration = state.silence_start - state.speech_start
            self._state = Idle()
            logger.debug("speech ended at %.3f after %.2fs", now, duration)
            return VadEvent(VadEventKind.SPEECH_ENDED, duration=duration)
        return VadEvent(VadEventKind.NO_CHANGE)

    def is_long_enough(self, duration: float) -> bool:
        return duration >= self.min_speech_duration
