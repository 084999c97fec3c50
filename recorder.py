"""Microphone recorder adapters.

Both recorders push ``AudioFrame`` values into a bounded queue. When the
pipeline falls behind, the oldest queued frame is dropped to make room so
the audio callback never blocks.
"""

from __future__ import annotations

import logging
import threading
import time
from queue import Empty, Full, Queue
from typing import Any, Optional

import numpy as np

from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


def put_drop_oldest(audio_queue: Queue, item: Optional[AudioFrame]) -> bool:
    """Put without blocking; evicts the oldest entry when full. Returns False if something was dropped."""
    dropped = False
    while True:
        try:
            audio_queue.put_nowait(item)
            return not dropped
        except Full:
            try:
                audio_queue.get_nowait()
                dropped = True
            except Empty:
                pass


def list_input_devices() -> list[dict]:
    if sd is None:
        raise RuntimeError("sounddevice is not installed")
    devices = []
    for index, dev in enumerate(sd.query_devices()):
        if dev["max_input_channels"] > 0:
            devices.append({"index": index, "name": dev["name"], "channels": dev["max_input_channels"]})
    return devices


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        frame_ms: int = 100,
        device: Any = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.frame_ms = frame_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_frames = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            self._audio_queue = audio_queue
            self.dropped_frames = 0
            blocksize = int(self.sample_rate * (self.frame_ms / 1000.0))
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=blocksize,
                device=self.device,
                callback=self._on_audio,
            )
            self._stream.start()
            self._running = True
            logger.debug("input stream started: %d Hz, %d samples per block", self.sample_rate, blocksize)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                self._emit_sentinel_if_needed()
                return
            self._running = False
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None
            if self.dropped_frames:
                logger.info("dropped %d audio frames while the pipeline was busy", self.dropped_frames)
            self._emit_sentinel_if_needed()

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._audio_queue is None:
            return
        if status:
            logger.debug("input stream status: %s", status)
        samples = np.asarray(indata, dtype=np.float32).reshape(-1).copy()
        frame = AudioFrame(
            samples=samples,
            sample_rate=self.sample_rate,
            timestamp=time.monotonic(),
        )
        if not put_drop_oldest(self._audio_queue, frame):
            self.dropped_frames += 1

    def _emit_sentinel_if_needed(self) -> None:
        if self._audio_queue is None:
            return
        put_drop_oldest(self._audio_queue, None)


class SimulatedRecorder:
    """Synthetic source: noise floor with bursts of tone that read as speech.

    Used by ``--simulate`` to exercise the pipeline without a microphone.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        frame_ms: int = 100,
        speech_probability: float = 0.3,
        realtime: bool = True,
        seed: Optional[int] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.frame_ms = frame_ms
        self.speech_probability = speech_probability
        self.realtime = realtime
        self._rng = np.random.default_rng(seed)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._audio_queue: Queue[AudioFrame | None] | None = None
        self.dropped_frames = 0

    @property
    def frame_samples(self) -> int:
        return int(self.sample_rate * self.frame_ms / 1000)

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._audio_queue = audio_queue
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="simulated-recorder", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        if self._audio_queue is not None:
            put_drop_oldest(self._audio_queue, None)

    def generate(self, speech: bool) -> np.ndarray:
        n = self.frame_samples
        if not speech:
            return ((self._rng.random(n) - 0.5) * 0.001).astype(np.float32)
        t = np.arange(n) / float(self.sample_rate)
        freq = 440.0 + self._rng.random() * 100.0
        amplitude = 0.1 + self._rng.random() * 0.05
        tone = amplitude * np.sin(2.0 * np.pi * freq * t)
        noise = (self._rng.random(n) - 0.5) * 0.01
        return (tone + noise).astype(np.float32)

    def _run(self) -> None:
        period = self.frame_ms / 1000.0
        clock = time.monotonic()
        while not self._stop_event.is_set():
            speech = self._rng.random() < self.speech_probability
            frame = AudioFrame(samples=self.generate(speech), sample_rate=self.sample_rate, timestamp=clock)
            if not put_drop_oldest(self._audio_queue, frame):
                self.dropped_frames += 1
            clock += period
            if self.realtime:
                self._stop_event.wait(period)
