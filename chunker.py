"""Context ring buffer and chunk scheduling.

In streaming mode the scheduler keeps a sliding window of recent audio and
reports it ready every ``chunk_samples`` new samples. The whole retained
window is handed to the engine so it sees audio from before the chunk
boundary; afterwards one chunk worth of the oldest audio is evicted, keeping
at least ``context_samples`` of overlap for the next window.

In batch mode the buffer holds one utterance from ``begin_segment`` to
``end_segment``. While no segment is open only a short pre-roll is kept so
the first syllable, which the smoothed VAD detects late, is not lost.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np

from audio_levels import level_db
from errors import BUFFER_OVERFLOW
from models import TranscriptionMode

logger = logging.getLogger(__name__)

_EMPTY = np.zeros(0, dtype=np.float32)


class _SampleQueue:
    """FIFO of float32 samples stored as a deque of blocks."""

    def __init__(self) -> None:
        self._blocks: Deque[np.ndarray] = deque()
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def push(self, samples: np.ndarray) -> None:
        if len(samples) == 0:
            return
        self._blocks.append(samples)
        self._size += len(samples)

    def drop_oldest(self, count: int) -> int:
        dropped = 0
        while count > 0 and self._blocks:
            head = self._blocks[0]
            if len(head) <= count:
                self._blocks.popleft()
                count -= len(head)
                dropped += len(head)
            else:
                self._blocks[0] = head[count:]
                dropped += count
                count = 0
        self._size -= dropped
        return dropped

    def to_array(self) -> np.ndarray:
        if not self._blocks:
            return _EMPTY.copy()
        return np.concatenate(list(self._blocks))

    def clear(self) -> int:
        dropped = self._size
        self._blocks.clear()
        self._size = 0
        return dropped


class ChunkScheduler:
    def __init__(
        self,
        mode: TranscriptionMode = TranscriptionMode.STREAMING,
        chunk_samples: int = 32000,
        context_samples: int = 16000,
        max_context_samples: int = 160000,
        max_segment_samples: int = 960000,
        pre_roll_samples: int = 4800,
        min_final_samples: int = 8000,
        silence_floor_db: float = -45.0,
    ) -> None:
        if chunk_samples <= 0:
            raise ValueError("chunk_samples must be positive")
        self.mode = mode
        self.chunk_samples = chunk_samples
        self.context_samples = max(0, min(context_samples, max_context_samples))
        self.max_context_samples = max(chunk_samples, max_context_samples)
        self.max_segment_samples = max_segment_samples
        self.pre_roll_samples = pre_roll_samples
        self.min_final_samples = min_final_samples
        self.silence_floor_db = silence_floor_db

        self._buffer = _SampleQueue()
        self._pre_roll = _SampleQueue()
        self._fresh = 0
        self._in_segment = False

        self.total_appended = 0
        self.total_evicted = 0
        self.overflow_evicted = 0
        self.windows_skipped = 0

    @classmethod
    def from_config(cls, config) -> "ChunkScheduler":  # noqa: ANN001
        return cls(
            mode=config.transcription_mode,
            chunk_samples=config.chunk_samples,
            context_samples=config.context_samples,
            max_context_samples=config.max_context_samples,
            max_segment_samples=config.ms_to_samples(config.max_segment_ms),
            pre_roll_samples=config.ms_to_samples(config.pre_roll_ms),
            min_final_samples=config.ms_to_samples(config.min_final_ms),
            silence_floor_db=config.silence_floor_db,
        )

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    @property
    def buffered(self) -> int:
        return len(self._buffer) + len(self._pre_roll)

    @property
    def fresh_samples(self) -> int:
        return self._fresh

    @property
    def in_segment(self) -> bool:
        return self._in_segment

    def _evict(self, queue: _SampleQueue, count: int) -> int:
        dropped = queue.drop_oldest(count)
        self.total_evicted += dropped
        return dropped

    def _clear(self, queue: _SampleQueue) -> None:
        self.total_evicted += queue.clear()

    # ------------------------------------------------------------------
    # Buffer operations
    # ------------------------------------------------------------------

    def append(self, samples: np.ndarray) -> int:
        """Add samples; returns how many old samples were force-evicted."""
        samples = np.asarray(samples, dtype=np.float32)
        self.total_appended += len(samples)

        if self.mode == TranscriptionMode.BATCH and not self._in_segment:
            self._pre_roll.push(samples)
            excess = len(self._pre_roll) - self.pre_roll_samples
            if excess > 0:
                self._evict(self._pre_roll, excess)
            return 0

        self._buffer.push(samples)
        self._fresh += len(samples)
        limit = self.max_segment_samples if self.mode == TranscriptionMode.BATCH else self.max_context_samples
        excess = len(self._buffer) - limit
        if excess <= 0:
            return 0
        dropped = self._evict(self._buffer, excess)
        self._fresh = min(self._fresh, len(self._buffer))
        self.overflow_evicted += dropped
        logger.debug("%s: evicted %d oldest samples (limit %d)", BUFFER_OVERFLOW, dropped, limit)
        return dropped

    def is_ready(self) -> bool:
        if self.mode == TranscriptionMode.BATCH:
            return False
        return self._fresh >= self.chunk_samples

    def take_window(self) -> np.ndarray:
        """Return the whole retained window, then evict what the next window no longer needs."""
        window = self._buffer.to_array()
        if self.mode == TranscriptionMode.BATCH:
            self._clear(self._buffer)
        else:
            keep = max(self.context_samples, len(window) - self.chunk_samples)
            if keep < len(window):
                self._evict(self._buffer, len(window) - keep)
        self._fresh = 0
        return window

    def is_silent(self, window: np.ndarray) -> bool:
        return level_db(window) < self.silence_floor_db

    def discard(self) -> None:
        self._clear(self._buffer)
        self._fresh = 0

    def poll_window(self) -> Optional[np.ndarray]:
        """Take the ready window, or None when not ready or below the silence floor."""
        if not self.is_ready():
            return None
        window = self.take_window()
        if self.is_silent(window):
            self.discard()
            self.windows_skipped += 1
            logger.debug("skipped silent window (%.1f dB)", level_db(window))
            return None
        return window

    def take_remaining(self) -> Optional[np.ndarray]:
        """Drain everything for a final submission.

        Returns None when fewer than ``min_final_samples`` new samples arrived
        since the last window, or when the remainder is silence.
        """
        fresh = self._fresh
        window = self._buffer.to_array()
        self._clear(self._buffer)
        self._clear(self._pre_roll)
        self._fresh = 0
        self._in_segment = False
        if fresh < self.min_final_samples or len(window) == 0:
            return None
        if self.is_silent(window):
            self.windows_skipped += 1
            return None
        return window

    # ------------------------------------------------------------------
    # Batch segments
    # ------------------------------------------------------------------

    def begin_segment(self) -> None:
        if self._in_segment:
            return
        self._clear(self._buffer)
        pre_roll = self._pre_roll.to_array()
        self._pre_roll.clear()
        self._buffer.push(pre_roll)
        self._fresh = len(pre_roll)
        self._in_segment = True

    def end_segment(self) -> np.ndarray:
        window = self._buffer.to_array() if self._in_segment else _EMPTY.copy()
        self._clear(self._buffer)
        self._fresh = 0
        self._in_segment = False
        return window

    def reset(self) -> None:
        self._clear(self._buffer)
        self._clear(self._pre_roll)
        self._fresh = 0
        self._in_segment = False
