"""Single choke point for speech engine calls.

One worker thread owns the engine and runs one call at a time. Windows
waiting behind it are queued in order. A newer window replaces a waiting
window submitted with ``supersede=True`` (overlapping streaming chunks, whose
audio the newer window also holds); windows submitted with ``supersede=False``
(final windows) are never replaced. Replaced windows have their future
cancelled. Results are handed to ``on_result`` in submission order.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Deque, Optional

import numpy as np

from errors import EngineCallFailed, EngineError, MalformedEngineOutput
from interfaces import SpeechEngine
from models import Candidate

logger = logging.getLogger(__name__)

ResultCallback = Callable[[Any, "Future[Candidate]"], None]


@dataclass
class _Job:
    samples: np.ndarray
    tag: Any
    future: "Future[Candidate]"
    submitted_at: float
    supersede: bool = True


class TranscriptionGateway:
    def __init__(
        self,
        engine: SpeechEngine,
        sample_rate: int = 16000,
        on_result: Optional[ResultCallback] = None,
        call_timeout_s: Optional[float] = None,
    ) -> None:
        self._engine = engine
        self._sample_rate = sample_rate
        self._on_result = on_result
        self._call_timeout_s = call_timeout_s

        self._cond = threading.Condition()
        self._queue: Deque[_Job] = deque()
        self._running: Optional[_Job] = None
        self._closed = False
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

        self.calls = 0
        self.superseded = 0
        self.failures = 0

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._running is not None or bool(self._queue)

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._queue)

    def start(self) -> None:
        with self._cond:
            if self._thread and self._thread.is_alive():
                return
            self._closed = False
            if self._call_timeout_s is not None and self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="speech-engine"
                )
            self._thread = threading.Thread(target=self._worker, name="transcription-gateway", daemon=True)
            self._thread.start()

    def close(self, timeout: float = 1.0) -> None:
        with self._cond:
            self._closed = True
            self._cancel_pending_locked()
            self._cond.notify_all()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def submit(self, samples: np.ndarray, tag: Any = None, supersede: bool = True) -> "Future[Candidate]":
        """Queue a window. ``supersede=False`` keeps it from being replaced by later windows."""
        future: Future[Candidate] = Future()
        job = _Job(samples=samples, tag=tag, future=future, submitted_at=time.monotonic(), supersede=supersede)
        with self._cond:
            if self._closed:
                future.set_exception(EngineCallFailed("gateway is closed"))
                return future
            if self._queue and self._queue[-1].supersede:
                self._queue.pop().future.cancel()
                self.superseded += 1
                logger.debug("queued window superseded by a newer one")
            self._queue.append(job)
            self._cond.notify_all()
        return future

    def cancel_pending(self) -> int:
        """Cancel every queued window; returns how many were dropped."""
        with self._cond:
            return self._cancel_pending_locked()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no call is queued or running. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._running is not None or self._queue:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _cancel_pending_locked(self) -> int:
        dropped = len(self._queue)
        while self._queue:
            self._queue.popleft().future.cancel()
        if dropped:
            self._cond.notify_all()
        return dropped

    def _worker(self) -> None:
        while True:
            with self._cond:
                while not self._queue and not self._closed:
                    self._cond.wait()
                if self._closed:
                    return
                job = self._queue.popleft()
                self._running = job
            try:
                if job.future.set_running_or_notify_cancel():
                    self._run(job)
                    if self._on_result is not None:
                        self._deliver(job)
            finally:
                with self._cond:
                    self._running = None
                    self._cond.notify_all()

    def _run(self, job: _Job) -> None:
        self.calls += 1
        started = time.monotonic()
        try:
            result = self._invoke(job.samples)
        except MalformedEngineOutput as exc:
            logger.warning("%s: %s", exc.code, exc)
            job.future.set_result(Candidate(text="", confidence=0.0, malformed=True))
            return
        except EngineError as exc:
            self.failures += 1
            logger.warning("%s: %s", exc.code, exc)
            job.future.set_exception(exc)
            return
        except Exception as exc:
            self.failures += 1
            logger.exception("speech engine raised")
            error = EngineCallFailed(str(exc) or type(exc).__name__)
            error.__cause__ = exc
            job.future.set_exception(error)
            return

        if not isinstance(result, Candidate):
            logger.warning("engine returned %r instead of a candidate", type(result).__name__)
            result = Candidate(text="", confidence=0.0, malformed=True)
        logger.debug(
            "transcribed %.2fs of audio in %.2fs: %r (%.2f)",
            len(job.samples) / float(self._sample_rate),
            time.monotonic() - started,
            result.text,
            result.confidence,
        )
        job.future.set_result(result)

    def _invoke(self, samples: np.ndarray) -> Candidate:
        if self._executor is None:
            return self._engine.transcribe(samples, self._sample_rate)
        call = self._executor.submit(self._engine.transcribe, samples, self._sample_rate)
        try:
            return call.result(timeout=self._call_timeout_s)
        except concurrent.futures.TimeoutError:
            raise EngineCallFailed(f"engine call exceeded {self._call_timeout_s:.1f}s") from None

    def _deliver(self, job: _Job) -> None:
        try:
            self._on_result(job.tag, job.future)
        except Exception:
            logger.exception("result callback failed")
