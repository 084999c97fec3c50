"""Tests for TranscriptionGateway."""

from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from errors import EngineCallFailed, EngineError, MalformedEngineOutput
from gateway import TranscriptionGateway
from models import Candidate


# ---------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------

class FakeEngine:
    """Returns the first sample value as text; can be held on a gate."""

    def __init__(self, gated: bool = False, fail_on: tuple[float, ...] = (), malformed_on: tuple[float, ...] = ()) -> None:
        self.gate = threading.Event()
        if not gated:
            self.gate.set()
        self.started = threading.Event()
        self.fail_on = fail_on
        self.malformed_on = malformed_on
        self.seen: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def initialize(self) -> None:
        pass

    def transcribe(self, samples: np.ndarray, sample_rate: int) -> Candidate:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            self.gate.wait(5.0)
            value = float(samples[0])
            self.seen.append(value)
            if value in self.fail_on:
                raise RuntimeError("backend exploded")
            if value in self.malformed_on:
                raise MalformedEngineOutput("no text field")
            return Candidate(text=f"{value:g}", confidence=0.9)
        finally:
            with self._lock:
                self.in_flight -= 1


def _window(value: float) -> np.ndarray:
    return np.full(16, value, dtype=np.float32)


class _Collector:
    def __init__(self) -> None:
        self.results: list[tuple[object, object]] = []
        self._lock = threading.Lock()

    def __call__(self, tag, future) -> None:  # noqa: ANN001
        try:
            value = future.result()
        except EngineError as exc:
            value = exc
        with self._lock:
            self.results.append((tag, value))


@pytest.fixture
def collector() -> _Collector:
    return _Collector()


# ---------------------------------------------------------------
# Ordering and concurrency
# ---------------------------------------------------------------

def test_results_are_delivered_in_submission_order(collector: _Collector) -> None:
    engine = FakeEngine()
    gateway = TranscriptionGateway(engine, on_result=collector)
    gateway.start()
    try:
        for i in range(5):
            gateway.submit(_window(float(i)), tag=i)
            assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert [tag for tag, _ in collector.results] == [0, 1, 2, 3, 4]
    assert [c.text for _, c in collector.results] == ["0", "1", "2", "3", "4"]
    assert gateway.calls == 5


def test_newer_window_supersedes_queued_one(collector: _Collector) -> None:
    engine = FakeEngine(gated=True)
    gateway = TranscriptionGateway(engine, on_result=collector)
    gateway.start()
    try:
        first = gateway.submit(_window(1.0), tag="a")
        assert engine.started.wait(2.0)
        second = gateway.submit(_window(2.0), tag="b")
        third = gateway.submit(_window(3.0), tag="c")

        assert second.cancelled()
        assert gateway.superseded == 1
        assert gateway.busy

        engine.gate.set()
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert first.result().text == "1"
    assert third.result().text == "3"
    assert [tag for tag, _ in collector.results] == ["a", "c"]
    assert engine.seen == [1.0, 3.0]
    assert engine.max_in_flight == 1


def test_cancel_pending_drops_waiting_window(collector: _Collector) -> None:
    engine = FakeEngine(gated=True)
    gateway = TranscriptionGateway(engine, on_result=collector)
    gateway.start()
    try:
        gateway.submit(_window(1.0), tag="a")
        assert engine.started.wait(2.0)
        waiting = gateway.submit(_window(2.0), tag="b")

        assert gateway.cancel_pending() == 1
        assert waiting.cancelled()
        assert gateway.cancel_pending() == 0

        engine.gate.set()
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert [tag for tag, _ in collector.results] == ["a"]


def test_final_window_is_never_superseded(collector: _Collector) -> None:
    engine = FakeEngine(gated=True)
    gateway = TranscriptionGateway(engine, on_result=collector)
    gateway.start()
    try:
        gateway.submit(_window(1.0), tag="a")
        assert engine.started.wait(2.0)
        final = gateway.submit(_window(2.0), tag="b", supersede=False)
        partial = gateway.submit(_window(3.0), tag="c")
        gateway.submit(_window(4.0), tag="d")

        assert not final.cancelled()
        assert partial.cancelled()
        assert gateway.superseded == 1
        assert gateway.queued == 2

        engine.gate.set()
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert [tag for tag, _ in collector.results] == ["a", "b", "d"]
    assert engine.seen == [1.0, 2.0, 4.0]


def test_cancel_pending_drops_queued_final_windows(collector: _Collector) -> None:
    engine = FakeEngine(gated=True)
    gateway = TranscriptionGateway(engine, on_result=collector)
    gateway.start()
    try:
        gateway.submit(_window(1.0), tag="a")
        assert engine.started.wait(2.0)
        gateway.submit(_window(2.0), tag="b", supersede=False)
        gateway.submit(_window(3.0), tag="c", supersede=False)

        assert gateway.cancel_pending() == 2
        assert gateway.queued == 0

        engine.gate.set()
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert [tag for tag, _ in collector.results] == ["a"]


def test_wait_idle_times_out_while_engine_is_busy() -> None:
    engine = FakeEngine(gated=True)
    gateway = TranscriptionGateway(engine)
    gateway.start()
    try:
        gateway.submit(_window(1.0))
        assert engine.started.wait(2.0)
        assert gateway.wait_idle(0.05) is False
        engine.gate.set()
        assert gateway.wait_idle(2.0) is True
    finally:
        gateway.close()


# ---------------------------------------------------------------
# Failures
# ---------------------------------------------------------------

def test_engine_exception_becomes_call_failed_and_gateway_continues(collector: _Collector) -> None:
    engine = FakeEngine(fail_on=(1.0,))
    gateway = TranscriptionGateway(engine, on_result=collector)
    gateway.start()
    try:
        failed = gateway.submit(_window(1.0), tag="bad")
        assert gateway.wait_idle(2.0)
        ok = gateway.submit(_window(2.0), tag="good")
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    with pytest.raises(EngineCallFailed) as excinfo:
        failed.result()
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert ok.result().text == "2"
    assert gateway.failures == 1
    assert [tag for tag, _ in collector.results] == ["bad", "good"]


def test_malformed_output_yields_zero_confidence_candidate() -> None:
    engine = FakeEngine(malformed_on=(1.0,))
    gateway = TranscriptionGateway(engine)
    gateway.start()
    try:
        future = gateway.submit(_window(1.0))
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    candidate = future.result()
    assert candidate.malformed is True
    assert candidate.confidence == 0.0


def test_non_candidate_result_is_malformed() -> None:
    class WeirdEngine:
        def initialize(self) -> None:
            pass

        def transcribe(self, samples, sample_rate):  # noqa: ANN001, ANN201
            return {"text": "hello"}

    gateway = TranscriptionGateway(WeirdEngine())
    gateway.start()
    try:
        future = gateway.submit(_window(1.0))
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert future.result().malformed is True


def test_slow_engine_call_times_out() -> None:
    engine = FakeEngine(gated=True)
    gateway = TranscriptionGateway(engine, call_timeout_s=0.05)
    gateway.start()
    try:
        future = gateway.submit(_window(1.0))
        with pytest.raises(EngineCallFailed):
            future.result(timeout=2.0)
    finally:
        engine.gate.set()
        gateway.close()


def test_callback_errors_do_not_stop_the_worker() -> None:
    calls = []

    def on_result(tag, future) -> None:  # noqa: ANN001
        calls.append(tag)
        raise ValueError("listener bug")

    gateway = TranscriptionGateway(FakeEngine(), on_result=on_result)
    gateway.start()
    try:
        gateway.submit(_window(1.0), tag=1)
        assert gateway.wait_idle(2.0)
        gateway.submit(_window(2.0), tag=2)
        assert gateway.wait_idle(2.0)
    finally:
        gateway.close()

    assert calls == [1, 2]


def test_submit_after_close_fails_immediately() -> None:
    gateway = TranscriptionGateway(FakeEngine())
    gateway.start()
    gateway.close()

    future = gateway.submit(_window(1.0))

    assert isinstance(future.exception(timeout=0.1), EngineCallFailed)


def test_close_is_quick_when_idle() -> None:
    gateway = TranscriptionGateway(FakeEngine())
    gateway.start()
    started = time.monotonic()
    gateway.close(timeout=1.0)
    assert time.monotonic() - started < 1.0
