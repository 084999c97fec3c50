"""State-machine based session orchestration.

Two pipelines run per session. The capture thread drains the audio queue and
feeds VAD and the chunk scheduler; it never waits on the engine. Ready windows
go to the transcription gateway, whose worker thread delivers results back
here in order, where they pass the hallucination filter, the stabilizer and
the reconciler before reaching the typing sink.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass, field, replace
from queue import Empty, Queue
from typing import Callable, Optional

import numpy as np

from audio_levels import level_db
from chunker import ChunkScheduler
from config import PipelineConfig
from errors import (
    ENGINE_UNAVAILABLE,
    ERROR_MESSAGES,
    FINALIZE_TIMEOUT,
    RECORDER_FAILED,
    TYPING_FAILED,
    EngineError,
    EngineUnavailable,
)
from gateway import TranscriptionGateway
from hallucination import HallucinationFilter
from interfaces import Recorder, SpeechEngine, TypingSink
from models import (
    AudioFrame,
    Candidate,
    SessionState,
    StabilizationState,
    TranscriptionMode,
    TranscriptUpdate,
    TypedTextState,
    TypingInstruction,
    VadEventKind,
)
from reconciler import TypingReconciler
from stabilizer import TextStabilizer
from vad import VoiceActivityDetector

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TextCallback = Callable[[TranscriptUpdate], None]
ErrorCallback = Callable[[str, str], None]
LevelCallback = Callable[[float], None]


@dataclass(frozen=True)
class _Tag:
    session_id: int
    utterance: int
    final: bool = False


@dataclass
class _Session:
    id: int
    vad: VoiceActivityDetector
    scheduler: ChunkScheduler
    audio_queue: Queue
    stabilization: StabilizationState = field(default_factory=StabilizationState)
    typed: TypedTextState = field(default_factory=TypedTextState)
    prefix: str = ""
    capture_utterance: int = 0
    text_utterance: int = 0
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    frames: int = 0

    def compose(self, text: str) -> str:
        if not self.prefix or not text:
            return self.prefix + text
        if self.prefix[-1].isspace():
            return self.prefix + text
        return f"{self.prefix} {text}"

    def finish_utterance(self) -> None:
        self.prefix = self.typed.visible
        self.stabilization = StabilizationState()


class SessionController:
    def __init__(
        self,
        recorder: Recorder,
        engine: SpeechEngine,
        typing_sink: TypingSink,
        config: Optional[PipelineConfig] = None,
        hallucination_filter: Optional[HallucinationFilter] = None,
        on_state_change: Optional[StateCallback] = None,
        on_text: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_level: Optional[LevelCallback] = None,
    ) -> None:
        self._config = config or PipelineConfig()
        self._recorder = recorder
        self._engine = engine
        self._typing_sink = typing_sink
        self._filter = hallucination_filter or HallucinationFilter(self._config.denylist)
        self._stabilizer = TextStabilizer.from_config(self._config)
        self._reconciler = TypingReconciler()
        self._gateway = TranscriptionGateway(
            engine,
            sample_rate=self._config.sample_rate,
            on_result=self._handle_result,
            call_timeout_s=self._config.engine_timeout_s,
        )
        self._on_state_change = on_state_change
        self._on_text = on_text
        self._on_error = on_error
        self._on_level = on_level

        self._lock = threading.RLock()
        # Held while an update reaches the sink; taken before _lock.
        self._typing_lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session_id = 0
        self._session: Optional[_Session] = None
        self._initialized = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def mode(self) -> TranscriptionMode:
        return self._config.transcription_mode

    @property
    def gateway(self) -> TranscriptionGateway:
        return self._gateway

    @property
    def typed_text(self) -> str:
        with self._lock:
            return self._session.typed.visible if self._session else ""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        with self._lock:
            if self._initialized:
                return True
            try:
                self._engine.initialize()
            except EngineUnavailable as exc:
                self._fail(ENGINE_UNAVAILABLE, str(exc))
                return False
            except Exception as exc:
                logger.exception("engine initialization failed")
                self._fail(ENGINE_UNAVAILABLE, f"{ERROR_MESSAGES[ENGINE_UNAVAILABLE]} {exc}")
                return False
            self._gateway.start()
            self._initialized = True
            logger.info("speech engine ready (%s mode)", self.mode.value)
            return True

    def start_session(self) -> bool:
        with self._lock:
            if self._state != SessionState.IDLE:
                return False
            if not self.initialize():
                return False
            self._session_id += 1
            session = self._new_session(self._session_id)
            self._session = session
            self._transition(SessionState.RECORDING)
            session.thread = threading.Thread(
                target=self._capture_loop,
                args=(session,),
                name=f"capture-{session.id}",
                daemon=True,
            )
            session.thread.start()
            try:
                self._recorder.start(session.audio_queue)
            except Exception as exc:
                logger.exception("recorder failed to start")
                self._abort_session(session)
                self._emit_error(RECORDER_FAILED, f"recorder failed to start: {exc}")
                self._transition(SessionState.IDLE)
                return False
            logger.info("session %d started", session.id)
            return True

    def stop_session(self) -> None:
        with self._lock:
            if self._state != SessionState.RECORDING or self._session is None:
                return
            session = self._session
            self._transition(SessionState.FINALIZING)
            self._safe_stop_recorder()
            session.stop_event.set()

        if session.thread is not None:
            session.thread.join(timeout=self._config.finalize_timeout_s)

        with self._lock:
            if self._session is not session:
                return
            self._submit_final(session)

        finished = self._gateway.wait_idle(timeout=self._config.finalize_timeout_s)

        with self._typing_lock, self._lock:
            if self._session is not session:
                return
            if not finished:
                self._gateway.cancel_pending()
                self._emit_error(FINALIZE_TIMEOUT, ERROR_MESSAGES[FINALIZE_TIMEOUT])
            logger.info(
                "session %d finished: %d frames, %r",
                session.id,
                session.frames,
                session.typed.visible,
            )
            self._session = None
            self._transition(SessionState.IDLE)

    def cancel_session(self, reason: str = "") -> None:
        with self._typing_lock, self._lock:
            if self._state == SessionState.IDLE:
                return
            if reason:
                logger.info("session cancelled: %s", reason)
            self._safe_stop_recorder()
            if self._session is not None:
                self._abort_session(self._session)
            self._transition(SessionState.IDLE)

    def close(self) -> None:
        self.cancel_session()
        self._gateway.close()
        self._initialized = False

    # ------------------------------------------------------------------
    # Capture pipeline
    # ------------------------------------------------------------------

    def _new_session(self, session_id: int) -> _Session:
        config = self._config
        return _Session(
            id=session_id,
            vad=VoiceActivityDetector(
                energy_threshold=config.energy_threshold,
                max_silence_duration=config.max_silence_duration,
                min_speech_duration=config.min_speech_duration,
            ),
            scheduler=ChunkScheduler.from_config(config),
            audio_queue=Queue(maxsize=config.queue_maxsize),
        )

    def _capture_loop(self, session: _Session) -> None:
        while True:
            try:
                frame = session.audio_queue.get(timeout=0.2)
            except Empty:
                if session.stop_event.is_set():
                    return
                continue
            if frame is None:
                return
            with self._lock:
                if self._session is not session:
                    return
                try:
                    self._process_frame(session, frame)
                except Exception:
                    logger.exception("failed to process audio frame")

    def _process_frame(self, session: _Session, frame: AudioFrame) -> None:
        session.frames += 1
        event = session.vad.process(frame)
        scheduler = session.scheduler
        if self._on_level:
            self._on_level(level_db(frame.samples))

        if self.mode == TranscriptionMode.BATCH:
            if event.kind == VadEventKind.SPEECH_STARTED:
                scheduler.begin_segment()
            scheduler.append(frame.samples)
            if event.kind == VadEventKind.SPEECH_ENDED:
                segment = scheduler.end_segment()
                if not session.vad.is_long_enough(event.duration):
                    logger.debug("discarding %.2fs segment as too short", event.duration)
                elif scheduler.is_silent(segment):
                    scheduler.windows_skipped += 1
                else:
                    self._submit(session, segment, final=True)
                session.capture_utterance += 1
            return

        scheduler.append(frame.samples)
        if event.kind == VadEventKind.SPEECH_ENDED:
            window = scheduler.take_remaining()
            if window is not None:
                self._submit(session, window, final=True)
            session.capture_utterance += 1
            return
        window = scheduler.poll_window()
        if window is not None:
            self._submit(session, window)

    def _submit(self, session: _Session, window: np.ndarray, final: bool = False) -> None:
        tag = _Tag(session.id, session.capture_utterance, final)
        logger.debug(
            "submitting %.2fs window (utterance %d%s)",
            len(window) / float(self._config.sample_rate),
            tag.utterance,
            ", final" if final else "",
        )
        # a final window holds audio no later window repeats
        self._gateway.submit(window, tag, supersede=not final)

    def _submit_final(self, session: _Session) -> None:
        scheduler = session.scheduler
        if self.mode == TranscriptionMode.BATCH and scheduler.in_segment:
            segment = scheduler.end_segment()
            if len(segment) >= scheduler.min_final_samples and not scheduler.is_silent(segment):
                self._submit(session, segment, final=True)
            return
        window = scheduler.take_remaining()
        if window is not None:
            self._submit(session, window, final=True)

    # ------------------------------------------------------------------
    # Result pipeline
    # ------------------------------------------------------------------

    def _handle_result(self, tag: _Tag, future: "Future[Candidate]") -> None:
        update: Optional[TranscriptUpdate] = None
        with self._lock:
            session = self._session
            if session is None or session.id != tag.session_id:
                logger.debug("dropping late result from session %d", tag.session_id)
                return
            if tag.utterance < session.text_utterance:
                logger.debug("dropping result for closed utterance %d", tag.utterance)
                return
            if tag.utterance > session.text_utterance:
                session.finish_utterance()
                session.text_utterance = tag.utterance

            try:
                candidate = future.result()
            except CancelledError:
                return
            except EngineError as exc:
                self._emit_error(exc.code, str(exc))
                candidate = None

            if candidate is not None:
                update = self._apply_candidate(session, candidate, final=tag.final)
            if tag.final:
                session.finish_utterance()
                session.text_utterance = tag.utterance + 1

        # Only the gateway worker delivers results, so the sink still sees
        # instructions in order without holding up the capture thread.
        if update is None:
            return
        with self._typing_lock:
            if self._session is not session:
                logger.debug("dropping update for cancelled session %d", tag.session_id)
                return
            if not update.instruction.is_noop:
                self._type(update.instruction)
            if self._on_text:
                self._on_text(update)

    def _apply_candidate(self, session: _Session, candidate: Candidate, final: bool) -> Optional[TranscriptUpdate]:
        text = candidate.text.strip()
        if not text or self._filter.is_spurious(text):
            return None
        decision = self._stabilizer.consider(replace(candidate, text=text), session.stabilization)
        if not decision.emitted:
            return None
        target = session.compose(decision.text)
        instruction = self._reconciler.reconcile(target, session.typed)
        return TranscriptUpdate(
            text=target,
            instruction=instruction,
            confidence=candidate.confidence,
            final=final,
        )

    def _type(self, instruction: TypingInstruction) -> None:
        try:
            self._typing_sink.apply(instruction)
        except Exception as exc:
            logger.warning("typing failed: %s", exc)
            self._emit_error(TYPING_FAILED, str(exc))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _abort_session(self, session: _Session) -> None:
        session.stop_event.set()
        self._gateway.cancel_pending()
        session.scheduler.reset()
        session.vad.reset()
        self._session = None

    def _fail(self, code: str, message: str) -> None:
        self._transition(SessionState.ERROR)
        self._emit_error(code, message)
        self._safe_stop_recorder()
        if self._session is not None:
            self._abort_session(self._session)
        self._transition(SessionState.IDLE)

    def _emit_error(self, code: str, message: str) -> None:
        logger.warning("%s: %s", code, message)
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception:
            logger.exception("recorder failed to stop")

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
