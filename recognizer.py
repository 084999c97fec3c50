"""Speech engine adapters.

Each engine turns one window of mono float samples into a ``Candidate``.
Calls are blocking and are only ever made from the transcription gateway's
worker thread, one at a time.

``DashscopeEngine`` sends the window to qwen3-asr-flash as a base64 WAV and
collects the streamed text. The service reports no token probabilities, so a
fixed ``assumed_confidence`` stands in for them; with it unset every result
counts as malformed and is suppressed.

``WhisperEngine`` runs openai-whisper locally and scores each word with the
probability whisper reports for it.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import wave
from typing import Optional

import numpy as np

from audio_levels import float_to_pcm16
from errors import EngineCallFailed, EngineUnavailable, MalformedEngineOutput
from models import Candidate, Token

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

try:
    import whisper
except Exception:  # pragma: no cover
    whisper = None  # type: ignore

try:
    import torch
except Exception:  # pragma: no cover
    torch = None  # type: ignore

logger = logging.getLogger(__name__)


def _samples_to_wav_base64(samples: np.ndarray, sample_rate: int = 16000) -> str:
    """Encode float samples as a base64 16-bit mono WAV."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(float_to_pcm16(samples))
    return base64.b64encode(buf.getvalue()).decode("ascii")


class DashscopeEngine:
    def __init__(
        self,
        api_key: str = "",
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        assumed_confidence: Optional[float] = 0.9,
    ) -> None:
        self._api_key = api_key
        self._model = model or "qwen3-asr-flash"
        self._request_timeout_s = request_timeout_s
        self._assumed_confidence = assumed_confidence

    def initialize(self) -> None:
        if dashscope is None:
            raise EngineUnavailable("dashscope is not installed")
        self._api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not self._api_key:
            raise EngineUnavailable("No API key configured")

    def transcribe(self, samples: np.ndarray, sample_rate: int) -> Candidate:
        if dashscope is None:
            raise EngineUnavailable("dashscope is not installed")
        wav_b64 = _samples_to_wav_base64(samples, sample_rate)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=self._api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_b64}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False},
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest_text = ""
            for chunk in response:
                self._check_status(chunk)
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
        except (EngineCallFailed, MalformedEngineOutput):
            raise
        except Exception as exc:
            raise self._to_engine_error(exc) from exc
        return self._to_candidate(latest_text.strip())

    def _to_candidate(self, text: str) -> Candidate:
        if self._assumed_confidence is None:
            return Candidate.from_tokens(text, [])
        return Candidate.from_tokens(text, [Token(text=text, probability=self._assumed_confidence)])

    def _check_status(self, chunk: object) -> None:
        if not isinstance(chunk, dict):
            raise MalformedEngineOutput(f"unexpected response chunk {type(chunk).__name__}")
        status = chunk.get("status_code", 200)
        if status not in (None, 200):
            message = chunk.get("message") or chunk.get("code") or f"status {status}"
            raise EngineCallFailed(f"{status}: {message}", retryable=status not in (401, 403))

    def _extract_text(self, chunk: dict) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        output = chunk.get("output") or {}
        choices = output.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content") or []
        if not content:
            return ""
        value = content[0]
        if isinstance(value, dict):
            return str(value.get("text", ""))
        return ""

    def _to_engine_error(self, exc: Exception) -> EngineCallFailed:
        """Map an SDK/network exception to a call failure."""
        message = str(exc)
        low = message.lower()
        retryable = not ("401" in low or "auth" in low or "api key" in low)
        return EngineCallFailed(message or type(exc).__name__, retryable=retryable)


class WhisperEngine:
    def __init__(
        self,
        model: str = "base",
        language: Optional[str] = "en",
        device: Optional[str] = None,
    ) -> None:
        self._model_name = model or "base"
        self._language = language or None
        self._device = device
        self._model = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def initialize(self) -> None:
        if self._model is not None:
            return
        if whisper is None:
            raise EngineUnavailable("openai-whisper is not installed")
        if self._device is None:
            self._device = "cuda" if torch is not None and torch.cuda.is_available() else "cpu"
        try:
            self._model = whisper.load_model(self._model_name, device=self._device)
        except Exception as exc:
            raise EngineUnavailable(f"could not load whisper model {self._model_name!r}: {exc}") from exc
        logger.info("loaded whisper %s on %s", self._model_name, self._device)

    def transcribe(self, samples: np.ndarray, sample_rate: int) -> Candidate:
        if self._model is None:
            raise EngineUnavailable("whisper model is not loaded")
        if sample_rate != 16000:
            raise EngineCallFailed(f"whisper needs 16 kHz audio, got {sample_rate} Hz", retryable=False)
        result = self._model.transcribe(
            np.asarray(samples, dtype=np.float32),
            language=self._language,
            task="transcribe",
            temperature=0.0,
            condition_on_previous_text=False,
            word_timestamps=True,
            fp16=(self._device == "cuda"),
        )
        if not isinstance(result, dict):
            raise MalformedEngineOutput(f"whisper returned {type(result).__name__}")
        tokens = []
        for segment in result.get("segments") or []:
            for word in segment.get("words") or []:
                probability = word.get("probability")
                tokens.append(
                    Token(
                        text=str(word.get("word", "")),
                        timestamp=float(word.get("start", 0.0)),
                        probability=None if probability is None else float(probability),
                    )
                )
        return Candidate.from_tokens(str(result.get("text", "")).strip(), tokens)


def create_engine(config, api_key: str = ""):  # noqa: ANN001
    name = (config.engine or "dashscope").lower()
    if name == "dashscope":
        return DashscopeEngine(
            api_key=api_key,
            model=config.model,
            request_timeout_s=config.engine_timeout_s or 10.0,
            assumed_confidence=config.assumed_confidence,
        )
    if name == "whisper":
        return WhisperEngine(model=config.model, language=config.language)
    raise ValueError(f"unknown engine {config.engine!r}")
