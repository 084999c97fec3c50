"""Pipeline configuration and the JSON file it is loaded from."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

from models import TranscriptionMode

logger = logging.getLogger(__name__)

DEFAULT_HALLUCINATION_PHRASES = (
    "thank you",
    "thanks for watching",
    "thank you for watching",
    "please subscribe",
    "like and subscribe",
    "see you next time",
    "bye",
    "bye bye",
    "you",
    "subtitles by the amara.org community",
    "[music]",
    "(music)",
    "[blank_audio]",
    "♪",
)


@dataclass
class PipelineConfig:
    sample_rate: int = 16000
    frame_ms: int = 100
    mode: str = TranscriptionMode.STREAMING.value

    # Voice activity detection
    energy_threshold: float = 0.01
    min_speech_duration: float = 0.3
    max_silence_duration: float = 1.0

    # Chunking
    chunk_ms: int = 2000
    context_ms: int = 8000
    max_context_ms: int = 10000
    max_segment_ms: int = 60000
    pre_roll_ms: int = 300
    min_final_ms: int = 500
    silence_floor_db: float = -45.0

    # Stabilization
    min_confidence: float = 0.5
    correction_similarity: float = 0.7
    correction_confidence_factor: float = 1.2
    hallucination_phrases: list[str] = field(default_factory=lambda: list(DEFAULT_HALLUCINATION_PHRASES))
    extra_hallucination_phrases: list[str] = field(default_factory=list)

    # Session
    queue_maxsize: int = 50
    finalize_timeout_s: float = 5.0
    engine_timeout_s: Optional[float] = None

    # Collaborators
    engine: str = "dashscope"
    model: str = ""
    language: str = "en"
    assumed_confidence: Optional[float] = 0.9
    device: Optional[str] = None
    hotkey: str = "Key.alt_l"
    hotkey_toggle: bool = False
    typing: str = "keyboard"

    @property
    def transcription_mode(self) -> TranscriptionMode:
        return TranscriptionMode(self.mode)

    def ms_to_samples(self, ms: float) -> int:
        return int(self.sample_rate * ms / 1000.0)

    @property
    def chunk_samples(self) -> int:
        return self.ms_to_samples(self.chunk_ms)

    @property
    def context_samples(self) -> int:
        return self.ms_to_samples(self.context_ms)

    @property
    def max_context_samples(self) -> int:
        return self.ms_to_samples(self.max_context_ms)

    @property
    def denylist(self) -> list[str]:
        return list(self.hallucination_phrases) + list(self.extra_hallucination_phrases)

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        config = cls(**{k: v for k, v in data.items() if k in known})
        try:
            TranscriptionMode(config.mode)
        except ValueError:
            logger.warning("Unknown mode %r, using streaming", config.mode)
            config.mode = TranscriptionMode.STREAMING.value
        return config

    def to_dict(self) -> dict:
        return asdict(self)


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "steady_dictation" / "config.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PipelineConfig:
        data = self._read_all()
        data.pop("api_key", None)
        return PipelineConfig.from_dict(data)

    def save(self, config: PipelineConfig) -> None:
        """Write ``config`` back, keeping a stored API key."""
        data = config.to_dict()
        api_key = self._read_all().get("api_key")
        if api_key:
            data["api_key"] = api_key
        self._write_all(data)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "") or os.getenv("DASHSCOPE_API_KEY", ""))

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read config %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Config %s is not a JSON object, using defaults", self._path)
            return {}
        return data

    def _write_all(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
