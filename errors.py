"""Shared error codes, user-facing messages and pipeline exceptions."""

from __future__ import annotations

ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"
ENGINE_CALL_FAILED = "ENGINE_CALL_FAILED"
MALFORMED_ENGINE_OUTPUT = "MALFORMED_ENGINE_OUTPUT"
BUFFER_OVERFLOW = "BUFFER_OVERFLOW"
FINALIZE_TIMEOUT = "FINALIZE_TIMEOUT"
TYPING_FAILED = "TYPING_FAILED"
RECORDER_FAILED = "RECORDER_FAILED"

ERROR_MESSAGES = {
    ENGINE_UNAVAILABLE: "Speech engine could not be started.",
    ENGINE_CALL_FAILED: "Transcription failed for one chunk, continuing.",
    MALFORMED_ENGINE_OUTPUT: "Speech engine returned an unusable result.",
    BUFFER_OVERFLOW: "Audio context exceeded its limit, oldest audio dropped.",
    FINALIZE_TIMEOUT: "Last transcription did not finish in time.",
    TYPING_FAILED: "Text could not be typed into the active window.",
    RECORDER_FAILED: "Microphone could not be opened.",
}


class EngineError(Exception):
    code = ENGINE_CALL_FAILED

    def __init__(self, message: str = "", retryable: bool = True) -> None:
        super().__init__(message or ERROR_MESSAGES[self.code])
        self.retryable = retryable


class EngineUnavailable(EngineError):
    code = ENGINE_UNAVAILABLE

    def __init__(self, message: str = "") -> None:
        super().__init__(message, retryable=False)


class EngineCallFailed(EngineError):
    code = ENGINE_CALL_FAILED


class MalformedEngineOutput(EngineError):
    code = MALFORMED_ENGINE_OUTPUT
