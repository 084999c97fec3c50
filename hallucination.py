"""Denylist of phrases speech engines produce on near-silent audio."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from config import DEFAULT_HALLUCINATION_PHRASES

logger = logging.getLogger(__name__)

_TRAILING = " \t\r\n.!?,;:…"


def _normalize(text: str) -> str:
    return text.strip().rstrip(_TRAILING).strip().lower()


class HallucinationFilter:
    """Exact, case-insensitive match of the whole trimmed text.

    Not a classifier: a real "thank you" is dropped and a hallucination with
    an extra word gets through. Callers tune the list with ``extend`` or by
    passing their own ``phrases``.
    """

    def __init__(self, phrases: Optional[Iterable[str]] = None) -> None:
        source = DEFAULT_HALLUCINATION_PHRASES if phrases is None else phrases
        self._phrases = {_normalize(p) for p in source if _normalize(p)}

    @property
    def phrases(self) -> frozenset[str]:
        return frozenset(self._phrases)

    def extend(self, phrases: Iterable[str]) -> None:
        self._phrases.update(p for p in map(_normalize, phrases) if p)

    def remove(self, phrase: str) -> None:
        self._phrases.discard(_normalize(phrase))

    def is_spurious(self, text: str) -> bool:
        normalized = _normalize(text)
        if not normalized:
            return False
        if normalized in self._phrases:
            logger.debug("dropping hallucinated phrase %r", text)
            return True
        return False
