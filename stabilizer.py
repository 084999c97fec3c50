"""Decides which partial transcripts are allowed to reach the cursor."""

from __future__ import annotations

import logging

from models import Candidate, Decision, DecisionKind, StabilizationState

logger = logging.getLogger(__name__)

SUPPRESS = Decision(DecisionKind.SUPPRESS)


def positional_similarity(a: str, b: str) -> float:
    """Share of characters that match at the same index, over the longer length.

    An inserted character shifts everything after it, so this underrates
    near-identical strings; kept because the correction threshold is tuned to it.
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / longest


class TextStabilizer:
    """Extensions of the emitted text always pass; rewrites need a higher confidence.

    The asymmetry favours a steady cursor over fixing every mistake.
    """

    def __init__(
        self,
        min_confidence: float = 0.5,
        correction_similarity: float = 0.7,
        correction_confidence_factor: float = 1.2,
    ) -> None:
        self.min_confidence = min_confidence
        self.correction_similarity = correction_similarity
        self.correction_confidence_factor = correction_confidence_factor

    @classmethod
    def from_config(cls, config) -> "TextStabilizer":  # noqa: ANN001
        return cls(
            min_confidence=config.min_confidence,
            correction_similarity=config.correction_similarity,
            correction_confidence_factor=config.correction_confidence_factor,
        )

    def consider(self, candidate: Candidate, state: StabilizationState) -> Decision:
        if candidate.confidence < self.min_confidence:
            logger.debug("suppress %r: confidence %.2f", candidate.text, candidate.confidence)
            return SUPPRESS

        previous = state.last_emitted_text
        if candidate.text.startswith(previous):
            return self._emit(candidate, state)

        similarity = positional_similarity(candidate.text, previous)
        correction_bar = self.min_confidence * self.correction_confidence_factor
        if similarity < self.correction_similarity and candidate.confidence > correction_bar:
            logger.debug("correction %r -> %r (similarity %.2f)", previous, candidate.text, similarity)
            return self._emit(candidate, state)

        logger.debug("suppress %r: similarity %.2f", candidate.text, similarity)
        return SUPPRESS

    def _emit(self, candidate: Candidate, state: StabilizationState) -> Decision:
        state.last_emitted_text = candidate.text
        state.last_confidence = candidate.confidence
        return Decision(DecisionKind.EMIT, candidate.text)
