"""RMS-based silence gating of audio chunks."""

import logging
from collections.abc import Callable

import numpy as np

from livescribe._types import AudioChunk

logger = logging.getLogger(__name__)

DEFAULT_SILENCE_THRESHOLD = 0.005


def compute_rms(samples: np.ndarray) -> float:
    """Root-mean-square energy of a sample buffer (0.0 for empty input)."""
    if len(samples) == 0:
        return 0.0
    samples = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(samples**2)))


class SilenceGate:
    """Classifies chunks as silent or active.

    The only state kept is the previous verdict, used so that
    ``on_change`` fires once per flip rather than once per chunk.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_SILENCE_THRESHOLD,
        on_change: Callable[[bool], None] | None = None,
    ):
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self.threshold = threshold
        self.on_change = on_change
        self._last_silent: bool | None = None

    @property
    def last_silent(self) -> bool | None:
        return self._last_silent

    def is_silent(self, chunk: AudioChunk) -> bool:
        """Pure classification, no notification."""
        return compute_rms(chunk.samples) < self.threshold

    def process(self, chunk: AudioChunk) -> bool:
        """Classify a chunk and notify on state change.

        Returns:
            True if the chunk is silent and must be dropped
        """
        rms = compute_rms(chunk.samples)
        silent = rms < self.threshold
        logger.debug("Chunk RMS=%.5f threshold=%.5f silent=%s", rms, self.threshold, silent)

        if silent != self._last_silent:
            self._last_silent = silent
            if self.on_change is not None:
                self.on_change(silent)

        return silent

    def reset(self) -> None:
        self._last_silent = None
