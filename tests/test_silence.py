"""Tests for silence gate module."""

from unittest.mock import Mock

import numpy as np
import pytest

from livescribe._types import AudioChunk
from livescribe.silence import SilenceGate, compute_rms


def _chunk(value: float, n: int = 1600) -> AudioChunk:
    return AudioChunk(samples=np.full(n, value, dtype=np.float32), sample_rate=16000)


class TestComputeRms:
    """Tests for RMS computation."""

    def test_constant_signal(self):
        """RMS of a constant signal equals its magnitude."""
        assert compute_rms(np.full(100, -0.5, dtype=np.float32)) == pytest.approx(0.5)

    def test_sine_wave(self):
        """RMS of a full-scale sine is 1/sqrt(2)."""
        t = np.arange(16000) / 16000
        assert compute_rms(np.sin(2 * np.pi * 100 * t)) == pytest.approx(1 / np.sqrt(2), rel=1e-3)

    def test_empty_buffer(self):
        """Empty input has zero energy."""
        assert compute_rms(np.array([], dtype=np.float32)) == 0.0


class TestSilenceGate:
    """Tests for classification and change notification."""

    def test_default_threshold(self):
        """Default threshold is 0.005."""
        assert SilenceGate().threshold == 0.005

    def test_invalid_threshold(self):
        """Threshold must be positive."""
        with pytest.raises(ValueError):
            SilenceGate(threshold=0)

    def test_classification(self):
        """Chunks below the threshold are silent, others active."""
        gate = SilenceGate(threshold=0.01)
        assert gate.process(_chunk(0.001)) is True
        assert gate.process(_chunk(0.2)) is False

    def test_threshold_boundary_is_active(self):
        """RMS equal to the threshold is not silent."""
        gate = SilenceGate(threshold=0.25)
        assert gate.process(_chunk(0.25)) is False

    def test_same_chunk_same_verdict(self):
        """Classifying the same chunk twice gives the same answer."""
        gate = SilenceGate(threshold=0.01)
        chunk = _chunk(0.003)
        assert gate.process(chunk) == gate.process(chunk)
        assert gate.is_silent(chunk) is True

    def test_notifies_only_on_flip(self):
        """The change hook fires on each flip and never on repeats."""
        on_change = Mock()
        gate = SilenceGate(threshold=0.01, on_change=on_change)

        for value in (0.0, 0.0, 0.5, 0.5, 0.5, 0.0):
            gate.process(_chunk(value))

        assert [c.args[0] for c in on_change.call_args_list] == [True, False, True]

    def test_repeated_chunk_notifies_once(self):
        """Feeding the same chunk twice notifies only for the first."""
        on_change = Mock()
        gate = SilenceGate(threshold=0.01, on_change=on_change)
        chunk = _chunk(0.5)

        gate.process(chunk)
        gate.process(chunk)

        on_change.assert_called_once_with(False)

    def test_is_silent_does_not_notify(self):
        """Pure classification leaves the change state alone."""
        on_change = Mock()
        gate = SilenceGate(threshold=0.01, on_change=on_change)
        gate.is_silent(_chunk(0.0))
        on_change.assert_not_called()
        assert gate.last_silent is None

    def test_reset_forgets_last_state(self):
        """After reset the next chunk notifies again."""
        on_change = Mock()
        gate = SilenceGate(threshold=0.01, on_change=on_change)
        gate.process(_chunk(0.0))
        gate.reset()
        gate.process(_chunk(0.0))
        assert on_change.call_count == 2
