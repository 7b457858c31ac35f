"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class SampleFrame:
    """One block of mono float32 samples delivered by the capture device."""

    samples: np.ndarray
    sample_rate: int


@dataclass(frozen=True)
class AudioChunk:
    """Contiguous samples spanning one segmentation interval."""

    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate


@dataclass(frozen=True)
class EncodedAudio:
    """Serialized audio ready for upload."""

    data: bytes
    mime_type: str = "audio/wav"
    filename: str = "chunk.wav"


@dataclass
class TranscriptionSegment:
    """A speaker-attributed segment of transcribed text."""

    speaker: str
    text: str
    start: float
    end: float


@dataclass
class TranscriptionResult:
    """Result from one transcription call."""

    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)
