"""PCM16 WAV encoding of audio chunks."""

import io
import logging
import wave

import numpy as np

from livescribe._types import AudioChunk, EncodedAudio

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
WAV_MIME_TYPE = "audio/wav"


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples to int16 with the usual asymmetric scaling.

    Samples are clamped to [-1, 1]; negatives scale by 32768 and
    non-negatives by 32767, truncating toward zero.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype("<i2")


def encode_wav(chunk: AudioChunk, filename: str = "chunk.wav") -> EncodedAudio:
    """Serialize a chunk as a mono 16-bit little-endian WAV file in memory.

    Output is deterministic: identical samples give identical bytes.

    Raises:
        RuntimeError: If the container cannot be written
    """
    pcm = float_to_pcm16(chunk.samples)
    buffer = io.BytesIO()
    try:
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(1)
            wav_file.setsampwidth(2)
            wav_file.setframerate(chunk.sample_rate)
            wav_file.writeframes(pcm.tobytes())
    except Exception as e:
        logger.error("Failed to encode WAV: %s", e)
        raise RuntimeError(f"Failed to encode WAV: {e}") from e

    data = buffer.getvalue()
    logger.debug("Encoded %d samples into %d WAV bytes", len(pcm), len(data))
    return EncodedAudio(data=data, mime_type=WAV_MIME_TYPE, filename=filename)


def read_wav_header(data: bytes) -> dict:
    """Parse the canonical 44-byte header of a PCM WAV buffer.

    Returns:
        Dict with riff_size, channels, sample_rate, byte_rate, block_align,
        bits_per_sample and data_size

    Raises:
        ValueError: If the buffer is not a canonical PCM WAV
    """
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError("Buffer shorter than WAV header")
    if data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise ValueError("Missing RIFF/WAVE magic")
    if data[12:16] != b"fmt " or data[36:40] != b"data":
        raise ValueError("Unexpected chunk layout")

    def u16(offset: int) -> int:
        return int.from_bytes(data[offset : offset + 2], "little")

    def u32(offset: int) -> int:
        return int.from_bytes(data[offset : offset + 4], "little")

    return {
        "riff_size": u32(4),
        "fmt_size": u32(16),
        "format": u16(20),
        "channels": u16(22),
        "sample_rate": u32(24),
        "byte_rate": u32(28),
        "block_align": u16(32),
        "bits_per_sample": u16(34),
        "data_size": u32(40),
    }


def read_wav_samples(path) -> tuple[np.ndarray, int]:
    """Load a 16-bit PCM WAV file as mono float32 samples.

    Multi-channel files are averaged down to mono.

    Raises:
        RuntimeError: If the file cannot be read or is not 16-bit PCM
    """
    try:
        with wave.open(str(path), "rb") as wav_file:
            if wav_file.getsampwidth() != 2:
                raise RuntimeError(
                    f"Only 16-bit PCM WAV is supported, got {wav_file.getsampwidth() * 8}-bit"
                )
            channels = wav_file.getnchannels()
            sample_rate = wav_file.getframerate()
            raw = wav_file.readframes(wav_file.getnframes())
    except RuntimeError:
        raise
    except Exception as e:
        logger.error("Failed to read WAV file %s: %s", path, e)
        raise RuntimeError(f"Failed to read WAV file {path}: {e}") from e

    samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)
    return samples.astype(np.float32), sample_rate
