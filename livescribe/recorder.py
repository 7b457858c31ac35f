"""Live PCM capture from the default input device."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

import numpy as np
import sounddevice

from livescribe._types import SampleFrame

logger = logging.getLogger(__name__)

FrameCallback = Callable[[SampleFrame], None]


class CaptureError(RuntimeError):
    """Audio input device unavailable or access denied."""


class _RecorderState(Enum):
    """Internal recorder state machine."""

    IDLE = "idle"
    RECORDING = "recording"


class AudioRecorder:
    """Manages mono audio capture via sounddevice.

    The PortAudio callback runs on its own thread; it only copies the block and
    hands it to the event loop with ``call_soon_threadsafe`` so every consumer
    runs on the single asyncio thread.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        block_size: int = 4096,
        device: int | str | None = None,
        latency: float | str | None = None,
    ):
        """Initialize audio recorder.

        Args:
            sample_rate: Sample rate in Hz
            block_size: Samples per delivered frame
            device: Audio device index or name (None for default)
            latency: PortAudio latency hint
        """
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if block_size <= 0:
            raise ValueError("block_size must be positive")

        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self.latency = latency

        self._state = _RecorderState.IDLE
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_frame: FrameCallback | None = None
        self._active = False

        logger.info(
            "AudioRecorder initialized: %d Hz mono, block=%d, device=%s",
            sample_rate,
            block_size,
            device if device is not None else "default",
        )

    @property
    def is_recording(self) -> bool:
        return self._state == _RecorderState.RECORDING

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit; ensure cleanup."""
        self.close()
        return False

    def start(
        self,
        on_frame: FrameCallback,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Open the input stream and begin delivering frames.

        Args:
            on_frame: Called on the event loop thread with each SampleFrame
            loop: Event loop to deliver frames on (defaults to the running loop)

        Raises:
            RuntimeError: If already recording
            CaptureError: If the device cannot be opened
        """
        if self._state != _RecorderState.IDLE:
            raise RuntimeError(
                f"Cannot start recording: recorder in {self._state.value} state"
            )

        self._loop = loop or asyncio.get_running_loop()
        self._on_frame = on_frame
        resolved_device = self._resolve_device_selection()

        try:
            self._stream = sounddevice.InputStream(
                device=resolved_device,
                samplerate=self.sample_rate,
                channels=1,
                blocksize=self.block_size,
                latency=self.latency,
                callback=self._callback,
                dtype="float32",
            )
            self._active = True
            self._stream.start()
            self._state = _RecorderState.RECORDING
            logger.info(
                "Audio stream started (sample_rate=%d, device=%s)",
                self.sample_rate,
                resolved_device if resolved_device is not None else "default",
            )
        except Exception as e:
            logger.error("Failed to start audio stream: %s", e)
            self.close()
            raise CaptureError(f"Failed to start audio stream: {e}") from e

    def stop(self) -> None:
        """Stop delivering frames; frames still in flight are dropped."""
        self._active = False

    def close(self) -> None:
        """Release the stream. Safe to call repeatedly."""
        self._active = False

        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            except Exception as e:
                logger.warning("Error stopping stream: %s", e)
            try:
                stream.close()
            except Exception as e:
                logger.warning("Error closing stream: %s", e)

        self._on_frame = None
        self._state = _RecorderState.IDLE

    def _callback(self, indata, frames, time_info, status):
        """Stream callback invoked on audio data arrival (PortAudio thread)."""
        if status:
            logger.warning("Audio stream status: %s", status)

        if not self._active or self._loop is None:
            return

        samples = np.array(indata[:, 0], dtype=np.float32, copy=True)
        try:
            self._loop.call_soon_threadsafe(self._deliver, samples)
        except RuntimeError:
            # Loop already closed during shutdown.
            self._active = False

    def _deliver(self, samples: np.ndarray) -> None:
        """Hand a copied block to the consumer on the event loop thread."""
        if not self._active or self._on_frame is None:
            return
        self._on_frame(SampleFrame(samples=samples, sample_rate=self.sample_rate))

    def _resolve_device_selection(self) -> int | None:
        """Resolve configured device selection to a sounddevice index."""

        if self.device is None or isinstance(self.device, int):
            return self.device

        try:
            device_list = sounddevice.query_devices()
            if isinstance(device_list, dict):
                device_list = [device_list]
        except Exception as e:
            logger.warning(
                "Unable to enumerate audio devices for '%s': %s; using default",
                self.device,
                e,
            )
            return None

        target = self.device.strip().lower()
        partial_matches: list[tuple[int, str]] = []
        available: list[str] = []

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) <= 0:
                continue

            name = dev_info.get("name", f"Device {idx}")
            normalized = name.strip().lower()
            available.append(f"[{idx}] {name}")

            if normalized == target:
                logger.debug("Resolved audio device '%s' to index %d", self.device, idx)
                return idx

            if target in normalized:
                partial_matches.append((idx, name))

        if partial_matches:
            idx, name = partial_matches[0]
            logger.debug(
                "Resolved audio device '%s' to index %d via partial match (%s)",
                self.device,
                idx,
                name,
            )
            return idx

        logger.warning(
            "Audio device '%s' not found. Using default input. Available devices: %s",
            self.device,
            "; ".join(available) if available else "none",
        )
        return None
