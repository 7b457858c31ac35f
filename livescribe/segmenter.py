"""Time-boxed chunk segmentation of captured frames."""

import asyncio
import logging
from collections.abc import Callable, Iterator

import numpy as np

from livescribe._types import AudioChunk, SampleFrame

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[AudioChunk], None]


class ChunkSegmenter:
    """Buffers frames and cuts one AudioChunk per wall-clock interval.

    All methods must be called from the event loop thread. ``push`` is O(1);
    concatenation happens only at flush time.
    """

    def __init__(
        self,
        on_chunk: ChunkCallback,
        sample_rate: int = 16000,
        chunk_duration_ms: int = 3000,
    ):
        if chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be positive")

        self.on_chunk = on_chunk
        self.sample_rate = sample_rate
        self.chunk_duration_ms = chunk_duration_ms
        self._buffer: list[np.ndarray] = []
        self._timer_task: asyncio.Task | None = None
        self.chunks_emitted = 0

    @property
    def buffered_samples(self) -> int:
        return sum(len(block) for block in self._buffer)

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def push(self, frame: SampleFrame) -> None:
        """Append one captured frame to the pending buffer."""
        if frame.sample_rate != self.sample_rate:
            logger.warning(
                "Frame sample rate %d differs from segmenter rate %d; dropping frame",
                frame.sample_rate,
                self.sample_rate,
            )
            return
        self._buffer.append(frame.samples)

    def flush(self) -> AudioChunk | None:
        """Swap out the pending buffer and emit it as one chunk.

        Returns:
            The emitted chunk, or None when nothing was buffered
        """
        if not self._buffer:
            return None

        blocks, self._buffer = self._buffer, []
        chunk = AudioChunk(
            samples=np.concatenate(blocks).astype(np.float32, copy=False),
            sample_rate=self.sample_rate,
        )
        self.chunks_emitted += 1
        logger.debug(
            "Chunk %d cut: %d samples (%.2fs)",
            self.chunks_emitted,
            len(chunk.samples),
            chunk.duration,
        )
        self.on_chunk(chunk)
        return chunk

    def start(self) -> None:
        """Start the repeating flush timer on the running loop."""
        if self.running:
            raise RuntimeError("Segmenter timer already running")
        self._timer_task = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        """Cancel the timer and perform the final flush exactly once."""
        task, self._timer_task = self._timer_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.flush()

    def discard(self) -> None:
        """Drop any buffered samples without emitting them."""
        self._buffer.clear()

    async def _run_timer(self) -> None:
        interval = self.chunk_duration_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            try:
                self.flush()
            except Exception as e:
                logger.error("Chunk handler failed: %s", e, exc_info=True)


def split_samples(
    samples: np.ndarray,
    sample_rate: int,
    chunk_duration_ms: int,
) -> Iterator[AudioChunk]:
    """Cut a finished recording into chunks of the segmentation interval.

    The last chunk may be shorter; empty input yields nothing.
    """
    step = max(1, int(sample_rate * chunk_duration_ms / 1000))
    for offset in range(0, len(samples), step):
        yield AudioChunk(
            samples=np.asarray(samples[offset : offset + step], dtype=np.float32),
            sample_rate=sample_rate,
        )
