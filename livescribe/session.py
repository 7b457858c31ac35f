"""Recording session tying capture, gating, transcription and merging together."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

import numpy as np

from livescribe._types import AudioChunk, TranscriptionResult
from livescribe.config import Config
from livescribe.encoder import encode_wav
from livescribe.reconciler import Transcript, TranscriptReconciler
from livescribe.recorder import AudioRecorder, CaptureError
from livescribe.segmenter import ChunkSegmenter, split_samples
from livescribe.silence import SilenceGate
from livescribe.text_services import TextServicesClient
from livescribe.transcriber import (
    CapabilityUnavailableError,
    OracleError,
    TranscriptionClient,
    TranscriptionOptions,
)

logger = logging.getLogger(__name__)


class State(Enum):
    """Session state."""

    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    SHUTDOWN = "shutdown"


class TranscriptionSession:
    """Owns one transcript and drives the capture-to-transcript pipeline.

    Capture -> segmenter -> silence gate -> (drop | encoder -> transcription
    -> reconciler). Chunk transcriptions run concurrently and are merged in
    completion order. Start/stop may be repeated; the transcript persists
    until ``clear`` is called.
    """

    def __init__(
        self,
        config: Config,
        recorder: AudioRecorder,
        transcriber: TranscriptionClient,
        text_services: TextServicesClient | None = None,
        *,
        transcript: Transcript | None = None,
        on_update: Callable[[Transcript], None] | None = None,
        on_silence_change: Callable[[bool], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ):
        """Initialize session with components.

        Args:
            config: Session configuration, fixed for the session lifetime
            recorder: Capture device wrapper
            transcriber: Speech-to-text client
            text_services: Clarify/translate/summarize client
            transcript: Existing transcript to continue (new one if None)
            on_update: Called after every transcript change
            on_silence_change: Called when chunks flip between silent and active
            on_error: Called with each per-chunk failure
        """
        self.config = config
        self.recorder = recorder
        self.transcriber = transcriber
        self.text_services = text_services
        self.on_silence_change = on_silence_change
        self.on_error = on_error

        self.segmenter = ChunkSegmenter(
            self._on_chunk,
            sample_rate=config.audio.sample_rate,
            chunk_duration_ms=config.chunking.chunk_duration_ms,
        )
        self.gate = SilenceGate(
            config.chunking.silence_threshold,
            on_change=self._on_silence_change,
        )
        self.reconciler = TranscriptReconciler(
            transcript,
            config.reconciler,
            text_services=text_services,
            clarify=config.clarify,
            translation=config.translation,
            language=config.transcription.language,
            on_update=on_update,
        )

        self.state = State.IDLE
        self._pending: set[asyncio.Task] = set()
        self._audio_offset = 0.0
        self.chunks_submitted = 0
        self.chunks_silent = 0
        self.chunks_failed = 0

        logger.info("Session initialized in IDLE state")

    @property
    def transcript(self) -> Transcript:
        return self.reconciler.transcript

    async def start(self) -> None:
        """Open the capture device and begin segmenting.

        Raises:
            RuntimeError: If not idle
            CaptureError: If the device is unavailable; the session stays idle
        """
        if self.state != State.IDLE:
            raise RuntimeError(f"Cannot start session in {self.state.value} state")

        self.gate.reset()
        self.segmenter.discard()
        self.reconciler.open()

        try:
            self.recorder.start(self.segmenter.push)
        except CaptureError:
            logger.error("Capture could not be started; session remains idle")
            self.reconciler.close()
            raise

        self.segmenter.start()
        logger.info("State transition: IDLE -> RECORDING")
        self.state = State.RECORDING

    async def stop(self) -> None:
        """Stop capture, flush the last partial chunk and drain in-flight calls.

        Results completing after the drain timeout are dropped.
        """
        if self.state != State.RECORDING:
            logger.warning("Stop requested while in %s state, ignoring", self.state.value)
            return

        logger.info("State transition: RECORDING -> STOPPING")
        self.state = State.STOPPING

        self.recorder.stop()
        try:
            await self.segmenter.stop()
        except Exception as e:
            logger.error("Final flush failed: %s", e, exc_info=True)
        finally:
            self.recorder.close()

        try:
            await self._drain(self.config.session.drain_timeout)
        finally:
            self.reconciler.close()
            await self._cancel_outstanding()
            self.state = State.IDLE

        logger.info(
            "State transition: STOPPING -> IDLE (submitted=%d, silent=%d, failed=%d)",
            self.chunks_submitted,
            self.chunks_silent,
            self.chunks_failed,
        )

    def clear(self) -> None:
        """Empty the transcript; results of earlier submissions are dropped."""
        logger.info("Clearing transcript")
        self.reconciler.clear()
        self._audio_offset = 0.0

    async def summarize(self) -> str:
        """Summarize the current transcript.

        Raises:
            RuntimeError: If no text services client is configured
            OracleError: On service failure
        """
        if self.text_services is None:
            raise RuntimeError("Summaries require a text services client")
        return await self.text_services.summarize(
            self.transcript.text,
            language=self.config.transcription.language,
            custom_prompt=self.config.summary.custom_prompt or None,
        )

    async def process_recording(self, samples: np.ndarray, sample_rate: int) -> Transcript:
        """Run a finished recording through the pipeline chunk by chunk.

        Each chunk is awaited before the next is submitted so that every
        request carries the context produced by its predecessors.
        """
        if self.state != State.IDLE:
            raise RuntimeError(f"Cannot process recording in {self.state.value} state")

        self.gate.reset()
        self.reconciler.open()
        try:
            for chunk in split_samples(samples, sample_rate, self.config.chunking.chunk_duration_ms):
                task = self._on_chunk(chunk)
                if task is not None:
                    await task
            await self._drain(self.config.session.drain_timeout)
        finally:
            self.reconciler.close()
            await self._cancel_outstanding()
        return self.transcript

    async def shutdown(self) -> None:
        """Stop if recording, cancel outstanding calls and close clients."""
        logger.info("Session shutdown starting")
        if self.state == State.RECORDING:
            await self.stop()
        self.state = State.SHUTDOWN
        self.reconciler.close()
        self.recorder.close()

        await self._cancel_outstanding()

        for client in (self.transcriber, self.text_services):
            if client is None:
                continue
            try:
                await client.shutdown()
            except Exception as e:
                logger.warning("Error shutting down %s: %s", type(client).__name__, e)

        logger.info("Session shutdown complete")

    def _on_silence_change(self, is_silent: bool) -> None:
        logger.info("Input is now %s", "silent" if is_silent else "active")
        if self.on_silence_change is not None:
            self.on_silence_change(is_silent)

    def _on_chunk(self, chunk: AudioChunk) -> asyncio.Task | None:
        """Gate, encode and submit one chunk. Runs on the event loop."""
        offset = self._audio_offset
        self._audio_offset += chunk.duration

        if self.gate.process(chunk):
            self.chunks_silent += 1
            return None

        encoded = encode_wav(chunk)
        options = self._build_options()
        generation = self.transcript.generation

        self.chunks_submitted += 1
        logger.info(
            "Submitting chunk %d (%.2fs, %d bytes)",
            self.chunks_submitted,
            chunk.duration,
            len(encoded.data),
        )
        task = asyncio.create_task(
            self._transcribe_chunk(encoded, options, generation, offset)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _build_options(self) -> TranscriptionOptions:
        cfg = self.config.transcription
        if cfg.diarize:
            return TranscriptionOptions(
                language=cfg.language,
                model=cfg.diarize_model,
                api_key=self.config.oracle.api_key,
            )
        return TranscriptionOptions(
            prompt=self.transcript.tail(cfg.context_length),
            language=cfg.language,
            temperature=cfg.temperature,
            model=cfg.model,
            api_key=self.config.oracle.api_key,
        )

    async def _transcribe_chunk(self, encoded, options, generation: int, offset: float) -> None:
        try:
            if self.config.transcription.diarize:
                result: TranscriptionResult = await self.transcriber.transcribe_diarized(
                    encoded, options
                )
            else:
                result = await self.transcriber.transcribe(encoded, options)
        except CapabilityUnavailableError as e:
            self.chunks_failed += 1
            logger.error(
                "Transcription capability unavailable (%s); disable the feature in settings",
                e,
            )
            self._report(e)
            return
        except OracleError as e:
            self.chunks_failed += 1
            logger.warning("Chunk transcription failed, dropping chunk: %s", e)
            self._report(e)
            return
        except Exception as e:
            self.chunks_failed += 1
            logger.error("Unexpected chunk transcription error: %s", e, exc_info=True)
            self._report(e)
            return

        if result.segments:
            self.reconciler.add_segments(result.segments, offset, generation)
        self.reconciler.merge(result.text, generation)

    def _report(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.warning("Error hook failed: %s", e)

    async def _drain(self, timeout: float) -> None:
        """Wait for in-flight transcriptions, then any clarification they trigger."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        if self._pending:
            _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
            if not_done:
                logger.warning(
                    "%d chunk transcriptions still in flight after %.1fs; late results will be dropped",
                    len(not_done),
                    timeout,
                )

        clarify_task = self.reconciler.clarify_task
        remaining = deadline - loop.time()
        if clarify_task is not None and not clarify_task.done() and remaining > 0:
            _, not_done = await asyncio.wait({clarify_task}, timeout=remaining)
            if not_done:
                logger.warning("Clarification still in flight; its result will be dropped")

    async def _cancel_outstanding(self) -> None:
        """Cancel chunk and clarify calls that outlived the drain."""
        tasks = {task for task in self._pending if not task.done()}
        clarify_task = self.reconciler.clarify_task
        if clarify_task is not None and not clarify_task.done():
            tasks.add(clarify_task)
        if not tasks:
            return

        logger.info("Cancelling %d outstanding calls", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
