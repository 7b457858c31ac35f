"""Typer CLI entrypoint for livescribe."""

import asyncio
import json
import logging
from pathlib import Path

import typer

from livescribe.config import (
    Config,
    ConfigError,
    discover_audio_devices,
    load_config,
)
from livescribe.encoder import read_wav_samples
from livescribe.reconciler import Transcript
from livescribe.recorder import AudioRecorder, CaptureError
from livescribe.session import TranscriptionSession
from livescribe.text_services import TextServicesClient
from livescribe.transcriber import OracleError, TranscriptionClient

app = typer.Typer(help="Live chunked speech-to-text with transcript reconciliation")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _merge_config_overrides(
    cfg: Config,
    *,
    audio_device: int | None = None,
    language: str | None = None,
    chunk_ms: int | None = None,
    diarize: bool | None = None,
    clarify: bool | None = None,
    translate_to: str | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if audio_device is not None:
        available = discover_audio_devices()
        valid_indices = {d["index"] for d in available}
        if audio_device not in valid_indices:
            available_str = ", ".join(str(d["index"]) for d in available)
            raise ConfigError(
                f"Invalid audio device index {audio_device}. "
                f"Available: {available_str or 'none'}"
            )
        logger.debug("Overriding audio device to index %d", audio_device)
        cfg.audio.device = audio_device

    if language is not None:
        logger.debug("Overriding language to '%s'", language)
        cfg.transcription.language = language

    if chunk_ms is not None:
        logger.debug("Overriding chunk duration to %d ms", chunk_ms)
        cfg.chunking.chunk_duration_ms = chunk_ms

    if diarize is not None:
        cfg.transcription.diarize = diarize

    if clarify is not None:
        cfg.clarify.enabled = clarify

    if translate_to is not None:
        logger.debug("Enabling translation to '%s'", translate_to)
        cfg.translation.enabled = True
        cfg.translation.target_language = translate_to

    cfg.enforce_invariants()
    return cfg


def _build_session(cfg: Config, on_update=None) -> TranscriptionSession:
    """Construct the session and its collaborators from configuration."""
    recorder = AudioRecorder(
        sample_rate=cfg.audio.sample_rate,
        block_size=cfg.audio.block_size,
        device=cfg.audio.device,
        latency=cfg.audio.latency,
    )
    transcriber = TranscriptionClient(
        cfg.oracle.base_url,
        timeout=cfg.oracle.timeout,
        credential_header=cfg.oracle.credential_header,
    )
    text_services = TextServicesClient(
        cfg.oracle.base_url,
        timeout=cfg.oracle.timeout,
        credential_header=cfg.oracle.credential_header,
        api_key=cfg.oracle.api_key,
    )
    return TranscriptionSession(
        cfg,
        recorder,
        transcriber,
        text_services,
        on_update=on_update,
        on_error=lambda e: typer.echo(f"\n[chunk lost: {e}]", err=True),
    )


class _TranscriptPrinter:
    """Echoes newly appended transcript text as it arrives."""

    def __init__(self):
        self._printed = ""

    def __call__(self, transcript: Transcript) -> None:
        text = transcript.text
        if text.startswith(self._printed):
            typer.echo(text[len(self._printed) :], nl=False)
        self._printed = text


def _echo_transcript(transcript: Transcript) -> None:
    typer.echo("\n\n--- Transcript ---")
    typer.echo(transcript.text or "(empty)")
    if transcript.translation:
        typer.echo("\n--- Translation ---")
        typer.echo(transcript.translation)
    if transcript.segments:
        typer.echo("\n--- Speakers ---")
        for seg in transcript.segments:
            typer.echo(f"[{seg.start:7.1f}s] {seg.speaker}: {seg.text}")


async def _record(session: TranscriptionSession, duration: float | None) -> None:
    await session.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await session.shutdown()


@app.command()
def run(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    audio_device: int | None = typer.Option(
        None, "--audio-device", "-a", help="Override audio device by index"
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code or 'auto'"
    ),
    chunk_ms: int | None = typer.Option(
        None, "--chunk-ms", help="Chunk duration in milliseconds (1000-10000)"
    ),
    diarize: bool | None = typer.Option(
        None, "--diarize/--no-diarize", help="Per-speaker transcription"
    ),
    clarify: bool | None = typer.Option(
        None, "--clarify/--no-clarify", help="Grammar-correct completed sentences"
    ),
    translate_to: str | None = typer.Option(
        None, "--translate-to", help="Translate clarified text to this language"
    ),
    duration: float | None = typer.Option(
        None, "--duration", help="Stop after this many seconds (default: until Ctrl+C)"
    ),
) -> None:
    """Record from the microphone and print the live transcript."""
    _setup_logging(verbose)
    session = None
    try:
        cfg = load_config(config)
        cfg = _merge_config_overrides(
            cfg,
            audio_device=audio_device,
            language=language,
            chunk_ms=chunk_ms,
            diarize=diarize,
            clarify=clarify,
            translate_to=translate_to,
        )
        cfg.validate()
        logger.info("Configuration validated successfully")

        session = _build_session(cfg, on_update=_TranscriptPrinter())
        logger.info("Starting live transcription")
        asyncio.run(_record(session, duration))
        _echo_transcript(session.transcript)

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except CaptureError as e:
        logger.error("Microphone unavailable: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Recording interrupted by user")
        if session is not None:
            _echo_transcript(session.transcript)
        raise typer.Exit(0)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)


@app.command()
def transcribe(
    audio_file: Path = typer.Argument(..., help="16-bit PCM WAV file"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code or 'auto'"
    ),
    chunk_ms: int | None = typer.Option(
        None, "--chunk-ms", help="Chunk duration in milliseconds (1000-10000)"
    ),
    diarize: bool | None = typer.Option(
        None, "--diarize/--no-diarize", help="Per-speaker transcription"
    ),
) -> None:
    """Run a WAV file through the chunked transcription pipeline."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg = _merge_config_overrides(
            cfg, language=language, chunk_ms=chunk_ms, diarize=diarize
        )
        cfg.validate()

        samples, sample_rate = read_wav_samples(audio_file)
        logger.info("Loaded %s: %d samples at %d Hz", audio_file, len(samples), sample_rate)

        session = _build_session(cfg)

        async def _process() -> Transcript:
            try:
                return await session.process_recording(samples, sample_rate)
            finally:
                await session.shutdown()

        transcript = asyncio.run(_process())
        typer.echo(transcript.text)
        if transcript.translation:
            typer.echo(transcript.translation)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except Exception as e:
        logger.error("Transcription failed: %s", e)
        raise typer.Exit(1)


@app.command()
def summarize(
    transcript_file: Path = typer.Argument(..., help="Text file with a transcript"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    prompt: str | None = typer.Option(
        None, "--prompt", help="Custom summary instructions"
    ),
) -> None:
    """Generate a structured summary of a saved transcript."""
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg.validate()
        text = transcript_file.read_text(encoding="utf-8")

        client = TextServicesClient(
            cfg.oracle.base_url,
            timeout=cfg.oracle.timeout,
            credential_header=cfg.oracle.credential_header,
            api_key=cfg.oracle.api_key,
        )

        async def _summarize() -> str:
            try:
                return await client.summarize(
                    text,
                    language=cfg.transcription.language,
                    custom_prompt=prompt or cfg.summary.custom_prompt or None,
                )
            finally:
                await client.shutdown()

        typer.echo(asyncio.run(_summarize()))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except OracleError as e:
        logger.error("Summary failed: %s", e)
        raise typer.Exit(1)
    except OSError as e:
        logger.error("Cannot read transcript: %s", e)
        raise typer.Exit(1)


@app.command()
def list_audio(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """List available audio devices."""
    _setup_logging(verbose)
    try:
        devices = discover_audio_devices()
        if not devices:
            logger.warning("No audio devices found")
            return

        if json_output:
            typer.echo(json.dumps(devices, indent=2))
        else:
            typer.echo("Available audio devices:")
            for dev in devices:
                typer.echo(
                    f"  [{dev['index']}] {dev['name']} "
                    f"({dev['channels']}ch, {dev['sample_rate']}Hz)"
                )
    except Exception as e:
        logger.error("Error listing audio devices: %s", e)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
