"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "AudioConfig",
    "ChunkingConfig",
    "TranscriptionConfig",
    "ReconcilerConfig",
    "ClarifyConfig",
    "TranslationConfig",
    "SummaryConfig",
    "OracleConfig",
    "SessionConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "discover_audio_devices",
]

MIN_CHUNK_DURATION_MS = 1000
MAX_CHUNK_DURATION_MS = 10000
MIN_SILENCE_THRESHOLD = 0.001
MAX_SILENCE_THRESHOLD = 0.05
MAX_CONTEXT_LENGTH = 500


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class AudioConfig:
    """Audio capture configuration."""

    sample_rate: int = 16000
    channels: int = 1
    block_size: int = 4096
    device: int | str | None = None
    latency: float | str | None = None


@dataclass
class ChunkingConfig:
    """Chunk segmentation and silence gating."""

    chunk_duration_ms: int = 3000
    silence_threshold: float = 0.005


@dataclass
class TranscriptionConfig:
    """Transcription request parameters."""

    language: str = "auto"
    model: str = "gpt-4o-mini-transcribe"
    temperature: float = 0.0
    context_length: int = 200
    diarize: bool = False
    diarize_model: str = "gpt-4o-transcribe-diarize"


@dataclass
class ReconcilerConfig:
    """Tuning constants for transcript deduplication."""

    tail_window: int = 500
    ngram_size: int = 3
    ngram_threshold: float = 0.5
    min_overlap: int = 5


@dataclass
class ClarifyConfig:
    """Sentence-batched grammar correction."""

    enabled: bool = False
    sentence_count: int = 3


@dataclass
class TranslationConfig:
    """Translation of clarified batches."""

    enabled: bool = False
    target_language: str = "en"


@dataclass
class SummaryConfig:
    """Summary generation settings."""

    custom_prompt: str = ""


@dataclass
class OracleConfig:
    """Remote speech/text service endpoint."""

    base_url: str = "http://localhost:5000"
    api_key: str | None = None
    timeout: float = 30.0
    credential_header: str = "X-Api-Key"


@dataclass
class SessionConfig:
    """Session lifecycle settings."""

    drain_timeout: float = 5.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False
    debug: bool = False


_SECTIONS = {
    "audio": AudioConfig,
    "chunking": ChunkingConfig,
    "transcription": TranscriptionConfig,
    "reconciler": ReconcilerConfig,
    "clarify": ClarifyConfig,
    "translation": TranslationConfig,
    "summary": SummaryConfig,
    "oracle": OracleConfig,
    "session": SessionConfig,
    "general": GeneralConfig,
}


@dataclass
class Config:
    """Main configuration container.

    Treated as immutable for the duration of a recording session.
    """

    audio: AudioConfig = field(default_factory=AudioConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    clarify: ClarifyConfig = field(default_factory=ClarifyConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    def __post_init__(self) -> None:
        """Apply cross-section invariants."""
        self.enforce_invariants()

    def enforce_invariants(self) -> None:
        """Translation operates on clarified text, so it forces clarify on."""
        if self.translation.enabled and not self.clarify.enabled:
            logger.info("Translation enabled; enabling clarify as well")
            self.clarify.enabled = True

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. LIVESCRIBE_CONFIG env var
                  2. ./livescribe.toml
                  3. ~/.config/livescribe.toml
                  Built-in defaults are used when none of them exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit config file is missing or parsing fails
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        coerced = _coerce_config_values(raw_data, env)
        try:
            return cls(
                **{name: section(**coerced[name]) for name, section in _SECTIONS.items()}
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate value ranges across all sections.

        Raises:
            ConfigError: If any value is out of range
        """
        try:
            validate_audio_config(self.audio)
            validate_chunking_config(self.chunking)
            validate_transcription_config(self.transcription)
            validate_reconciler_config(self.reconciler)
            validate_clarify_config(self.clarify)
            validate_oracle_config(self.oracle)
        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Validation failed: {e}") from e


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path
    2. LIVESCRIBE_CONFIG environment variable
    3. ./livescribe.toml (current directory)
    4. ~/.config/livescribe.toml (user config directory)

    Raises:
        ConfigError: If the CLI-provided path does not exist
    """
    candidates = []

    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    if env_path := env.get("LIVESCRIBE_CONFIG"):
        candidates.append(Path(env_path))

    candidates.append(Path("livescribe.toml"))
    candidates.append(Path.home() / ".config" / "livescribe.toml")

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info(
        "No config file found (searched: %s); using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Args:
        raw_data: Raw parsed TOML dictionary
        env: Environment variables for overrides

    Returns:
        Mapping of section name to keyword arguments

    Raises:
        ConfigError: On unknown sections, non-table sections or unknown keys
    """
    unknown_sections = set(raw_data) - set(_SECTIONS)
    if unknown_sections:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown_sections))}")

    coerced = {}
    for name, section in _SECTIONS.items():
        values = raw_data.get(name, {})
        if not isinstance(values, dict):
            raise ConfigError(f"Section [{name}] must be a table")

        known = {f.name for f in fields(section)}
        unknown = set(values) - known
        if unknown:
            raise ConfigError(
                f"Unknown keys in [{name}]: {', '.join(sorted(unknown))}"
            )
        coerced[name] = dict(values)

    oracle_section = coerced["oracle"]
    if not oracle_section.get("api_key"):
        oracle_section["api_key"] = env.get("LIVESCRIBE_API_KEY")

    return coerced


def discover_audio_devices() -> list[dict]:
    """Enumerate available audio capture devices.

    Returns:
        List of device dicts with keys: index, name, channels, sample_rate
        Returns empty list if sounddevice unavailable or no devices found
    """
    try:
        import sounddevice
    except (ImportError, OSError):
        logger.warning("sounddevice not available, cannot enumerate audio devices")
        return []

    devices = []
    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) > 0:
                devices.append(
                    {
                        "index": idx,
                        "name": dev_info.get("name", f"Device {idx}"),
                        "channels": dev_info.get("max_input_channels", 0),
                        "sample_rate": dev_info.get("default_samplerate", 0),
                    }
                )
    except Exception as e:
        logger.warning("Error discovering audio devices: %s", e)

    return devices


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    """Validate audio capture configuration.

    Raises:
        ConfigError: If the capture format is unsupported
    """
    if audio_cfg.sample_rate <= 0:
        raise ConfigError(f"sample_rate must be positive, got {audio_cfg.sample_rate}")
    if audio_cfg.channels != 1:
        raise ConfigError(f"Only mono capture is supported, got channels={audio_cfg.channels}")
    if audio_cfg.block_size <= 0:
        raise ConfigError(f"block_size must be positive, got {audio_cfg.block_size}")


def validate_chunking_config(chunking_cfg: ChunkingConfig) -> None:
    """Validate chunk duration and silence threshold ranges.

    Raises:
        ConfigError: If either value is out of range
    """
    duration = chunking_cfg.chunk_duration_ms
    if not MIN_CHUNK_DURATION_MS <= duration <= MAX_CHUNK_DURATION_MS:
        raise ConfigError(
            f"chunk_duration_ms must be between {MIN_CHUNK_DURATION_MS} and "
            f"{MAX_CHUNK_DURATION_MS}, got {duration}"
        )

    threshold = chunking_cfg.silence_threshold
    if not MIN_SILENCE_THRESHOLD <= threshold <= MAX_SILENCE_THRESHOLD:
        raise ConfigError(
            f"silence_threshold must be between {MIN_SILENCE_THRESHOLD} and "
            f"{MAX_SILENCE_THRESHOLD}, got {threshold}"
        )


def validate_transcription_config(transcription_cfg: TranscriptionConfig) -> None:
    """Validate transcription request parameters.

    Raises:
        ConfigError: If a parameter is out of range
    """
    if not transcription_cfg.language:
        raise ConfigError("language must be a language code or 'auto'")

    if not transcription_cfg.model:
        raise ConfigError("model must not be empty")

    if not 0.0 <= transcription_cfg.temperature <= 1.0:
        raise ConfigError(
            f"temperature must be between 0.0 and 1.0, got {transcription_cfg.temperature}"
        )

    if not 0 <= transcription_cfg.context_length <= MAX_CONTEXT_LENGTH:
        raise ConfigError(
            f"context_length must be between 0 and {MAX_CONTEXT_LENGTH}, "
            f"got {transcription_cfg.context_length}"
        )


def validate_reconciler_config(reconciler_cfg: ReconcilerConfig) -> None:
    """Validate deduplication tuning constants.

    Raises:
        ConfigError: If a constant is out of range
    """
    if reconciler_cfg.tail_window <= 0:
        raise ConfigError(f"tail_window must be positive, got {reconciler_cfg.tail_window}")
    if reconciler_cfg.ngram_size <= 0:
        raise ConfigError(f"ngram_size must be positive, got {reconciler_cfg.ngram_size}")
    if not 0.0 <= reconciler_cfg.ngram_threshold <= 1.0:
        raise ConfigError(
            f"ngram_threshold must be between 0.0 and 1.0, got {reconciler_cfg.ngram_threshold}"
        )
    if reconciler_cfg.min_overlap <= 0:
        raise ConfigError(f"min_overlap must be positive, got {reconciler_cfg.min_overlap}")


def validate_clarify_config(clarify_cfg: ClarifyConfig) -> None:
    """Validate clarify batching.

    Raises:
        ConfigError: If batch size is not positive
    """
    if clarify_cfg.sentence_count < 1:
        raise ConfigError(
            f"sentence_count must be at least 1, got {clarify_cfg.sentence_count}"
        )


def validate_oracle_config(oracle_cfg: OracleConfig) -> None:
    """Validate oracle endpoint settings.

    Raises:
        ConfigError: If the URL, timeout or header name is invalid
    """
    if not oracle_cfg.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"base_url must be an http(s) URL, got '{oracle_cfg.base_url}'")
    if oracle_cfg.timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {oracle_cfg.timeout}")
    if not oracle_cfg.credential_header:
        raise ConfigError("credential_header must not be empty")


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().
    """
    return Config.from_toml(path, env=env)
