"""Chunk transcription via the remote speech-to-text service."""

import logging
import re
import time
from dataclasses import dataclass

import httpx

from livescribe._types import EncodedAudio, TranscriptionResult, TranscriptionSegment

logger = logging.getLogger(__name__)

MODEL_NOT_AVAILABLE_CODE = "MODEL_NOT_AVAILABLE"


class OracleError(RuntimeError):
    """Failed call to the remote speech/text service."""

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class TransientOracleError(OracleError):
    """Network or service failure; the affected chunk is dropped."""


class CapabilityUnavailableError(OracleError):
    """Requested model or feature is not offered by the current provider."""


class OracleValidationError(OracleError):
    """Request rejected as malformed (e.g. no audio data)."""


def raise_for_oracle_response(response: httpx.Response, default_message: str) -> None:
    """Translate a non-success response into a typed OracleError."""
    if response.is_success:
        return

    message = default_message
    code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or message
        code = body.get("code")

    if code == MODEL_NOT_AVAILABLE_CODE:
        raise CapabilityUnavailableError(message, code=code, status_code=response.status_code)
    if response.status_code == 400:
        raise OracleValidationError(message, code=code, status_code=response.status_code)
    raise TransientOracleError(message, code=code, status_code=response.status_code)


def normalize_text(text: str) -> str:
    """Strip and collapse whitespace runs in service output."""
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class TranscriptionOptions:
    """Per-request parameters.

    Attributes:
        prompt: Recent transcript context; omitted when empty
        language: ISO-639-1 code; omitted when "auto"
        temperature: Sampling temperature 0.0-1.0; omitted when None
        model: Model identifier; omitted when None
        api_key: Per-caller credential; sent as a header, never in the body
    """

    prompt: str = ""
    language: str = "auto"
    temperature: float | None = None
    model: str | None = None
    api_key: str | None = None

    def form_fields(self) -> dict[str, str]:
        """Multipart fields, applying each omission rule."""
        data: dict[str, str] = {}
        if self.prompt:
            data["prompt"] = self.prompt
        if self.language and self.language != "auto":
            data["language"] = self.language
        if self.temperature is not None:
            data["temperature"] = str(self.temperature)
        if self.model:
            data["model"] = self.model
        return data


class TranscriptionClient:
    """Submits encoded chunks to the transcription endpoints.

    Calls are independent; several may be in flight at once and complete in
    any order.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        credential_header: str = "X-Api-Key",
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize transcription client.

        Args:
            base_url: Root URL of the service
            timeout: Request timeout in seconds
            credential_header: Header carrying a per-caller credential override
            client: Optional preconfigured httpx.AsyncClient (not closed by us)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.credential_header = credential_header
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client_owned = client is None
        logger.info("TranscriptionClient initialized: base_url=%s", self.base_url)

    def _headers(self, api_key: str | None) -> dict[str, str]:
        return {self.credential_header: api_key} if api_key else {}

    async def _post_audio(
        self,
        path: str,
        audio: EncodedAudio,
        fields: dict[str, str],
        api_key: str | None,
        default_message: str,
    ) -> dict:
        if not audio.data:
            raise OracleValidationError("No audio data")

        files = {"file": (audio.filename, audio.data, audio.mime_type)}
        start_time = time.perf_counter()
        try:
            response = await self._client.post(
                f"{self.base_url}{path}",
                files=files,
                data=fields,
                headers=self._headers(api_key),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientOracleError(f"Request timed out after {self.timeout} seconds") from e
        except httpx.HTTPError as e:
            raise TransientOracleError(f"Network error: {e}") from e

        logger.debug(
            "POST %s -> %d in %.2fs (%d audio bytes)",
            path,
            response.status_code,
            time.perf_counter() - start_time,
            len(audio.data),
        )
        raise_for_oracle_response(response, default_message)

        try:
            body = response.json()
        except ValueError as e:
            raise TransientOracleError(f"Invalid response: {e}") from e
        if not isinstance(body, dict):
            raise TransientOracleError("Invalid response: expected a JSON object")
        return body

    async def transcribe(
        self,
        audio: EncodedAudio,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """Transcribe one chunk.

        Returns:
            TranscriptionResult whose text may be empty

        Raises:
            TransientOracleError, CapabilityUnavailableError, OracleValidationError
        """
        options = options or TranscriptionOptions()
        body = await self._post_audio(
            "/api/transcribe",
            audio,
            options.form_fields(),
            options.api_key,
            "Transcription failed",
        )
        text = normalize_text(str(body.get("text") or ""))
        logger.info("Transcription completed: %d characters", len(text))
        return TranscriptionResult(text=text)

    async def transcribe_diarized(
        self,
        audio: EncodedAudio,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """Transcribe one chunk with per-speaker segmentation.

        Only language and model are forwarded. When the service returns text
        but no segments, a single speaker "A" segment spanning zero seconds
        is synthesized.
        """
        options = options or TranscriptionOptions()
        fields = {}
        if options.language and options.language != "auto":
            fields["language"] = options.language
        if options.model:
            fields["model"] = options.model

        body = await self._post_audio(
            "/api/transcribe-diarize",
            audio,
            fields,
            options.api_key,
            "Diarized transcription failed",
        )

        segments = []
        for raw in body.get("segments") or []:
            segment_text = normalize_text(str(raw.get("text") or ""))
            if not segment_text:
                continue
            segments.append(
                TranscriptionSegment(
                    speaker=str(raw.get("speaker") or "A"),
                    text=segment_text,
                    start=float(raw.get("start") or 0.0),
                    end=float(raw.get("end") or 0.0),
                )
            )

        text = normalize_text(str(body.get("text") or ""))
        if not text and segments:
            text = " ".join(seg.text for seg in segments)
        if text and not segments:
            segments = [TranscriptionSegment(speaker="A", text=text, start=0.0, end=0.0)]

        logger.info(
            "Diarized transcription completed: %d segments, %d characters",
            len(segments),
            len(text),
        )
        return TranscriptionResult(text=text, segments=segments)

    async def shutdown(self) -> None:
        """Close the HTTP client if owned by this instance."""
        logger.info("TranscriptionClient shutting down")
        if self._client_owned:
            await self._client.aclose()
