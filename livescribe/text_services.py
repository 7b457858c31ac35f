"""Clarify, translate and summarize calls to the remote text service."""

import logging
import re

import httpx

from livescribe.transcriber import (
    OracleValidationError,
    TransientOracleError,
    raise_for_oracle_response,
)

logger = logging.getLogger(__name__)

SUMMARY_SECTIONS = ("Summary", "Key Points", "Goals", "Action Items")
EMPTY_SECTION_TEXT = "None identified."


def _has_heading(summary: str, section: str) -> bool:
    """Heading at any markdown level, or a bold line, matched case-insensitively."""
    name = re.escape(section)
    pattern = rf"^[ \t]*(?:#{{1,6}}[ \t]*{name}|\*\*[ \t]*{name}[ \t]*:?[ \t]*\*\*)[ \t]*:?[ \t]*$"
    return re.search(pattern, summary, re.IGNORECASE | re.MULTILINE) is not None


def ensure_summary_sections(summary: str) -> str:
    """Append any required section the service left out, marked empty."""
    lines = [summary.rstrip()] if summary.strip() else []
    for section in SUMMARY_SECTIONS:
        if not _has_heading(summary, section):
            lines.append(f"## {section}\n{EMPTY_SECTION_TEXT}")
    return "\n\n".join(lines)


class TextServicesClient:
    """JSON text endpoints: clarify, translate and summarize."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        credential_header: str = "X-Api-Key",
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.credential_header = credential_header
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client_owned = client is None

    async def _post_json(self, path: str, payload: dict, default_message: str) -> dict:
        headers = {self.credential_header: self.api_key} if self.api_key else {}
        try:
            response = await self._client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientOracleError(f"Request timed out after {self.timeout} seconds") from e
        except httpx.HTTPError as e:
            raise TransientOracleError(f"Network error: {e}") from e

        raise_for_oracle_response(response, default_message)
        try:
            body = response.json()
        except ValueError as e:
            raise TransientOracleError(f"Invalid response: {e}") from e
        if not isinstance(body, dict):
            raise TransientOracleError("Invalid response: expected a JSON object")
        return body

    async def clarify(self, text: str, language: str = "auto") -> str:
        """Return a grammar-corrected version of ``text``."""
        body = await self._post_json(
            "/api/clarify",
            {"text": text, "language": language},
            "Clarification failed",
        )
        return str(body.get("text") or "")

    async def translate(
        self,
        text: str,
        target_language: str,
        source_language: str | None = None,
    ) -> str:
        """Translate ``text``; the source language is sent only when known."""
        payload = {"text": text, "targetLanguage": target_language}
        if source_language and source_language != "auto":
            payload["sourceLanguage"] = source_language
        body = await self._post_json("/api/translate", payload, "Translation failed")
        return str(body.get("text") or "")

    async def summarize(
        self,
        text: str,
        language: str | None = None,
        custom_prompt: str | None = None,
    ) -> str:
        """Generate a markdown meeting summary of ``text``.

        Raises:
            OracleValidationError: If ``text`` is empty
        """
        if not text.strip():
            raise OracleValidationError("Nothing to summarize")

        payload: dict[str, str] = {"text": text}
        if language and language != "auto":
            payload["language"] = language
        if custom_prompt and custom_prompt.strip():
            payload["customPrompt"] = custom_prompt
        body = await self._post_json("/api/summarize", payload, "Failed to generate summary")
        summary = ensure_summary_sections(str(body.get("summary") or ""))
        logger.info("Summary generated: %d characters", len(summary))
        return summary

    async def shutdown(self) -> None:
        if self._client_owned:
            await self._client.aclose()
