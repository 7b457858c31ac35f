"""Tests for clarify/translate/summarize client."""

import json

import httpx
import pytest

from livescribe.text_services import (
    EMPTY_SECTION_TEXT,
    TextServicesClient,
    ensure_summary_sections,
)
from livescribe.transcriber import OracleValidationError, TransientOracleError


def make_client(handler, api_key=None) -> TextServicesClient:
    return TextServicesClient(
        "https://oracle.example.com",
        api_key=api_key,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestClarify:
    """Tests for grammar correction calls."""

    @pytest.mark.asyncio
    async def test_clarify_payload(self):
        """Text and language are posted as JSON."""
        def handler(request):
            assert request.url.path == "/api/clarify"
            assert json.loads(request.content) == {"text": "helo wrld.", "language": "en"}
            assert request.headers["X-Api-Key"] == "key"
            return httpx.Response(200, json={"text": "Hello world."})

        client = make_client(handler, api_key="key")
        assert await client.clarify("helo wrld.", "en") == "Hello world."

    @pytest.mark.asyncio
    async def test_clarify_error(self):
        """Service failures raise typed errors."""
        client = make_client(lambda request: httpx.Response(503, json={"message": "busy"}))
        with pytest.raises(TransientOracleError, match="busy"):
            await client.clarify("x.")


class TestTranslate:
    """Tests for translation calls."""

    @pytest.mark.asyncio
    async def test_source_language_sent_when_known(self):
        """Known source languages are forwarded."""
        def handler(request):
            assert json.loads(request.content) == {
                "text": "Hallo.",
                "targetLanguage": "en",
                "sourceLanguage": "de",
            }
            return httpx.Response(200, json={"text": "Hello."})

        client = make_client(handler)
        assert await client.translate("Hallo.", "en", "de") == "Hello."

    @pytest.mark.asyncio
    async def test_auto_source_omitted(self):
        """Auto-detected source language is not forwarded."""
        def handler(request):
            assert "sourceLanguage" not in json.loads(request.content)
            return httpx.Response(200, json={"text": "Hello."})

        client = make_client(handler)
        await client.translate("Hallo.", "en", "auto")


class TestSummarize:
    """Tests for one-shot summaries."""

    @pytest.mark.asyncio
    async def test_summary_with_custom_prompt(self):
        """Custom instructions and language are forwarded."""
        summary = (
            "## Summary\nShort.\n\n## Key Points\n- a\n\n"
            "## Goals\n- b\n\n## Action Items\n- c"
        )

        def handler(request):
            payload = json.loads(request.content)
            assert payload == {"text": "meeting text", "language": "pl", "customPrompt": "Be brief"}
            return httpx.Response(200, json={"summary": summary})

        client = make_client(handler)
        result = await client.summarize("meeting text", language="pl", custom_prompt="Be brief")
        assert result == summary

    @pytest.mark.asyncio
    async def test_missing_sections_filled(self):
        """Sections absent from the reply are added as empty."""
        client = make_client(
            lambda request: httpx.Response(200, json={"summary": "## Summary\nAll good."})
        )
        result = await client.summarize("text", language="auto")

        assert result.startswith("## Summary\nAll good.")
        assert f"## Goals\n{EMPTY_SECTION_TEXT}" in result
        assert f"## Action Items\n{EMPTY_SECTION_TEXT}" in result

    @pytest.mark.asyncio
    async def test_empty_transcript_rejected(self):
        """Nothing is sent for an empty transcript."""
        def handler(request):
            raise AssertionError("Unexpected request")

        client = make_client(handler)
        with pytest.raises(OracleValidationError):
            await client.summarize("   ")

    @pytest.mark.asyncio
    async def test_summary_failure_propagates(self):
        """Errors reach the caller of the summary."""
        client = make_client(
            lambda request: httpx.Response(500, json={"message": "Failed to generate summary"})
        )
        with pytest.raises(TransientOracleError, match="Failed to generate summary"):
            await client.summarize("text")


class TestEnsureSummarySections:
    """Tests for summary section completion."""

    def test_empty_summary(self):
        """An empty reply lists every section as empty."""
        result = ensure_summary_sections("")
        for section in ("Summary", "Key Points", "Goals", "Action Items"):
            assert f"## {section}\n{EMPTY_SECTION_TEXT}" in result

    def test_heading_styles_recognised(self):
        """Headings at any level, bold or lowercase count as present."""
        summary = "# Summary\nShipped.\n\n**Key Points:**\n- a\n\n### goals\n- b"
        result = ensure_summary_sections(summary)

        assert result.count(EMPTY_SECTION_TEXT) == 1
        assert result.endswith(f"## Action Items\n{EMPTY_SECTION_TEXT}")

    def test_mention_in_body_is_not_a_heading(self):
        """A section name inside prose does not satisfy the section."""
        result = ensure_summary_sections("## Summary\nThe goals were unclear.")
        assert f"## Goals\n{EMPTY_SECTION_TEXT}" in result
