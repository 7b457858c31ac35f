"""Merging of independently transcribed fragments into one transcript."""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from livescribe._types import TranscriptionSegment
from livescribe.config import ClarifyConfig, ReconcilerConfig, TranslationConfig
from livescribe.text_services import TextServicesClient

logger = logging.getLogger(__name__)

SENTENCE_END = re.compile(r"[.!?]+")


@dataclass
class Transcript:
    """Session transcript state.

    ``text`` is the primary output. ``clarified_up_to`` marks how much of it
    has been grammar-corrected. ``generation`` changes on every clear so that
    results computed against older text can be recognised and dropped.
    """

    text: str = ""
    clarified_up_to: int = 0
    translation: str = ""
    segments: list[TranscriptionSegment] = field(default_factory=list)
    generation: int = 0

    def tail(self, length: int) -> str:
        if length <= 0:
            return ""
        return self.text[-length:]

    def clear(self) -> None:
        self.text = ""
        self.clarified_up_to = 0
        self.translation = ""
        self.segments = []
        self.generation += 1


def _join(existing: str, addition: str) -> str:
    """Append with exactly one separating space when neither side has one."""
    if not addition:
        return existing
    if not existing:
        return addition
    if existing[-1].isspace() or addition[0].isspace():
        return existing + addition
    return existing + " " + addition


def _word_ngrams(text: str, size: int) -> list[str]:
    words = text.split()
    return [" ".join(words[i : i + size]) for i in range(len(words) - size + 1)]


def merge_fragment(
    text: str,
    fragment: str,
    config: ReconcilerConfig | None = None,
) -> str:
    """Merge a newly recognised fragment into ``text``.

    Checks, in order: the whole fragment repeats the tail; most of its word
    n-grams repeat the tail; a tail suffix equals a fragment prefix. Only the
    part of the fragment not already present is appended.
    """
    config = config or ReconcilerConfig()
    fragment = fragment.strip()
    if not fragment:
        return text

    tail = text[-config.tail_window :]
    tail_lower = tail.lower()
    fragment_lower = fragment.lower()

    if tail and fragment_lower in tail_lower:
        logger.debug("Fragment repeats transcript tail; discarded")
        return text

    ngrams = _word_ngrams(fragment_lower, config.ngram_size)
    if ngrams and tail:
        seen = sum(1 for gram in ngrams if gram in tail_lower)
        if seen / len(ngrams) > config.ngram_threshold:
            logger.debug(
                "Fragment near-repeats tail (%d/%d n-grams); discarded",
                seen,
                len(ngrams),
            )
            return text

    longest = min(len(tail), len(fragment))
    for size in range(longest, config.min_overlap - 1, -1):
        if tail[-size:].lower() == fragment[:size].lower():
            logger.debug("Fragment overlaps tail by %d characters", size)
            return _join(text, fragment[size:])

    return _join(text, fragment)


def find_clarify_batch(text: str, start: int, sentence_count: int) -> int | None:
    """End offset of the ``sentence_count``-th terminator run after ``start``.

    Returns None while fewer terminator runs are present.
    """
    found = 0
    for match in SENTENCE_END.finditer(text, start):
        found += 1
        if found >= sentence_count:
            return match.end()
    return None


class TranscriptReconciler:
    """Sole mutator of a Transcript.

    ``merge`` never suspends, so each merge is atomic on the event loop. At
    most one clarify call is in flight; while it is, batch checks are
    skipped and the next merge after it resolves re-evaluates.
    """

    def __init__(
        self,
        transcript: Transcript | None = None,
        config: ReconcilerConfig | None = None,
        *,
        text_services: TextServicesClient | None = None,
        clarify: ClarifyConfig | None = None,
        translation: TranslationConfig | None = None,
        language: str = "auto",
        on_update: Callable[[Transcript], None] | None = None,
    ):
        self.transcript = transcript or Transcript()
        self.config = config or ReconcilerConfig()
        self.text_services = text_services
        self.clarify_config = clarify or ClarifyConfig()
        self.translation_config = translation or TranslationConfig()
        self.language = language
        self.on_update = on_update
        self.accepting = True
        self._clarify_task: asyncio.Task | None = None

        if self.translation_config.enabled and not self.clarify_config.enabled:
            raise ValueError("Translation requires clarify to be enabled")
        if self.clarify_config.enabled and text_services is None:
            raise ValueError("Clarify requires a text services client")

    @property
    def clarify_task(self) -> asyncio.Task | None:
        return self._clarify_task

    @property
    def clarify_in_flight(self) -> bool:
        return self._clarify_task is not None and not self._clarify_task.done()

    def open(self) -> None:
        self.accepting = True

    def close(self) -> None:
        """Stop accepting results; late merges and clarifications are dropped."""
        self.accepting = False

    def merge(self, fragment: str, generation: int | None = None) -> bool:
        """Merge one fragment.

        Args:
            fragment: Recognised text for one chunk
            generation: Transcript generation the chunk was submitted under

        Returns:
            True if the transcript changed
        """
        if not self.accepting:
            logger.info("Dropping late result received after stop")
            return False
        if generation is not None and generation != self.transcript.generation:
            logger.info("Dropping result submitted before transcript was cleared")
            return False

        before = self.transcript.text
        after = merge_fragment(before, fragment, self.config)
        if after == before:
            return False

        self.transcript.text = after
        logger.debug("Merged fragment: transcript now %d characters", len(after))
        self._notify()
        self._maybe_clarify()
        return True

    def add_segments(
        self,
        segments: list[TranscriptionSegment],
        offset: float = 0.0,
        generation: int | None = None,
    ) -> None:
        """Append diarized segments, shifting their times by ``offset``."""
        if not self.accepting:
            return
        if generation is not None and generation != self.transcript.generation:
            return
        for seg in segments:
            self.transcript.segments.append(
                TranscriptionSegment(
                    speaker=seg.speaker,
                    text=seg.text,
                    start=seg.start + offset,
                    end=seg.end + offset,
                )
            )

    def clear(self) -> None:
        self.transcript.clear()
        self._notify()

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self.transcript)

    def _maybe_clarify(self) -> None:
        if not self.clarify_config.enabled or self.clarify_in_flight:
            return

        start = self.transcript.clarified_up_to
        end = find_clarify_batch(
            self.transcript.text, start, self.clarify_config.sentence_count
        )
        if end is None:
            return

        snapshot = self.transcript.text[start:end]
        logger.debug("Clarifying characters %d-%d", start, end)
        self._clarify_task = asyncio.create_task(
            self._clarify_batch(start, end, snapshot, self.transcript.generation)
        )

    async def _clarify_batch(self, start: int, end: int, snapshot: str, generation: int) -> None:
        try:
            corrected = await self.text_services.clarify(snapshot.strip(), self.language)
        except Exception as e:
            logger.warning("Clarification failed, keeping original text: %s", e)
            return

        corrected = corrected.strip()
        if not corrected:
            logger.warning("Clarification returned empty text, keeping original")
            return

        # Snapshot, compare and replace run without suspending.
        transcript = self.transcript
        if (
            not self.accepting
            or transcript.generation != generation
            or transcript.clarified_up_to != start
            or transcript.text[start:end] != snapshot
        ):
            logger.info("Transcript changed during clarification; discarding result")
            return

        leading = snapshot[: len(snapshot) - len(snapshot.lstrip())]
        replacement = leading + corrected
        transcript.text = transcript.text[:start] + replacement + transcript.text[end:]
        transcript.clarified_up_to = start + len(replacement)
        logger.info("Applied clarification to %d characters", len(snapshot))
        self._notify()

        if self.translation_config.enabled:
            await self._translate_batch(corrected, generation)

    async def _translate_batch(self, text: str, generation: int) -> None:
        try:
            translated = await self.text_services.translate(
                text,
                self.translation_config.target_language,
                self.language,
            )
        except Exception as e:
            logger.warning("Translation failed: %s", e)
            return

        translated = translated.strip()
        if not translated or not self.accepting or self.transcript.generation != generation:
            return
        self.transcript.translation = _join(self.transcript.translation, translated)
        logger.debug("Translation now %d characters", len(self.transcript.translation))
        self._notify()
