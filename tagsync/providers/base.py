"""
Base provider protocol and shared prompt helpers.

Using Protocol for structural subtyping - no explicit inheritance required.
"""

import json
import re
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from ..errors import ParseFailure
from ..types import Document, GenerationResult


# -----------------------------------------------------------------------------
# Tagging
# -----------------------------------------------------------------------------

@runtime_checkable
class TaggingProvider(Protocol):
    """
    Proposes tags for a document with one request/response round trip.

    Implementations must not raise for transport problems: failures are
    attached to the returned result so the caller can decide to retry.

    Example implementation:
        class FixedTagging:
            def tag(self, document, *, language, historical_tags):
                return GenerationResult(document_id=document.id, tags=["python"])
    """

    def tag(
        self,
        document: Document,
        *,
        language: str,
        historical_tags: Sequence[str] = (),
    ) -> GenerationResult:
        """
        Propose tags for a document.

        Args:
            document: The document to tag (full content is sent)
            language: Preferred output language code (e.g. "zh", "en")
            historical_tags: Tags previously recorded for this document

        Returns:
            GenerationResult with proposed tags, or with ``error`` set
        """
        ...


# -----------------------------------------------------------------------------
# Prompts
# -----------------------------------------------------------------------------

TAGGING_SYSTEM_PROMPT = "You are an expert tag generator for technical blog posts."

_LANGUAGE_LABELS = {
    "zh": "Chinese",
    "en": "English",
}

_NONE_LABEL = "(none)"


def language_label(language: str) -> str:
    """Human-readable name for a language code; unknown codes pass through."""
    return _LANGUAGE_LABELS.get(language.lower(), language) if language else "Chinese"


def build_tagging_prompt(
    document: Document,
    language: str,
    historical_tags: Sequence[str] = (),
) -> str:
    """Build the user prompt embedding the full document and known tags."""
    own = ", ".join(document.own_tags) if document.own_tags else _NONE_LABEL
    historical = ", ".join(historical_tags) if historical_tags else _NONE_LABEL
    label = language_label(language)
    return f"""You are a tagging specialist for technical blogs. Based on the full article, produce 3-6 high-quality tags.

Article title: {document.title}
Front-matter tags: {own}
Historical tags (tag index): {historical}

Full content:
{document.content}

Requirements:
1. Prefer reusing existing tags; keep them as-is when their meaning fits.
2. Keep English technical proper nouns (protocols, frameworks, APIs, libraries) in English; do not translate them.
3. Tags must be specific and reusable; avoid overly broad tags such as "technology" or "learning".
4. Write tags mainly in {label} (mixing in English is fine). Answer with a JSON array only, e.g. ["Tag1", "Tag2"]."""


# -----------------------------------------------------------------------------
# Response parsing
# -----------------------------------------------------------------------------

_ARRAY_START = re.compile(r"\[")


def extract_json_array(content: str) -> list[Any]:
    """
    Return the first JSON array literal found in ``content``.

    Scans each ``[`` in order and decodes from there, so prose or markdown
    links before the array are skipped.

    Raises:
        ParseFailure: If no position decodes to a JSON array
    """
    decoder = json.JSONDecoder()
    for match in _ARRAY_START.finditer(content or ""):
        try:
            value, _ = decoder.raw_decode(content, match.start())
        except ValueError:
            continue
        if isinstance(value, list):
            return value
    raise ParseFailure("response contained no JSON array")


def parse_tags_from_content(content: str) -> list[str]:
    """Extract proposed tags from a response; unparsable content gives []."""
    try:
        values = extract_json_array(content)
    except ParseFailure:
        return []
    items = [str(item).strip() for item in values if item is not None]
    return [item for item in items if item]
