"""Document-level enrichers.

:class:`ImageAlternativeTextEnricher` fills in missing alt text for image
sections so that images contribute searchable text to chunking.  It never
sends image bytes anywhere: the model only sees the image reference and
the text surrounding it in the document.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ragpipe.interfaces.enricher import IDocumentEnricher
from ragpipe.models.document import SectionType

if TYPE_CHECKING:
    from ragpipe.interfaces.llm_provider import ILLMProvider
    from ragpipe.models.document import Document

logger = structlog.get_logger(logger_name=__name__)

# Characters of neighbouring text given to the model on each side of an image.
_CONTEXT_CHARS = 600

_ALT_TEXT_SYSTEM_PROMPT = (
    "You write concise alternative text for images in technical documents. "
    "You cannot see the image; infer what it most likely shows from its "
    "file name and the surrounding text."
)

_ALT_TEXT_USER_PROMPT = """\
Image reference: {reference}

Text before the image:
{before}

Text after the image:
{after}

Write one sentence of alternative text for this image. Return only the sentence."""


class ImageAlternativeTextEnricher(IDocumentEnricher):
    """Generates ``alternative_text`` for image sections that have none."""

    def __init__(self, llm: ILLMProvider) -> None:
        self._llm = llm

    async def enrich(self, document: Document) -> Document:
        generated = 0
        for index, section in enumerate(document.sections):
            if section.section_type != SectionType.IMAGE or section.alternative_text:
                continue
            before, after = _neighbouring_text(document, index)
            response = await self._llm.complete(
                system_prompt=_ALT_TEXT_SYSTEM_PROMPT,
                user_prompt=_ALT_TEXT_USER_PROMPT.format(
                    reference=section.content or "(unknown)",
                    before=before or "(none)",
                    after=after or "(none)",
                ),
                temperature=0.2,
                max_tokens=120,
            )
            alt_text = " ".join(response.split())
            if alt_text:
                section.alternative_text = alt_text
                generated += 1

        if generated:
            logger.info(
                "alt_text_generated",
                document_id=document.document_id,
                images=generated,
            )
        return document


def _neighbouring_text(document: Document, index: int) -> tuple[str, str]:
    """Return up to ``_CONTEXT_CHARS`` of text before and after section *index*."""
    before_parts: list[str] = []
    for section in reversed(document.sections[:index]):
        if sum(len(p) for p in before_parts) >= _CONTEXT_CHARS:
            break
        if section.section_type != SectionType.IMAGE:
            before_parts.insert(0, section.content.strip())

    after_parts: list[str] = []
    for section in document.sections[index + 1 :]:
        if sum(len(p) for p in after_parts) >= _CONTEXT_CHARS:
            break
        if section.section_type != SectionType.IMAGE:
            after_parts.append(section.content.strip())

    before = "\n".join(p for p in before_parts if p)[-_CONTEXT_CHARS:]
    after = "\n".join(p for p in after_parts if p)[:_CONTEXT_CHARS]
    return before, after
