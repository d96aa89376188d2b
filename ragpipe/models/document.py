"""In-memory document model produced by readers.

A :class:`Document` is the parsed form of one source file: an ordered list
of typed :class:`Section` objects with character offsets back into the
source text.  Documents live only for the duration of one pipeline run and
are never persisted.  Unlike the chunk and record models they are mutable,
because document enrichers (e.g. alt-text generation) rewrite sections in
place on a private copy.
"""

from __future__ import annotations

from bisect import bisect_right
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SectionType(str, Enum):
    """Structural role of a section within its document."""

    HEADING = "heading"
    TEXT = "text"
    IMAGE = "image"
    CODE = "code"
    TABLE = "table"


class Section(BaseModel):
    """One structural element of a document (paragraph, heading, image, ...)."""

    model_config = ConfigDict(validate_assignment=True)

    section_type: SectionType = Field(description="Structural role of the section.")
    content: str = Field(
        default="",
        description="Text of the section; for images, the image reference (URL or path).",
    )
    start_offset: int = Field(default=0, ge=0, description="Start character offset in the source.")
    end_offset: int = Field(default=0, ge=0, description="End character offset (exclusive).")
    level: int | None = Field(default=None, ge=1, le=6, description="Heading level, headings only.")
    alternative_text: str | None = Field(
        default=None,
        description="Alternative text for image sections.",
    )
    content_offsets: list[tuple[int, int]] = Field(
        default_factory=list,
        description=(
            "Anchors (content index, source offset) for content rewritten from the "
            "source; empty when content is the source slice at start_offset."
        ),
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_span(self) -> "Section":
        if self.end_offset < self.start_offset:
            raise ValueError(
                f"end_offset ({self.end_offset}) precedes start_offset ({self.start_offset})"
            )
        return self

    def source_span(self, start: int, end: int) -> tuple[int, int]:
        """Map the ``[start, end)`` span of ``content`` to source offsets."""
        if not self.content_offsets:
            return self.start_offset + start, self.start_offset + end
        first = self._source_offset(start)
        last = self._source_offset(end - 1) + 1 if end > start else first
        return first, last

    def _source_offset(self, position: int) -> int:
        keys = [index for index, _ in self.content_offsets]
        anchor = max(bisect_right(keys, position) - 1, 0)
        index, offset = self.content_offsets[anchor]
        return offset + position - index

    def text_for_chunking(self) -> str:
        """Return the text this section contributes to chunking.

        Images contribute their alternative text, or nothing when none is
        known.  Every other section type contributes its stripped content.
        """
        if self.section_type == SectionType.IMAGE:
            alt = (self.alternative_text or "").strip()
            return f"[Image: {alt}]" if alt else ""
        return self.content.strip()


class Document(BaseModel):
    """A parsed source document.

    ``document_id`` is the source path relative to the ingestion root in
    POSIX form, so re-ingesting the same file always targets the same
    stored records.
    """

    model_config = ConfigDict(validate_assignment=True)

    document_id: str = Field(min_length=1, description="Stable identifier of the source.")
    source_path: str = Field(default="", description="Filesystem path the document was read from.")
    sections: list[Section] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_section_order(self) -> "Document":
        previous = 0
        for index, section in enumerate(self.sections):
            if section.start_offset < previous:
                raise ValueError(
                    f"section {index} starts at {section.start_offset}, "
                    f"before the previous section ({previous})"
                )
            previous = section.start_offset
        return self

    @property
    def is_empty(self) -> bool:
        """``True`` when no section contributes any text to chunking."""
        return not any(section.text_for_chunking() for section in self.sections)
