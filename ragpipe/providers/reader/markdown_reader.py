"""Markdown reader.

Parses the block structure of a Markdown file line by line into typed
sections:

* ATX headings (``# Title`` .. ``###### Title``) -> HEADING with ``level``
* fenced code blocks (````` or ``~~~``) -> CODE
* pipe tables (lines starting with ``|``) -> TABLE
* a line holding only an image (``![alt](src)``) -> IMAGE with alt text
* everything else, grouped by blank lines -> TEXT

Inline markup inside paragraphs is reduced to its visible text (links keep
their label, inline images their alt text).  YAML front matter delimited
by ``---`` lines is parsed with PyYAML into document metadata.

An unterminated code fence or unparseable front matter is treated as a
malformed document and raises :class:`~ragpipe.utils.errors.ReadError`.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from ragpipe.models.document import Section, SectionType
from ragpipe.providers.reader.base import BaseFileReader
from ragpipe.utils.errors import ReadError

_HEADING = re.compile(r"^(#{1,6})[ \t]+(.*?)[ \t]*#*[ \t]*$")
_FENCE = re.compile(r"^[ ]{0,3}(`{3,}|~{3,})(.*)$")
_IMAGE_LINE = re.compile(r"^!\[(?P<alt>[^\]]*)\]\((?P<src>[^)\s]+)(?:\s+\"[^\"]*\")?\)$")
_INLINE_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_INLINE_LINK = re.compile(r"(?<!!)\[([^\]]+)\]\([^)]*\)")
_BLOCKQUOTE = re.compile(r"^[ ]{0,3}>[ ]?")


class MarkdownReader(BaseFileReader):
    """Block-level Markdown parser producing ordered, offset-annotated sections."""

    format_name = "markdown"

    @property
    def supported_suffixes(self) -> frozenset[str]:
        return frozenset({".md", ".markdown"})

    def _parse(self, text: str, path: Path) -> tuple[list[Section], dict[str, Any]]:
        metadata, body_start = self._front_matter(text, path)
        lines = _lines_with_offsets(text, body_start)

        sections: list[Section] = []
        # Pending paragraph or table: (type, [(line, start, end), ...]).
        block: list[tuple[str, int, int]] = []
        block_type: SectionType | None = None

        def flush() -> None:
            nonlocal block, block_type
            if block and block_type is not None:
                sections.append(_block_section(block_type, block))
            block = []
            block_type = None

        i = 0
        while i < len(lines):
            line, start, end = lines[i]
            stripped = line.strip()

            fence = _FENCE.match(line)
            if fence:
                flush()
                i = self._consume_fence(lines, i, fence.group(1), sections, path)
                continue

            if not stripped:
                flush()
                i += 1
                continue

            heading = _HEADING.match(stripped)
            if heading:
                flush()
                sections.append(
                    Section(
                        section_type=SectionType.HEADING,
                        content=heading.group(2),
                        start_offset=start,
                        end_offset=end,
                        level=len(heading.group(1)),
                    )
                )
                i += 1
                continue

            image = _IMAGE_LINE.match(stripped)
            if image:
                flush()
                sections.append(
                    Section(
                        section_type=SectionType.IMAGE,
                        content=image.group("src"),
                        start_offset=start,
                        end_offset=end,
                        alternative_text=image.group("alt").strip() or None,
                    )
                )
                i += 1
                continue

            line_type = SectionType.TABLE if stripped.startswith("|") else SectionType.TEXT
            if block_type is not None and block_type != line_type:
                flush()
            block_type = line_type
            block.append((line, start, end))
            i += 1

        flush()

        if "title" not in metadata:
            for section in sections:
                if section.section_type == SectionType.HEADING:
                    metadata["title"] = section.content
                    break
        return sections, metadata

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consume_fence(
        self,
        lines: list[tuple[str, int, int]],
        i: int,
        marker: str,
        sections: list[Section],
        path: Path,
    ) -> int:
        """Append the code block opened at line *i*; return the index after it."""
        _, start, _ = lines[i]
        body: list[str] = []
        j = i + 1
        while j < len(lines):
            line, _, end = lines[j]
            if line.strip().startswith(marker[0] * len(marker)) and not line.strip().strip(
                marker[0]
            ):
                content = "\n".join(body)
                if content.strip():
                    sections.append(
                        Section(
                            section_type=SectionType.CODE,
                            content=content,
                            start_offset=start,
                            end_offset=end,
                        )
                    )
                return j + 1
            body.append(line)
            j += 1
        raise ReadError(
            message=f"'{path}' has an unterminated code fence opened at offset {start}",
            provider_name=self.format_name,
        )

    def _front_matter(self, text: str, path: Path) -> tuple[dict[str, Any], int]:
        """Parse leading ``---`` YAML front matter; return metadata and body offset."""
        if not text.startswith("---\n"):
            return {}, 0
        close = text.find("\n---", 3)
        if close == -1:
            return {}, 0
        after = text.find("\n", close + 4)
        body_start = len(text) if after == -1 else after + 1
        try:
            data = yaml.safe_load(text[4:close]) or {}
        except yaml.YAMLError as exc:
            raise ReadError(
                message=f"'{path}' has malformed front matter: {exc}",
                provider_name=self.format_name,
            ) from exc
        if not isinstance(data, dict):
            raise ReadError(
                message=f"'{path}' front matter must be a mapping",
                provider_name=self.format_name,
            )
        # Only scalar values survive into vector-store metadata later on.
        metadata = {
            str(k): v for k, v in data.items() if isinstance(v, (str, int, float, bool))
        }
        return metadata, body_start


def _lines_with_offsets(text: str, begin: int) -> list[tuple[str, int, int]]:
    """Return ``(line, start, end)`` for each line of ``text[begin:]``; *end* excludes the newline."""
    result: list[tuple[str, int, int]] = []
    offset = begin
    for raw in text[begin:].split("\n"):
        result.append((raw, offset, offset + len(raw)))
        offset += len(raw) + 1
    return result


def _block_section(section_type: SectionType, block: list[tuple[str, int, int]]) -> Section:
    start = block[0][1]
    end = block[-1][2]
    if section_type == SectionType.TABLE:
        content = "\n".join(line.strip() for line, _, _ in block)
        return Section(
            section_type=section_type, content=content.strip(), start_offset=start, end_offset=end
        )

    # Each content character keeps the source offset it came from.
    text = ""
    positions: list[int] = []
    for line, line_start, line_end in block:
        quote = _BLOCKQUOTE.match(line)
        skip = quote.end() if quote else 0
        piece, piece_positions = _strip_inline(
            line[skip:], list(range(line_start + skip, line_end))
        )
        if positions:
            text += "\n"
            positions.append(line_start - 1)
        text += piece
        positions.extend(piece_positions)

    content, positions = _strip_mapped(text, positions)
    return Section(
        section_type=section_type,
        content=content,
        start_offset=start,
        end_offset=end,
        content_offsets=_anchors(positions),
    )


def _strip_inline(line: str, positions: list[int]) -> tuple[str, list[int]]:
    line, positions = _keep_group(_INLINE_IMAGE, line, positions)
    line, positions = _keep_group(_INLINE_LINK, line, positions)
    return _strip_mapped(line, positions)


def _keep_group(pattern: re.Pattern[str], text: str, positions: list[int]) -> tuple[str, list[int]]:
    """Replace each match of *pattern* by its first group, carrying positions along."""
    parts: list[str] = []
    kept: list[int] = []
    last = 0
    for match in pattern.finditer(text):
        parts.append(text[last : match.start()])
        kept.extend(positions[last : match.start()])
        parts.append(match.group(1))
        kept.extend(positions[match.start(1) : match.end(1)])
        last = match.end()
    parts.append(text[last:])
    kept.extend(positions[last:])
    return "".join(parts), kept


def _strip_mapped(text: str, positions: list[int]) -> tuple[str, list[int]]:
    lead = len(text) - len(text.lstrip())
    stripped = text.strip()
    return stripped, positions[lead : lead + len(stripped)]


def _anchors(positions: list[int]) -> list[tuple[int, int]]:
    """Compress per-character offsets into the start of each contiguous run."""
    return [
        (index, offset)
        for index, offset in enumerate(positions)
        if index == 0 or offset != positions[index - 1] + 1
    ]
