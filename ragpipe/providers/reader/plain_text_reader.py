"""Reader for plain ``.txt`` files: one text section per paragraph."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from ragpipe.models.document import Section, SectionType
from ragpipe.providers.reader.base import BaseFileReader

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


class PlainTextReader(BaseFileReader):
    """Splits text on blank lines; every paragraph becomes a TEXT section."""

    format_name = "text"

    @property
    def supported_suffixes(self) -> frozenset[str]:
        return frozenset({".txt", ".text"})

    def _parse(self, text: str, path: Path) -> tuple[list[Section], dict[str, Any]]:
        sections: list[Section] = []
        last = 0
        for match in _PARAGRAPH_BREAK.finditer(text):
            self._append(sections, text, last, match.start())
            last = match.end()
        self._append(sections, text, last, len(text))
        return sections, {}

    @staticmethod
    def _append(sections: list[Section], text: str, start: int, end: int) -> None:
        raw = text[start:end]
        content = raw.strip()
        if not content:
            return
        begin = start + (len(raw) - len(raw.lstrip()))
        sections.append(
            Section(
                section_type=SectionType.TEXT,
                content=content,
                start_offset=begin,
                end_offset=begin + len(content),
            )
        )
