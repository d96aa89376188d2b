"""Shared file handling for the local-file readers.

:class:`BaseFileReader` owns everything that is not format-specific:
resolving the document id, reading bytes, strict UTF-8 decoding and the
file-level metadata every document carries.  Subclasses only implement
:meth:`BaseFileReader._parse`.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from ragpipe.interfaces.document_reader import IDocumentReader
from ragpipe.models.document import Document, Section
from ragpipe.utils.errors import ReadError

logger = structlog.get_logger(logger_name=__name__)


class BaseFileReader(IDocumentReader):
    """Template for readers of UTF-8 text files."""

    #: Short name used as ``provider_name`` in errors.
    format_name: str = "file"

    def read(self, path: str | Path, document_id: str | None = None) -> Document:
        path = Path(path)
        document_id = document_id or path.as_posix()

        try:
            raw = path.read_bytes()
            stat = path.stat()
        except OSError as exc:
            raise ReadError(
                message=f"Cannot read '{path}': {exc.strerror or exc}",
                provider_name=self.format_name,
            ) from exc

        try:
            # utf-8-sig drops a leading byte-order mark if present.
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ReadError(
                message=f"'{path}' is not valid UTF-8 (byte {exc.start})",
                provider_name=self.format_name,
            ) from exc

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        metadata: dict[str, Any] = {
            "source_path": str(path),
            "file_name": path.name,
            "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            "size_bytes": stat.st_size,
        }

        sections, parsed_metadata = self._parse(text, path)
        metadata.update(parsed_metadata)

        try:
            document = Document(
                document_id=document_id,
                source_path=str(path),
                sections=sections,
                metadata=metadata,
            )
        except ValueError as exc:
            raise ReadError(
                message=f"'{path}' produced an invalid document: {exc}",
                provider_name=self.format_name,
            ) from exc

        logger.debug(
            "document_read",
            document_id=document_id,
            format=self.format_name,
            sections=len(sections),
        )
        return document

    @abstractmethod
    def _parse(self, text: str, path: Path) -> tuple[list[Section], dict[str, Any]]:
        """Return the sections of *text* and any format-level metadata.

        Raise :class:`ReadError` for structurally malformed input.
        """
