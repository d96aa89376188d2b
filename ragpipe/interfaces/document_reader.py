"""Abstract base class for document readers.

A reader turns one source file into a :class:`~ragpipe.models.document.Document`
of ordered, typed sections.  Reading is synchronous: files are local and
small, and the orchestrator runs the call in a worker thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ragpipe.models.document import Document


# Concrete implementations: MarkdownReader, PlainTextReader (ragpipe/providers/reader/)
class IDocumentReader(ABC):
    """Contract for source-file parsers."""

    @abstractmethod
    def read(self, path: str | Path, document_id: str | None = None) -> Document:
        """Parse *path* into a Document.

        Parameters
        ----------
        path:
            File to read.
        document_id:
            Identifier to give the document.  Defaults to the path as given,
            in POSIX form.

        Raises
        ------
        ragpipe.utils.errors.ReadError
            If the file is missing, unreadable, not valid UTF-8, or
            structurally malformed.
        """

    @property
    @abstractmethod
    def supported_suffixes(self) -> frozenset[str]:
        """File suffixes (lower-case, with dot) this reader understands."""
