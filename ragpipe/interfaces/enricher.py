"""Abstract base classes for document-level and chunk-level enrichers.

Enrichers are best-effort transforms.  They may raise freely; the pipeline
wraps every call at an explicit boundary
(:func:`ragpipe.services.ingestion.enrichment.try_enrich`) and passes the
input through unchanged when one fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragpipe.models.document import Document
from ragpipe.models.rag import Chunk


class IDocumentEnricher(ABC):
    """Transforms a whole document before chunking (e.g. image alt text)."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def enrich(self, document: Document) -> Document:
        """Return the enriched document.

        Implementations receive a private copy and may mutate it in place.
        """


class IChunkEnricher(ABC):
    """Transforms one chunk after chunking (e.g. summary, keywords)."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def enrich(self, chunk: Chunk) -> Chunk:
        """Return a new chunk derived from *chunk* (chunks are frozen)."""
