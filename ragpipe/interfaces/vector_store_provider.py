"""Abstract base class for vector-store service providers.

Defines the contract for storing embedded chunks and running
nearest-neighbour search over them.  Collections are addressed by name so
one store can hold several independent corpora.  Writes are upserts keyed
by record id; ``get_record_ids`` and ``delete`` let the writer drop records
a re-chunked document no longer produces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragpipe.models.rag import SearchHit, VectorRecord


# Concrete implementation: ChromaDBProvider (ragpipe/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for vector-store services used by the writer and retriever.

    All methods that touch storage are async so network-backed stores can be
    plugged in without blocking the event loop.  Failures raise
    :class:`~ragpipe.utils.errors.StoreError`.
    """

    @abstractmethod
    async def ensure_collection(self, name: str, dimension: int) -> None:
        """Create collection *name* if missing; verify *dimension* if present.

        Raises
        ------
        ragpipe.utils.errors.StoreError
            If the collection exists with a different dimension.
        """

    @abstractmethod
    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        """Insert or overwrite *records*, keyed by ``record.id``.

        Returns
        -------
        int
            Number of records written.
        """

    @abstractmethod
    async def search(
        self,
        collection: str,
        query_vector: list[float],
        top_k: int,
    ) -> list[SearchHit]:
        """Return up to *top_k* records closest to *query_vector*.

        Results are ordered by cosine similarity, highest first.  An empty
        or missing collection yields an empty list.
        """

    @abstractmethod
    async def get_record_ids(self, collection: str, document_id: str) -> set[str]:
        """Return ids of all records stored for *document_id*."""

    @abstractmethod
    async def delete(self, collection: str, ids: list[str]) -> int:
        """Delete records by id; returns the number of ids requested."""

    @abstractmethod
    async def count(self, collection: str, document_id: str | None = None) -> int:
        """Return the number of records, optionally for one document only."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is reachable."""
