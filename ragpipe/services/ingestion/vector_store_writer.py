"""Embed chunks and persist them to a vector collection.

The writer is the only component that mutates the collection during
ingestion.  Writes are upserts keyed by the stable chunk id, so
re-ingesting an unchanged document overwrites its records instead of
duplicating them.  With incremental ingestion enabled, records left over
from an earlier, longer version of a document are deleted after the new
ones are written.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import structlog

from ragpipe.models.rag import MetadataValue, VectorRecord
from ragpipe.utils.errors import EmbeddingError, StoreError

if TYPE_CHECKING:
    from ragpipe.interfaces.embedding_provider import IEmbeddingProvider
    from ragpipe.interfaces.vector_store_provider import IVectorStoreProvider
    from ragpipe.models.rag import Chunk

logger = structlog.get_logger(logger_name=__name__)


class VectorStoreWriter:
    """Writes a document's chunks into one named collection.

    Parameters
    ----------
    vector_store:
        Backend the records are upserted into.
    embedding_provider:
        Embeds chunk text; its dimension must equal *dimension*.
    collection_name:
        Target collection, created lazily on first write.
    dimension:
        Expected embedding length; any mismatch fails the write.
    incremental_ingestion:
        Delete a document's stale records after writing its new ones.
    """

    def __init__(
        self,
        vector_store: IVectorStoreProvider,
        embedding_provider: IEmbeddingProvider,
        collection_name: str = "data",
        dimension: int = 1536,
        incremental_ingestion: bool = True,
    ) -> None:
        self._store = vector_store
        self._embedding_provider = embedding_provider
        self._collection = collection_name
        self._dimension = dimension
        self._incremental = incremental_ingestion
        # One writer at a time per collection.
        self._lock = asyncio.Lock()
        self._collection_ready = False

    @property
    def collection_name(self) -> str:
        return self._collection

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure_collection(self) -> None:
        """Create the collection (or validate its dimension) once per writer."""
        if self._collection_ready:
            return
        await self._store.ensure_collection(self._collection, self._dimension)
        self._collection_ready = True

    async def write(
        self,
        document_id: str,
        chunks: list[Chunk],
        source_path: str = "",
    ) -> int:
        """Embed and upsert *chunks* for *document_id*.

        Returns
        -------
        int
            Number of records written.

        Raises
        ------
        StoreError
            If embedding fails, a vector has the wrong dimension, or the
            backend rejects the write.
        """
        async with self._lock:
            await self.ensure_collection()

            records = await self._build_records(document_id, chunks, source_path)
            written = await self._store.upsert(self._collection, records) if records else 0

            removed = 0
            if self._incremental:
                removed = await self._remove_stale(document_id, {r.id for r in records})

            logger.info(
                "document_written",
                document_id=document_id,
                collection=self._collection,
                records=written,
                stale_removed=removed,
            )
            return written

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _build_records(
        self, document_id: str, chunks: list[Chunk], source_path: str
    ) -> list[VectorRecord]:
        if not chunks:
            return []
        try:
            embeddings = await self._embedding_provider.embed([c.text for c in chunks])
        except EmbeddingError as exc:
            raise StoreError(
                message=f"Could not embed chunks of '{document_id}': {exc}",
                provider_name=exc.provider_name,
            ) from exc

        if len(embeddings) != len(chunks):
            raise StoreError(
                message=(
                    f"Embedding provider returned {len(embeddings)} vectors "
                    f"for {len(chunks)} chunks of '{document_id}'"
                ),
                provider_name=self._embedding_provider.get_provider_name(),
            )

        records: list[VectorRecord] = []
        for chunk, embedding in zip(chunks, embeddings):
            if len(embedding) != self._dimension:
                raise StoreError(
                    message=(
                        f"Embedding for chunk {chunk.index} of '{document_id}' has "
                        f"{len(embedding)} dimensions, collection '{self._collection}' "
                        f"expects {self._dimension}"
                    ),
                    provider_name=self._embedding_provider.get_provider_name(),
                )
            records.append(
                VectorRecord(
                    id=chunk.chunk_id,
                    text=chunk.text,
                    embedding=list(embedding),
                    metadata=self._chunk_to_metadata(chunk, source_path),
                )
            )
        return records

    async def _remove_stale(self, document_id: str, keep: set[str]) -> int:
        existing = await self._store.get_record_ids(self._collection, document_id)
        stale = sorted(existing - keep)
        if not stale:
            return 0
        return await self._store.delete(self._collection, stale)

    @staticmethod
    def _chunk_to_metadata(chunk: Chunk, source_path: str) -> dict[str, MetadataValue]:
        """Flatten a chunk into scalar metadata (vector stores reject nested values)."""
        meta: dict[str, MetadataValue] = {
            "document_id": chunk.document_id,
            "chunk_index": chunk.index,
            "token_count": chunk.token_count,
            "content": chunk.text,
            "oversized": chunk.oversized,
            "sources": json.dumps([s.model_dump() for s in chunk.sources]),
        }
        if source_path:
            meta["source_path"] = source_path
        for key, value in chunk.metadata.items():
            if value is not None and key not in meta:
                meta[key] = value
        return meta
