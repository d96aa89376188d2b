"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Collections use cosine distance; scores returned to callers are cosine
similarity (``1 - distance``).  Fully local, no external service required.

The embedding dimension a collection was created with is recorded in its
metadata, so a later run with a different embedding model fails loudly
instead of silently mixing incompatible vectors.
"""

from __future__ import annotations

import os
from typing import Any

# Disable ChromaDB telemetry before importing chromadb.  The bundled
# PostHog client is switched off directly as well as through Settings,
# because some chromadb/posthog version pairs ignore the env var alone.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog
from chromadb.errors import ChromaError

from ragpipe.interfaces.vector_store_provider import IVectorStoreProvider
from ragpipe.models.rag import SearchHit, VectorRecord
from ragpipe.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "chromadb"
_DIMENSION_KEY = "dimension"
_UPSERT_BATCH_SIZE = 500


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that is never meant to run.

    ragpipe always passes pre-computed vectors, so this only stops ChromaDB
    from downloading its default ONNX model when a collection is opened.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "ragpipe uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    @staticmethod
    def name() -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"

    def get_config(self) -> dict[str, Any]:
        return {}

    @staticmethod
    def build_from_config(config: dict[str, Any]) -> "_NoopEmbeddingFunction":
        return _NoopEmbeddingFunction()


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence."""

    def __init__(self, persist_directory: str = "./data/chromadb") -> None:
        self._persist_directory = persist_directory
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collections: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def ensure_collection(self, name: str, dimension: int) -> None:
        try:
            collection = self._open_collection(name)
            if collection is None:
                collection = self._client.create_collection(
                    name=name,
                    metadata={"hnsw:space": "cosine", _DIMENSION_KEY: dimension},
                    embedding_function=_NoopEmbeddingFunction(),
                )
                logger.info("chromadb_collection_created", collection=name, dimension=dimension)
        except ChromaError as exc:
            raise StoreError(
                message=f"Cannot open collection '{name}': {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        stored = self._stored_dimension(collection)
        if stored is not None and stored != dimension:
            logger.error(
                "embedding_dimension_mismatch",
                collection=name,
                stored_dim=stored,
                expected_dim=dimension,
            )
            raise StoreError(
                message=(
                    f"Collection '{name}' holds {stored}-dim vectors but "
                    f"{dimension}-dim vectors were requested. Use the embedding "
                    f"model the collection was built with, or a new collection name."
                ),
                provider_name=_PROVIDER_NAME,
            )
        self._collections[name] = collection

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        """Upsert *records* in batches to keep peak memory bounded."""
        if not records:
            return 0
        target = self._require_collection(collection)
        total = 0
        try:
            for start in range(0, len(records), _UPSERT_BATCH_SIZE):
                batch = records[start : start + _UPSERT_BATCH_SIZE]
                target.upsert(
                    ids=[r.id for r in batch],
                    embeddings=[r.embedding for r in batch],
                    documents=[r.text for r in batch],
                    metadatas=[dict(r.metadata) for r in batch],
                )
                total += len(batch)
        except (ChromaError, ValueError) as exc:
            raise StoreError(
                message=f"Upsert into '{collection}' failed after {total} records: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        return total

    async def search(
        self,
        collection: str,
        query_vector: list[float],
        top_k: int,
    ) -> list[SearchHit]:
        target = self._lookup_collection(collection)
        if target is None:
            return []
        try:
            available = target.count()
            if available == 0:
                return []
            results = target.query(
                query_embeddings=[query_vector],
                n_results=min(top_k, available),
                include=["documents", "metadatas", "distances"],
            )
        except (ChromaError, ValueError) as exc:
            raise StoreError(
                message=f"Search in '{collection}' failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        ids = results["ids"][0] if results.get("ids") else []
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)

        hits: list[SearchHit] = []
        for record_id, text, meta, distance in zip(ids, documents, metadatas, distances):
            hits.append(
                SearchHit(
                    chunk_id=record_id,
                    text=text or "",
                    score=1.0 - float(distance),
                    metadata=dict(meta or {}),
                )
            )
        return hits

    async def get_record_ids(self, collection: str, document_id: str) -> set[str]:
        target = self._lookup_collection(collection)
        if target is None:
            return set()
        try:
            result = target.get(where={"document_id": document_id}, include=[])
        except (ChromaError, ValueError) as exc:
            raise StoreError(
                message=f"Listing records of '{document_id}' failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        return set(result.get("ids", []))

    async def delete(self, collection: str, ids: list[str]) -> int:
        if not ids:
            return 0
        target = self._require_collection(collection)
        try:
            target.delete(ids=list(ids))
        except (ChromaError, ValueError) as exc:
            raise StoreError(
                message=f"Delete from '{collection}' failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        logger.debug("chromadb_records_deleted", collection=collection, count=len(ids))
        return len(ids)

    async def count(self, collection: str, document_id: str | None = None) -> int:
        if document_id is not None:
            return len(await self.get_record_ids(collection, document_id))
        target = self._lookup_collection(collection)
        if target is None:
            return 0
        try:
            return target.count()
        except ChromaError as exc:
            raise StoreError(
                message=f"Counting '{collection}' failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    def is_available(self) -> bool:
        """Return ``True`` if the local ChromaDB client responds."""
        try:
            self._client.heartbeat()
            return True
        except Exception:  # noqa: BLE001
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_collection(self, name: str) -> Any | None:
        """Return the persisted collection *name*, or ``None`` if it does not exist."""
        try:
            return self._client.get_collection(
                name=name, embedding_function=_NoopEmbeddingFunction()
            )
        except ValueError as exc:
            # Older chromadb raises ValueError both for "does not exist" and
            # for an embedding-function conflict with the persisted config.
            if "does not exist" in str(exc):
                return None
            return self._client.get_collection(name=name)
        except ChromaError as exc:
            if "does not exist" in str(exc) or type(exc).__name__ in (
                "NotFoundError",
                "InvalidCollectionException",
            ):
                return None
            raise

    def _lookup_collection(self, name: str) -> Any | None:
        if name in self._collections:
            return self._collections[name]
        try:
            collection = self._open_collection(name)
        except ChromaError as exc:
            raise StoreError(
                message=f"Cannot open collection '{name}': {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        if collection is not None:
            self._collections[name] = collection
        return collection

    def _require_collection(self, name: str) -> Any:
        collection = self._lookup_collection(name)
        if collection is None:
            raise StoreError(
                message=f"Collection '{name}' does not exist; call ensure_collection first",
                provider_name=_PROVIDER_NAME,
            )
        return collection

    @staticmethod
    def _stored_dimension(collection: Any) -> int | None:
        """Return the collection's vector dimension from metadata or a stored vector."""
        metadata = collection.metadata or {}
        if _DIMENSION_KEY in metadata:
            return int(metadata[_DIMENSION_KEY])
        if collection.count() == 0:
            return None
        sample = collection.peek(limit=1)
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])
