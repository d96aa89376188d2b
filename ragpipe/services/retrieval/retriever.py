"""Top-K similarity search over an ingested collection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ragpipe.utils.errors import EmbeddingError, StoreError

if TYPE_CHECKING:
    from ragpipe.interfaces.embedding_provider import IEmbeddingProvider
    from ragpipe.interfaces.vector_store_provider import IVectorStoreProvider
    from ragpipe.models.rag import SearchHit

logger = structlog.get_logger(logger_name=__name__)

# Extra candidates fetched so ties at the cut-off can be broken deterministically.
_OVERFETCH_FACTOR = 2


class Retriever:
    """Embeds a query and returns the nearest stored chunks.

    Results are ordered by score (highest first); equal scores are ordered
    by document id, then chunk index, then chunk id, so the same query
    against the same collection always returns the same list.

    Queries read whatever the collection holds at that moment; a query
    running alongside ingestion may see a document's records only
    partially written.
    """

    def __init__(
        self,
        vector_store: IVectorStoreProvider,
        embedding_provider: IEmbeddingProvider,
        collection_name: str = "data",
        default_top_k: int = 3,
    ) -> None:
        _validate_top_k(default_top_k)
        self._store = vector_store
        self._embedding_provider = embedding_provider
        self._collection = collection_name
        self._default_top_k = default_top_k

    async def search(self, query: str, top_k: int | None = None) -> list[SearchHit]:
        """Return up to *top_k* chunks most similar to *query*.

        Raises
        ------
        ValueError
            If *query* is blank or *top_k* is not a positive integer.
        StoreError
            If embedding the query or searching the store fails.
        """
        if top_k is None:
            top_k = self._default_top_k
        _validate_top_k(top_k)
        if not query or not query.strip():
            raise ValueError("query must not be empty")

        try:
            vector = await self._embedding_provider.embed_single(query)
        except EmbeddingError as exc:
            raise StoreError(
                message=f"Could not embed query: {exc}",
                provider_name=exc.provider_name,
            ) from exc

        candidates = await self._store.search(
            self._collection, vector, top_k * _OVERFETCH_FACTOR
        )
        ranked = sorted(
            candidates,
            key=lambda h: (-h.score, h.document_id, h.chunk_index, h.chunk_id),
        )[:top_k]

        logger.info(
            "retrieval_complete",
            collection=self._collection,
            top_k=top_k,
            candidates=len(candidates),
            returned=len(ranked),
        )
        return ranked


def _validate_top_k(top_k: object) -> None:
    # bool is an int subclass; True is not a meaningful result count.
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
        raise ValueError(f"top_k must be a positive integer, got {top_k!r}")
