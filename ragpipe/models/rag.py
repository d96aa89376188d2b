"""Chunk, vector-record and search-hit models.

These models carry data from the semantic chunker through enrichment and
embedding into the vector store, and back out again at query time.  All of
them are frozen: enrichers derive new chunks with ``model_copy(update=...)``
instead of mutating the one they were handed.

Flow for one document::

    Document --SemanticChunker--> [Chunk] --ChunkEnrichers--> [Chunk]
             --VectorStoreWriter--> [VectorRecord] --> collection
    query --Retriever--> [SearchHit]
"""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MetadataValue = str | int | float | bool


def make_chunk_id(document_id: str, index: int) -> str:
    """Return the stable identifier of chunk *index* of *document_id*.

    Re-chunking the same document yields the same ids, which is what lets
    re-ingestion overwrite records in place instead of duplicating them.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{document_id}#{index}"))


# ---------------------------------------------------------------------------
# Chunk -- the retrieval unit produced by the semantic chunker.
# ---------------------------------------------------------------------------
class ChunkSource(BaseModel):
    """Span of one source section that a chunk draws its text from."""

    model_config = ConfigDict(frozen=True)

    section_index: int = Field(ge=0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)


class Chunk(BaseModel):
    """A contiguous, semantically coherent passage of one document.

    ``token_count`` never exceeds the chunker's budget unless ``oversized``
    is set, which marks a single sentence or block that alone was larger
    than the budget and was kept whole.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Stable unique identifier (uuid5 of document id and index).")
    document_id: str = Field(description="Identifier of the owning document.")
    index: int = Field(ge=0, description="Position of the chunk within its document.")
    text: str = Field(description="The chunk's textual content.")
    token_count: int = Field(default=0, ge=0, description="Exact token count of ``text``.")
    sources: list[ChunkSource] = Field(
        default_factory=list,
        description="Per-section provenance spans, in document order.",
    )
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Enrichment-derived fields such as ``summary`` and ``keywords``.",
    )
    oversized: bool = Field(
        default=False,
        description="True when a single atomic unit exceeded the token budget.",
    )


# ---------------------------------------------------------------------------
# VectorRecord -- what actually lands in the vector collection.
# ---------------------------------------------------------------------------
class VectorRecord(BaseModel):
    """An embedded chunk ready for upsert; ``id`` equals the chunk id."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    embedding: list[float]
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# SearchHit -- one nearest-neighbour result.
# ---------------------------------------------------------------------------
class SearchHit(BaseModel):
    """A stored chunk returned by a similarity search.

    ``score`` is cosine similarity, so higher means more similar.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    text: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def document_id(self) -> str:
        return str(self.metadata.get("document_id", ""))

    @property
    def chunk_index(self) -> int:
        try:
            return int(self.metadata.get("chunk_index", 0))
        except (TypeError, ValueError):
            return 0
