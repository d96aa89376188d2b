"""Pipeline stage, result and configuration models.

:class:`DocumentStage` is the per-document state machine the orchestrator
drives.  :class:`PipelineResult` is the terminal outcome yielded for every
document, successful or not.  :class:`PipelineConfig` holds the tunables
of one ingestion run with explicit, validated defaults.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# DocumentStage -- the state machine for one document.
# ---------------------------------------------------------------------------
class DocumentStage(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Stages a document moves through during ingestion.

        PENDING -> READING -> ENRICHING_DOCUMENT -> CHUNKING ->
        ENRICHING_CHUNKS -> WRITING -> COMPLETED

    Any stage can move to FAILED; the failed result records the stage the
    document was in when it failed.
    """

    PENDING = "pending"
    READING = "reading"
    ENRICHING_DOCUMENT = "enriching_document"
    CHUNKING = "chunking"
    ENRICHING_CHUNKS = "enriching_chunks"
    WRITING = "writing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# PipelineResult -- one per document, never persisted.
# ---------------------------------------------------------------------------
class PipelineResult(BaseModel):
    """Terminal outcome of processing one document.

    ``stage`` is COMPLETED for successes; for failures it is the stage in
    which the error occurred.  ``exception`` keeps the original error for
    programmatic callers and is left out of serialised output.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    document_id: str
    succeeded: bool
    stage: DocumentStage = DocumentStage.COMPLETED
    error: str | None = None
    error_type: str | None = None
    chunks_written: int = Field(default=0, ge=0)
    elapsed_seconds: float = Field(default=0.0, ge=0.0)
    exception: BaseException | None = Field(default=None, exclude=True, repr=False)

    @classmethod
    def success(
        cls, document_id: str, chunks_written: int, elapsed_seconds: float = 0.0
    ) -> "PipelineResult":
        return cls(
            document_id=document_id,
            succeeded=True,
            stage=DocumentStage.COMPLETED,
            chunks_written=chunks_written,
            elapsed_seconds=elapsed_seconds,
        )

    @classmethod
    def failure(
        cls,
        document_id: str,
        stage: DocumentStage,
        exc: BaseException,
        elapsed_seconds: float = 0.0,
    ) -> "PipelineResult":
        return cls(
            document_id=document_id,
            succeeded=False,
            stage=stage,
            error=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            elapsed_seconds=elapsed_seconds,
            exception=exc,
        )


# ---------------------------------------------------------------------------
# PipelineConfig -- tunables of an ingestion run.
# ---------------------------------------------------------------------------
class PipelineConfig(BaseModel):
    """Validated configuration for chunking, storage and retrieval.

    Defaults mirror a GPT-4-tokenised corpus embedded with
    ``text-embedding-3-small`` (1536 dimensions).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_tokens_per_chunk: int = Field(default=2000, gt=0)
    overlap_tokens: int = Field(default=0, ge=0)
    similarity_threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    top_k: int = Field(default=3, gt=0)
    collection_name: str = Field(default="data", min_length=1)
    embedding_dimension: int = Field(default=1536, gt=0)
    max_embedding_retries: int = Field(default=3, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)
    incremental_ingestion: bool = True
    max_concurrent_enrichments: int = Field(default=5, gt=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "PipelineConfig":
        if self.overlap_tokens >= self.max_tokens_per_chunk:
            raise ValueError(
                f"overlap_tokens ({self.overlap_tokens}) must be smaller than "
                f"max_tokens_per_chunk ({self.max_tokens_per_chunk})"
            )
        return self
