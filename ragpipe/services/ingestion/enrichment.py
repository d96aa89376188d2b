"""The enrichment boundary: run best-effort transforms without letting them fail a document.

Every enricher call goes through :func:`try_enrich`, which turns any
exception into an :class:`EnrichmentOutcome` carrying an
:class:`~ragpipe.utils.errors.EnrichmentError`.  The pipeline then calls
:func:`unwrap_or_passthrough`, which logs the failure with the owning
document or chunk id and hands back the original, unmodified input.

Document enrichers run on a deep copy of the document, so an enricher that
fails half-way through mutating sections cannot leak a partial edit.

``asyncio.CancelledError`` is a ``BaseException`` and is never caught here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Sequence, TypeVar

import structlog

from ragpipe.utils.concurrency import throttled_gather
from ragpipe.utils.errors import EnrichmentError

if TYPE_CHECKING:
    from ragpipe.interfaces.enricher import IChunkEnricher, IDocumentEnricher
    from ragpipe.models.document import Document
    from ragpipe.models.rag import Chunk

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")


@dataclass(frozen=True)
class EnrichmentOutcome(Generic[_T]):
    """Result of one enricher call: either a value or an error, never both."""

    enricher: str
    subject_id: str
    value: _T | None = None
    error: EnrichmentError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def try_enrich(
    enricher: IDocumentEnricher | IChunkEnricher,
    item: _T,
    subject_id: str,
) -> EnrichmentOutcome[_T]:
    """Invoke *enricher* on *item* and capture any failure as an outcome."""
    try:
        value = await enricher.enrich(item)  # type: ignore[arg-type]
    except EnrichmentError as exc:
        return EnrichmentOutcome(enricher=enricher.name, subject_id=subject_id, error=exc)
    except Exception as exc:
        error = EnrichmentError(message=f"{enricher.name} raised {type(exc).__name__}: {exc}")
        error.__cause__ = exc
        return EnrichmentOutcome(enricher=enricher.name, subject_id=subject_id, error=error)

    if value is None:
        return EnrichmentOutcome(
            enricher=enricher.name,
            subject_id=subject_id,
            error=EnrichmentError(message=f"{enricher.name} returned nothing"),
        )
    return EnrichmentOutcome(enricher=enricher.name, subject_id=subject_id, value=value)


def unwrap_or_passthrough(outcome: EnrichmentOutcome[_T], original: _T) -> _T:
    """Return the enriched value, or *original* after logging the failure."""
    if outcome.ok and outcome.value is not None:
        return outcome.value
    logger.warning(
        "enrichment_failed",
        enricher=outcome.enricher,
        subject_id=outcome.subject_id,
        error=str(outcome.error),
        msg="Passing input through unchanged.",
    )
    return original


# ---------------------------------------------------------------------------
# Stage runners used by the orchestrator
# ---------------------------------------------------------------------------


async def apply_document_enrichers(
    document: Document,
    enrichers: Sequence[IDocumentEnricher],
) -> Document:
    """Run every document enricher in registration order."""
    for enricher in enrichers:
        working_copy = document.model_copy(deep=True)
        outcome = await try_enrich(enricher, working_copy, document.document_id)
        document = unwrap_or_passthrough(outcome, document)
    return document


async def _enrich_chunk(chunk: Chunk, enrichers: Sequence[IChunkEnricher]) -> Chunk:
    for enricher in enrichers:
        outcome = await try_enrich(enricher, chunk, chunk.chunk_id)
        chunk = unwrap_or_passthrough(outcome, chunk)
    return chunk


async def apply_chunk_enrichers(
    chunks: list[Chunk],
    enrichers: Sequence[IChunkEnricher],
    max_concurrency: int = 5,
) -> list[Chunk]:
    """Pass every chunk through every chunk enricher, several chunks at a time.

    Each chunk sees the enrichers in registration order.  The returned list
    is in the same order as *chunks*.
    """
    if not chunks or not enrichers:
        return list(chunks)
    results = await throttled_gather(
        [_enrich_chunk(chunk, enrichers) for chunk in chunks],
        limit=max_concurrency,
    )
    return list(results)  # type: ignore[arg-type]
