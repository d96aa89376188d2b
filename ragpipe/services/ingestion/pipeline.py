"""Orchestrator for the document ingestion pipeline.

Pipeline stages per document:
**read -> enrich(document) -> chunk -> enrich(chunks) -> embed + store**.

:class:`IngestionPipeline` coordinates its collaborators (readers, document
enrichers, semantic chunker, chunk enrichers, vector store writer) without
any of them knowing about each other.  All dependencies are injected via
the constructor, so providers can be swapped without touching this class.

Failure isolation: every document runs inside one ``except Exception``
boundary in :meth:`IngestionPipeline.process_file`.  A read error, a
chunking error or a store error fails *that* document only; the run moves
on and the caller receives a failed :class:`PipelineResult` naming the
stage that failed.  Enricher failures never reach this boundary at all,
they are absorbed by :mod:`ragpipe.services.ingestion.enrichment`.

Cancellation: an optional ``asyncio.Event`` is checked before each
document and between stages.  Once set, no new document starts, and an
in-flight document that has not reached the writing stage is reported as
failed with :class:`PipelineCancelledError` rather than completed.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Iterable, Sequence

import structlog

from ragpipe.models.pipeline import DocumentStage, PipelineResult
from ragpipe.services.ingestion.enrichment import (
    apply_chunk_enrichers,
    apply_document_enrichers,
)
from ragpipe.utils.errors import PipelineCancelledError, ReadError

if TYPE_CHECKING:
    from ragpipe.interfaces.document_reader import IDocumentReader
    from ragpipe.interfaces.enricher import IChunkEnricher, IDocumentEnricher
    from ragpipe.services.ingestion.semantic_chunker import SemanticChunker
    from ragpipe.services.ingestion.vector_store_writer import VectorStoreWriter

logger = structlog.get_logger(logger_name=__name__)


class IngestionPipeline:
    """Runs documents through the ingestion stages one at a time.

    Parameters
    ----------
    readers:
        Readers tried by file suffix; the first reader handles any suffix
        no reader claims.
    chunker:
        Semantic chunker applied to each enriched document.
    writer:
        Embeds and stores the final chunks.
    document_enrichers, chunk_enrichers:
        Best-effort transforms, applied in the given order.
    max_concurrent_enrichments:
        How many chunks of one document may be enriched at once.
    """

    def __init__(
        self,
        readers: Sequence[IDocumentReader],
        chunker: SemanticChunker,
        writer: VectorStoreWriter,
        document_enrichers: Sequence[IDocumentEnricher] = (),
        chunk_enrichers: Sequence[IChunkEnricher] = (),
        max_concurrent_enrichments: int = 5,
    ) -> None:
        if not readers:
            raise ValueError("at least one document reader is required")
        self._readers = list(readers)
        self._chunker = chunker
        self._writer = writer
        self._document_enrichers = list(document_enrichers)
        self._chunk_enrichers = list(chunk_enrichers)
        self._max_concurrent_enrichments = max_concurrent_enrichments

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_directory(
        self,
        directory: str | Path,
        pattern: str = "*.md",
        *,
        recursive: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[PipelineResult]:
        """Ingest every file in *directory* matching *pattern*.

        Files are processed in order of their relative path.  Each result
        is yielded as soon as its document reaches a terminal state.

        Raises
        ------
        ReadError
            If *directory* does not exist or is not a directory.  Raised on
            first iteration, before any result is produced.
        """
        root = Path(directory)
        if not root.is_dir():
            logger.error("ingest_directory_not_found", directory=str(root))
            raise ReadError(message=f"Source directory not found: {root}")

        paths = discover_files(root, pattern, recursive=recursive)
        logger.info(
            "ingestion_run_started",
            directory=str(root),
            pattern=pattern,
            files=len(paths),
        )
        async for result in self.process_files(paths, root=root, cancel_event=cancel_event):
            yield result

    async def process_files(
        self,
        paths: Iterable[str | Path],
        *,
        root: str | Path | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[PipelineResult]:
        """Ingest an explicit list of files, yielding one result per file.

        Document ids are paths relative to *root* when given, otherwise
        the paths as passed.
        """
        path_list = [Path(p) for p in paths]
        succeeded = failed = 0
        start = time.monotonic()

        for position, path in enumerate(path_list):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "ingestion_cancelled",
                    remaining=len(path_list) - position,
                )
                break

            result = await self.process_file(
                path,
                document_id=document_id_for(path, root),
                cancel_event=cancel_event,
            )
            if result.succeeded:
                succeeded += 1
            else:
                failed += 1
            yield result

        logger.info(
            "ingestion_run_complete",
            succeeded=succeeded,
            failed=failed,
            elapsed_s=round(time.monotonic() - start, 2),
        )

    async def process_file(
        self,
        path: str | Path,
        *,
        document_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Run one file through every stage and return its terminal result.

        Never raises for document-level failures; ``asyncio.CancelledError``
        still propagates.
        """
        path = Path(path)
        document_id = document_id or path.as_posix()
        stage = DocumentStage.PENDING
        start = time.monotonic()
        log = logger.bind(document_id=document_id)
        log.info("document_started", path=str(path))

        try:
            stage = DocumentStage.READING
            _check_cancelled(cancel_event)
            reader = self._reader_for(path)
            document = await asyncio.to_thread(reader.read, path, document_id)

            stage = DocumentStage.ENRICHING_DOCUMENT
            _check_cancelled(cancel_event)
            document = await apply_document_enrichers(document, self._document_enrichers)

            stage = DocumentStage.CHUNKING
            _check_cancelled(cancel_event)
            chunks = await self._chunker.chunk(document)

            stage = DocumentStage.ENRICHING_CHUNKS
            _check_cancelled(cancel_event)
            chunks = await apply_chunk_enrichers(
                chunks,
                self._chunk_enrichers,
                max_concurrency=self._max_concurrent_enrichments,
            )

            stage = DocumentStage.WRITING
            _check_cancelled(cancel_event)
            written = await self._writer.write(
                document_id, chunks, source_path=document.source_path
            )
        except Exception as exc:
            elapsed = time.monotonic() - start
            log.warning(
                "document_failed",
                stage=stage.value,
                error_type=type(exc).__name__,
                error=str(exc),
                elapsed_s=round(elapsed, 3),
            )
            return PipelineResult.failure(document_id, stage, exc, elapsed_seconds=elapsed)

        elapsed = time.monotonic() - start
        log.info(
            "document_completed",
            chunks=written,
            elapsed_s=round(elapsed, 3),
        )
        return PipelineResult.success(document_id, written, elapsed_seconds=elapsed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reader_for(self, path: Path) -> IDocumentReader:
        suffix = path.suffix.lower()
        for reader in self._readers:
            if suffix in reader.supported_suffixes:
                return reader
        return self._readers[0]


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelledError(message="Cancelled before the document was written")


def discover_files(root: Path, pattern: str, *, recursive: bool = False) -> list[Path]:
    """Return files under *root* matching *pattern*, sorted by relative path."""
    matches = root.rglob(pattern) if recursive else root.glob(pattern)
    return sorted(
        (p for p in matches if p.is_file()),
        key=lambda p: p.relative_to(root).as_posix(),
    )


def document_id_for(path: Path, root: str | Path | None) -> str:
    """Return the document id for *path*: its POSIX path relative to *root*."""
    if root is not None:
        try:
            return path.relative_to(Path(root)).as_posix()
        except ValueError:
            pass
    return path.as_posix()
