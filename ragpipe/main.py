"""ragpipe composition root.

Wires providers and services together via dependency injection.  Every
factory accepts pre-built collaborators so tests and embedding callers can
swap in their own embedding client, chat client or vector store; anything
not supplied is built from :class:`~ragpipe.config.settings.Settings`.

Boundary surface:

* :func:`run_ingestion` -- async generator of one :class:`PipelineResult`
  per document in a directory.
* :func:`query` -- top-K ``(chunk_text, score, metadata)`` tuples.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator

import structlog

from ragpipe.config.loader import load_config
from ragpipe.config.settings import Settings
from ragpipe.interfaces.embedding_provider import IEmbeddingProvider
from ragpipe.interfaces.enricher import IChunkEnricher, IDocumentEnricher
from ragpipe.interfaces.llm_provider import ILLMProvider
from ragpipe.interfaces.vector_store_provider import IVectorStoreProvider
from ragpipe.models.pipeline import PipelineConfig, PipelineResult
from ragpipe.providers.reader.markdown_reader import MarkdownReader
from ragpipe.providers.reader.plain_text_reader import PlainTextReader
from ragpipe.services.ingestion.chunk_enrichers import KeywordEnricher, SummaryEnricher
from ragpipe.services.ingestion.document_enrichers import ImageAlternativeTextEnricher
from ragpipe.services.ingestion.pipeline import IngestionPipeline
from ragpipe.services.ingestion.semantic_chunker import SemanticChunker
from ragpipe.services.ingestion.tokenizer import TokenCounter
from ragpipe.services.ingestion.vector_store_writer import VectorStoreWriter
from ragpipe.services.retrieval.retriever import Retriever
from ragpipe.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Provider factories
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    from ragpipe.providers.embedding.openai_embedding_provider import (
        OpenAIEmbeddingProvider,
    )

    if not app_settings.openai_api_key:
        raise ConfigurationError(
            message="OPENAI_API_KEY is not set; an embedding provider is required",
            provider_name="openai_embedding",
        )
    return OpenAIEmbeddingProvider(app_settings)


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """Return the chat provider, or ``None`` when no API key is configured."""
    from ragpipe.providers.llm.openai_provider import OpenAILLMProvider

    if not app_settings.openai_api_key:
        return None
    return OpenAILLMProvider(app_settings)


def _build_vector_store(app_settings: Settings) -> IVectorStoreProvider:
    from ragpipe.providers.vector_store.chromadb_provider import ChromaDBProvider

    return ChromaDBProvider(persist_directory=app_settings.chromadb_persist_dir)


def _build_token_counter(app_settings: Settings) -> TokenCounter:
    if app_settings.tokenizer_file:
        return TokenCounter.from_file(app_settings.tokenizer_file)
    return TokenCounter.from_pretrained(app_settings.tokenizer_model)


def _build_enrichers(
    llm: ILLMProvider | None,
) -> tuple[list[IDocumentEnricher], list[IChunkEnricher]]:
    if llm is None:
        logger.info("enrichment_disabled", reason="no chat provider configured")
        return [], []
    return [ImageAlternativeTextEnricher(llm)], [SummaryEnricher(llm), KeywordEnricher(llm)]


# ---------------------------------------------------------------------------
# Service factories
# ---------------------------------------------------------------------------


def build_pipeline(
    config: PipelineConfig | None = None,
    app_settings: Settings | None = None,
    *,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_store: IVectorStoreProvider | None = None,
    llm_provider: ILLMProvider | None = None,
    token_counter: TokenCounter | None = None,
    enrichment: bool | None = None,
) -> IngestionPipeline:
    """Construct an :class:`IngestionPipeline` with injected dependencies.

    Args:
        config: Pipeline tunables; loaded via :func:`load_config` if omitted.
        app_settings: Runtime settings; read from the environment if omitted.
        embedding_provider, vector_store, llm_provider, token_counter:
            Pre-built collaborators that override the settings-based ones.
        enrichment: Force enrichers on or off; defaults to
            ``app_settings.enrichment_enabled``.
    """
    app_settings = app_settings or Settings()
    config = config or load_config(settings=app_settings)

    embedder = embedding_provider or _build_embedding_provider(app_settings)
    store = vector_store or _build_vector_store(app_settings)
    counter = token_counter or _build_token_counter(app_settings)

    use_enrichment = app_settings.enrichment_enabled if enrichment is None else enrichment
    if use_enrichment:
        llm = llm_provider or _build_llm_provider(app_settings)
        document_enrichers, chunk_enrichers = _build_enrichers(llm)
    else:
        document_enrichers, chunk_enrichers = [], []

    chunker = SemanticChunker(
        embedding_provider=embedder,
        token_counter=counter,
        max_tokens_per_chunk=config.max_tokens_per_chunk,
        overlap_tokens=config.overlap_tokens,
        similarity_threshold=config.similarity_threshold,
        max_retries=config.max_embedding_retries,
        retry_backoff_seconds=config.retry_backoff_seconds,
    )
    writer = VectorStoreWriter(
        vector_store=store,
        embedding_provider=embedder,
        collection_name=config.collection_name,
        dimension=config.embedding_dimension,
        incremental_ingestion=config.incremental_ingestion,
    )

    logger.info(
        "pipeline_built",
        embedding_provider=embedder.get_provider_name(),
        vector_store=store.get_provider_name(),
        collection=config.collection_name,
        max_tokens_per_chunk=config.max_tokens_per_chunk,
        overlap_tokens=config.overlap_tokens,
        document_enrichers=[e.name for e in document_enrichers],
        chunk_enrichers=[e.name for e in chunk_enrichers],
    )
    return IngestionPipeline(
        readers=[MarkdownReader(), PlainTextReader()],
        chunker=chunker,
        writer=writer,
        document_enrichers=document_enrichers,
        chunk_enrichers=chunk_enrichers,
        max_concurrent_enrichments=config.max_concurrent_enrichments,
    )


def build_retriever(
    config: PipelineConfig | None = None,
    app_settings: Settings | None = None,
    *,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_store: IVectorStoreProvider | None = None,
) -> Retriever:
    """Construct a :class:`Retriever` over the configured collection."""
    app_settings = app_settings or Settings()
    config = config or load_config(settings=app_settings)
    return Retriever(
        vector_store=vector_store or _build_vector_store(app_settings),
        embedding_provider=embedding_provider or _build_embedding_provider(app_settings),
        collection_name=config.collection_name,
        default_top_k=config.top_k,
    )


# ---------------------------------------------------------------------------
# Boundary surface
# ---------------------------------------------------------------------------


async def run_ingestion(
    source_directory: str | Path | None = None,
    file_pattern: str | None = None,
    config: PipelineConfig | None = None,
    *,
    app_settings: Settings | None = None,
    pipeline: IngestionPipeline | None = None,
    recursive: bool = False,
    cancel_event: asyncio.Event | None = None,
) -> AsyncIterator[PipelineResult]:
    """Ingest a directory, yielding one result per document as it finishes.

    Directory and pattern default to ``SOURCE_DIRECTORY`` / ``FILE_PATTERN``.
    """
    app_settings = app_settings or Settings()
    pipeline = pipeline or build_pipeline(config, app_settings)
    directory = source_directory or app_settings.source_directory
    pattern = file_pattern or app_settings.file_pattern

    async for result in pipeline.process_directory(
        directory, pattern, recursive=recursive, cancel_event=cancel_event
    ):
        yield result


async def query(
    text: str,
    top_k: int | None = None,
    config: PipelineConfig | None = None,
    *,
    app_settings: Settings | None = None,
    retriever: Retriever | None = None,
) -> list[tuple[str, float, dict[str, Any]]]:
    """Return the *top_k* stored chunks nearest to *text*.

    Each tuple is ``(chunk_text, score, metadata)``, highest score first.
    """
    retriever = retriever or build_retriever(config, app_settings)
    hits = await retriever.search(text, top_k)
    return [(hit.text, hit.score, dict(hit.metadata)) for hit in hits]
