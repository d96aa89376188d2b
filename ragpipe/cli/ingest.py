# =============================================================================
# ragpipe/cli/ingest.py -- CLI for ingesting and querying a document corpus
# =============================================================================
#
# Supported subcommands:
#
#   ingest -- Ingest every file matching a pattern in a directory
#   query  -- Interactive question loop against the ingested collection
#   stats  -- Record count of the collection
#
# Usage examples:
#   python -m ragpipe.cli ingest --path ./data --pattern "*.md"
#   python -m ragpipe.cli ingest --path ./docs --recursive --max-tokens 500
#   python -m ragpipe.cli query --top-k 5
#   python -m ragpipe.cli stats
#
# Ctrl-C during ingest stops after the current stage: the in-flight document
# is reported as failed and no further documents start.
# =============================================================================

"""Standalone CLI for building and querying the ragpipe vector collection."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Callable

import structlog

from ragpipe.config.loader import load_config
from ragpipe.config.settings import Settings
from ragpipe.main import build_pipeline, build_retriever
from ragpipe.models.pipeline import PipelineConfig
from ragpipe.utils.errors import RagPipeError
from ragpipe.utils.logging import configure_logging

logger = structlog.get_logger(logger_name=__name__)

_EXIT_WORDS = frozenset({"exit", "quit"})


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _config_with_overrides(args: argparse.Namespace, app_settings: Settings) -> PipelineConfig:
    """Apply command-line overrides on top of the file/env configuration."""
    config = load_config(settings=app_settings)
    updates: dict[str, object] = {}
    if getattr(args, "max_tokens", None) is not None:
        updates["max_tokens_per_chunk"] = args.max_tokens
    if getattr(args, "overlap", None) is not None:
        updates["overlap_tokens"] = args.overlap
    if getattr(args, "collection", None):
        updates["collection_name"] = args.collection
    if not updates:
        return config
    # Re-validate so CLI values obey the same constraints as file values.
    return PipelineConfig(**{**config.model_dump(), **updates})


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    """Ingest a directory, printing one line per document."""
    config = _config_with_overrides(args, app_settings)
    pipeline = build_pipeline(
        config,
        app_settings,
        enrichment=False if args.no_enrichment else None,
    )

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        pass  # Windows event loops do not support signal handlers.

    print(f"Ingesting '{args.pattern}' files from {args.path}")
    succeeded = failed = 0
    try:
        async for result in pipeline.process_directory(
            args.path,
            args.pattern,
            recursive=args.recursive,
            cancel_event=cancel_event,
        ):
            print(
                f"Completed processing '{result.document_id}'. "
                f"Succeeded: '{result.succeeded}'."
            )
            if result.succeeded:
                succeeded += 1
            else:
                failed += 1
                print(f"  Failed during {result.stage.value}: {result.error}")
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    print(f"\nIngestion complete: {succeeded} succeeded, {failed} failed.")
    if cancel_event.is_set():
        print("Ingestion was cancelled before all documents were processed.")
    return 1 if failed or cancel_event.is_set() else 0


async def _handle_query(
    args: argparse.Namespace,
    app_settings: Settings,
    input_fn: Callable[[str], str] = input,
) -> int:
    """Prompt for questions until an empty line or 'exit'."""
    config = _config_with_overrides(args, app_settings)
    retriever = build_retriever(config, app_settings)
    top_k = args.top_k if args.top_k is not None else config.top_k

    while True:
        try:
            question = input_fn("Enter your question: ").strip()
        except EOFError:
            break
        if not question or question.lower() in _EXIT_WORDS:
            break

        try:
            hits = await retriever.search(question, top_k)
        except (RagPipeError, ValueError) as exc:
            print(f"Search failed: {exc}")
            continue

        if not hits:
            print("No results.")
        for hit in hits:
            print(f"Score: {hit.score:.4f}")
            print(f"Source: {hit.document_id} (chunk {hit.chunk_index})")
            print(f"\tContent: {hit.text}")
            print()
    return 0


async def _handle_stats(args: argparse.Namespace, app_settings: Settings) -> int:
    """Print the number of records in the collection."""
    from ragpipe.providers.vector_store.chromadb_provider import ChromaDBProvider

    config = _config_with_overrides(args, app_settings)
    store = ChromaDBProvider(persist_directory=app_settings.chromadb_persist_dir)
    total = await store.count(config.collection_name)

    print("Collection Statistics")
    print("=" * 40)
    print(f"  Collection:    {config.collection_name}")
    print(f"  Location:      {app_settings.chromadb_persist_dir}")
    print(f"  Total records: {total}")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ragpipe CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m ragpipe.cli",
        description="Ingest documents into a vector collection and query it.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest files from a directory")
    ingest_parser.add_argument("--path", default=None, help="Source directory (default: SOURCE_DIRECTORY)")
    ingest_parser.add_argument("--pattern", default=None, help="Glob pattern (default: FILE_PATTERN)")
    ingest_parser.add_argument("--recursive", action="store_true", help="Descend into subdirectories")
    ingest_parser.add_argument("--max-tokens", type=int, dest="max_tokens", help="Token budget per chunk")
    ingest_parser.add_argument("--overlap", type=int, help="Overlap tokens between chunks")
    ingest_parser.add_argument("--collection", help="Target collection name")
    ingest_parser.add_argument(
        "--no-enrichment",
        action="store_true",
        dest="no_enrichment",
        help="Skip LLM enrichment (faster, embeddings-only)",
    )

    # -- query --
    query_parser = subparsers.add_parser("query", help="Interactively query the collection")
    query_parser.add_argument("--top-k", type=int, dest="top_k", help="Results per question")
    query_parser.add_argument("--collection", help="Collection to search")

    # -- stats --
    stats_parser = subparsers.add_parser("stats", help="Show collection statistics")
    stats_parser.add_argument("--collection", help="Collection to inspect")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, configure logging, dispatch."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(app_settings.log_level)

    if args.command == "ingest":
        args.path = args.path or app_settings.source_directory
        args.pattern = args.pattern or app_settings.file_pattern
        handler = _handle_ingest
    elif args.command == "query":
        handler = _handle_query
    else:
        handler = _handle_stats

    try:
        exit_code = asyncio.run(handler(args, app_settings))
    except (RagPipeError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(exit_code)
