"""Unit tests for the ragpipe CLI (ragpipe.cli.ingest)."""

from __future__ import annotations

from argparse import Namespace
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ragpipe.cli.ingest import (
    _build_parser,
    _config_with_overrides,
    _handle_ingest,
    _handle_query,
    main,
)
from ragpipe.config.settings import Settings
from ragpipe.models.pipeline import DocumentStage, PipelineResult
from ragpipe.models.rag import SearchHit
from ragpipe.utils.errors import ConfigurationError, ReadError, StoreError


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(tmp_path: Path, **overrides) -> Settings:
    """Settings isolated from the host's .env and YAML file."""
    defaults = {"config_path": str(tmp_path / "absent.yaml")}
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _ingest_args(**overrides) -> Namespace:
    defaults = {
        "path": "./docs",
        "pattern": "*.md",
        "recursive": False,
        "max_tokens": None,
        "overlap": None,
        "collection": None,
        "no_enrichment": True,
    }
    defaults.update(overrides)
    return Namespace(**defaults)


def _fake_pipeline(results: list[PipelineResult]) -> MagicMock:
    async def process_directory(*args, **kwargs):
        for result in results:
            yield result

    pipeline = MagicMock()
    pipeline.process_directory = process_directory
    return pipeline


def _inputs(*lines: str):
    """input() replacement returning *lines* in turn, then EOF."""
    remaining = list(lines)

    def fake_input(prompt: str) -> str:
        if not remaining:
            raise EOFError
        return remaining.pop(0)

    return fake_input


# ======================================================================
# Parser
# ======================================================================


class TestParser:
    def test_ingest_options(self) -> None:
        args = _build_parser().parse_args(
            ["ingest", "--path", "docs", "--pattern", "*.txt", "--recursive",
             "--max-tokens", "500", "--overlap", "50", "--no-enrichment"]
        )
        assert args.command == "ingest"
        assert args.path == "docs"
        assert args.pattern == "*.txt"
        assert args.recursive is True
        assert args.max_tokens == 500
        assert args.overlap == 50
        assert args.no_enrichment is True

    def test_query_options(self) -> None:
        args = _build_parser().parse_args(["query", "--top-k", "5", "--collection", "manuals"])
        assert args.top_k == 5
        assert args.collection == "manuals"

    def test_no_command_exits_with_error(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1


class TestConfigOverrides:
    def test_cli_values_override_file_config(self, tmp_path: Path) -> None:
        config = _config_with_overrides(
            _ingest_args(max_tokens=300, overlap=20, collection="manuals"), _settings(tmp_path)
        )
        assert config.max_tokens_per_chunk == 300
        assert config.overlap_tokens == 20
        assert config.collection_name == "manuals"

    def test_invalid_cli_values_are_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            _config_with_overrides(_ingest_args(max_tokens=10, overlap=10), _settings(tmp_path))


# ======================================================================
# ingest
# ======================================================================


class TestIngestCommand:
    @pytest.mark.asyncio
    async def test_prints_one_line_per_document(self, tmp_path: Path, capsys) -> None:
        results = [
            PipelineResult.success("a.md", chunks_written=2),
            PipelineResult.failure("b.md", DocumentStage.READING, ReadError("not valid UTF-8")),
        ]
        with patch("ragpipe.cli.ingest.build_pipeline", return_value=_fake_pipeline(results)):
            code = await _handle_ingest(_ingest_args(), _settings(tmp_path))

        out = capsys.readouterr().out
        assert "Completed processing 'a.md'. Succeeded: 'True'." in out
        assert "Completed processing 'b.md'. Succeeded: 'False'." in out
        assert "Failed during reading: not valid UTF-8" in out
        assert "1 succeeded, 1 failed" in out
        assert code == 1

    @pytest.mark.asyncio
    async def test_all_succeeded_returns_zero(self, tmp_path: Path) -> None:
        results = [PipelineResult.success("a.md", chunks_written=1)]
        with patch(
            "ragpipe.cli.ingest.build_pipeline", return_value=_fake_pipeline(results)
        ) as build:
            code = await _handle_ingest(_ingest_args(), _settings(tmp_path))

        assert code == 0
        assert build.call_args.kwargs["enrichment"] is False

    @pytest.mark.asyncio
    async def test_missing_api_key_is_a_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            await _handle_ingest(_ingest_args(), _settings(tmp_path, openai_api_key=""))


# ======================================================================
# query
# ======================================================================


class TestQueryCommand:
    @pytest.fixture()
    def retriever(self) -> MagicMock:
        retriever = MagicMock()
        retriever.search = AsyncMock(
            return_value=[
                SearchHit(
                    chunk_id="c1",
                    text="Install the package.",
                    score=0.91234,
                    metadata={"document_id": "setup.md", "chunk_index": 0},
                )
            ]
        )
        return retriever

    @pytest.mark.asyncio
    async def test_prints_scored_results_until_exit(
        self, tmp_path: Path, retriever: MagicMock, capsys
    ) -> None:
        with patch("ragpipe.cli.ingest.build_retriever", return_value=retriever):
            code = await _handle_query(
                Namespace(top_k=None, collection=None),
                _settings(tmp_path),
                input_fn=_inputs("how do I install?", "exit", "never asked"),
            )

        out = capsys.readouterr().out
        assert code == 0
        assert "Score: 0.9123" in out
        assert "Source: setup.md (chunk 0)" in out
        assert "\tContent: Install the package." in out
        retriever.search.assert_awaited_once_with("how do I install?", 3)

    @pytest.mark.asyncio
    async def test_search_error_keeps_loop_alive(
        self, tmp_path: Path, retriever: MagicMock, capsys
    ) -> None:
        retriever.search.side_effect = [StoreError("store offline"), []]
        with patch("ragpipe.cli.ingest.build_retriever", return_value=retriever):
            await _handle_query(
                Namespace(top_k=2, collection=None),
                _settings(tmp_path),
                input_fn=_inputs("first", "second", ""),
            )

        out = capsys.readouterr().out
        assert "Search failed: store offline" in out
        assert "No results." in out
        assert retriever.search.await_count == 2

    @pytest.mark.asyncio
    async def test_explicit_zero_top_k_reaches_the_retriever(
        self, tmp_path: Path, retriever: MagicMock, capsys
    ) -> None:
        retriever.search.side_effect = ValueError("top_k must be a positive integer, got 0")
        with patch("ragpipe.cli.ingest.build_retriever", return_value=retriever):
            await _handle_query(
                Namespace(top_k=0, collection=None),
                _settings(tmp_path),
                input_fn=_inputs("question", "exit"),
            )

        retriever.search.assert_awaited_once_with("question", 0)
        assert "Search failed: top_k must be a positive integer" in capsys.readouterr().out
