"""Unit tests for the enrichment boundary and the concrete enrichers."""

from __future__ import annotations

import asyncio

import pytest

from ragpipe.interfaces.enricher import IChunkEnricher, IDocumentEnricher
from ragpipe.models.document import Document, Section, SectionType
from ragpipe.models.rag import Chunk, make_chunk_id
from ragpipe.services.ingestion.chunk_enrichers import KeywordEnricher, SummaryEnricher
from ragpipe.services.ingestion.document_enrichers import ImageAlternativeTextEnricher
from ragpipe.services.ingestion.enrichment import (
    apply_chunk_enrichers,
    apply_document_enrichers,
    try_enrich,
    unwrap_or_passthrough,
)
from ragpipe.utils.errors import EnrichmentError, GenerationError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chunk(index: int = 0, text: str = "Cats purr softly.") -> Chunk:
    return Chunk(
        chunk_id=make_chunk_id("doc.md", index),
        document_id="doc.md",
        index=index,
        text=text,
        token_count=len(text.split()),
    )


def _document_with_image() -> Document:
    return Document(
        document_id="guide.md",
        sections=[
            Section(section_type=SectionType.TEXT, content="Open the settings page.", start_offset=0, end_offset=23),
            Section(section_type=SectionType.IMAGE, content="img/settings.png", start_offset=25, end_offset=50),
            Section(section_type=SectionType.TEXT, content="Then click save.", start_offset=52, end_offset=68),
        ],
    )


class _TagEnricher(IChunkEnricher):
    def __init__(self, key: str) -> None:
        self.key = key

    async def enrich(self, chunk: Chunk) -> Chunk:
        order = chunk.metadata.get("order", "")
        return chunk.model_copy(update={"metadata": {**chunk.metadata, "order": order + self.key}})


class _FailingChunkEnricher(IChunkEnricher):
    async def enrich(self, chunk: Chunk) -> Chunk:
        raise RuntimeError("model exploded")


class _HalfMutatingDocumentEnricher(IDocumentEnricher):
    """Mutates the document it receives, then fails."""

    async def enrich(self, document: Document) -> Document:
        document.sections[0].content = "CORRUPTED"
        raise RuntimeError("failed mid-way")


class _CancellingEnricher(IChunkEnricher):
    async def enrich(self, chunk: Chunk) -> Chunk:
        raise asyncio.CancelledError()


# ---------------------------------------------------------------------------
# Boundary
# ---------------------------------------------------------------------------


class TestTryEnrich:
    @pytest.mark.asyncio
    async def test_success_carries_value(self) -> None:
        outcome = await try_enrich(_TagEnricher("a"), _chunk(), "c0")

        assert outcome.ok
        assert outcome.value.metadata["order"] == "a"
        assert outcome.enricher == "_TagEnricher"

    @pytest.mark.asyncio
    async def test_arbitrary_exception_becomes_enrichment_error(self) -> None:
        outcome = await try_enrich(_FailingChunkEnricher(), _chunk(), "c0")

        assert not outcome.ok
        assert isinstance(outcome.error, EnrichmentError)
        assert isinstance(outcome.error.__cause__, RuntimeError)
        assert "model exploded" in str(outcome.error)

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self) -> None:
        with pytest.raises(asyncio.CancelledError):
            await try_enrich(_CancellingEnricher(), _chunk(), "c0")

    @pytest.mark.asyncio
    async def test_passthrough_returns_original_on_failure(self) -> None:
        original = _chunk()
        outcome = await try_enrich(_FailingChunkEnricher(), original, original.chunk_id)

        assert unwrap_or_passthrough(outcome, original) is original


class TestStageRunners:
    @pytest.mark.asyncio
    async def test_failed_document_enricher_leaks_no_partial_mutation(self) -> None:
        document = _document_with_image()
        result = await apply_document_enrichers(document, [_HalfMutatingDocumentEnricher()])

        assert result.sections[0].content == "Open the settings page."
        assert document.sections[0].content == "Open the settings page."

    @pytest.mark.asyncio
    async def test_chunk_enrichers_run_in_registration_order(self) -> None:
        chunks = [_chunk(i) for i in range(4)]
        enriched = await apply_chunk_enrichers(
            chunks, [_TagEnricher("a"), _TagEnricher("b")], max_concurrency=2
        )

        assert [c.index for c in enriched] == [0, 1, 2, 3]
        assert all(c.metadata["order"] == "ab" for c in enriched)

    @pytest.mark.asyncio
    async def test_failure_in_one_enricher_keeps_the_others(self) -> None:
        enriched = await apply_chunk_enrichers(
            [_chunk()], [_TagEnricher("a"), _FailingChunkEnricher(), _TagEnricher("b")]
        )

        assert enriched[0].metadata["order"] == "ab"

    @pytest.mark.asyncio
    async def test_no_enrichers_returns_chunks_unchanged(self) -> None:
        chunks = [_chunk()]
        assert await apply_chunk_enrichers(chunks, []) == chunks


# ---------------------------------------------------------------------------
# Concrete enrichers
# ---------------------------------------------------------------------------


class TestSummaryEnricher:
    @pytest.mark.asyncio
    async def test_adds_summary_metadata(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = "  Cats   purr.\n"
        chunk = _chunk()
        enriched = await SummaryEnricher(mock_llm_provider).enrich(chunk)

        assert enriched.metadata["summary"] == "Cats purr."
        assert enriched.text == chunk.text
        assert "summary" not in chunk.metadata

    @pytest.mark.asyncio
    async def test_generation_error_is_absorbed_at_boundary(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.side_effect = GenerationError("down", provider_name="mock-llm")
        chunk = _chunk()
        result = await apply_chunk_enrichers([chunk], [SummaryEnricher(mock_llm_provider)])

        assert result == [chunk]


class TestKeywordEnricher:
    @pytest.mark.asyncio
    async def test_parses_fenced_json(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = (
            'Here you go:\n```json\n{"keywords": ["cats", "purring", "Cats"]}\n```'
        )
        enriched = await KeywordEnricher(mock_llm_provider).enrich(_chunk())

        assert enriched.metadata["keywords"] == "cats, purring"

    @pytest.mark.asyncio
    async def test_respects_max_keywords(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = '{"keywords": ["a", "b", "c", "d"]}'
        enriched = await KeywordEnricher(mock_llm_provider, max_keywords=2).enrich(_chunk())

        assert enriched.metadata["keywords"] == "a, b"

    def test_unparseable_response_raises(self) -> None:
        with pytest.raises(EnrichmentError):
            KeywordEnricher._parse_response("no json here")
        with pytest.raises(EnrichmentError):
            KeywordEnricher._parse_response('{"tags": []}')


class TestImageAlternativeTextEnricher:
    @pytest.mark.asyncio
    async def test_fills_missing_alt_text(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = "Screenshot of the settings page."
        document = _document_with_image()
        enriched = await ImageAlternativeTextEnricher(mock_llm_provider).enrich(document)

        assert enriched.sections[1].alternative_text == "Screenshot of the settings page."
        prompt = mock_llm_provider.complete.call_args.kwargs["user_prompt"]
        assert "img/settings.png" in prompt
        assert "Open the settings page." in prompt
        assert "Then click save." in prompt

    @pytest.mark.asyncio
    async def test_existing_alt_text_is_left_alone(self, mock_llm_provider) -> None:
        document = _document_with_image()
        document.sections[1].alternative_text = "Settings dialog"
        await ImageAlternativeTextEnricher(mock_llm_provider).enrich(document)

        assert document.sections[1].alternative_text == "Settings dialog"
        mock_llm_provider.complete.assert_not_called()
