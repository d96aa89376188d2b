"""Unit tests for the SemanticChunker -- budget, similarity and overlap behaviour.

The whitespace tokenizer from conftest makes every word exactly one token,
so expected chunk boundaries can be worked out by hand.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ragpipe.models.document import Document, Section, SectionType
from ragpipe.models.rag import make_chunk_id
from ragpipe.providers.reader.markdown_reader import MarkdownReader
from ragpipe.services.ingestion.semantic_chunker import SemanticChunker, split_sentences
from ragpipe.utils.errors import ChunkingError
from tests.conftest import MockEmbeddingProvider, make_whitespace_counter

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text_document(*paragraphs: str, document_id: str = "doc.md") -> Document:
    sections = []
    offset = 0
    for paragraph in paragraphs:
        sections.append(
            Section(
                section_type=SectionType.TEXT,
                content=paragraph,
                start_offset=offset,
                end_offset=offset + len(paragraph),
            )
        )
        offset += len(paragraph) + 2
    return Document(document_id=document_id, sections=sections)


def _make_chunker(
    embedder: MockEmbeddingProvider | None = None,
    max_tokens: int = 2000,
    overlap: int = 0,
    threshold: float = -1.0,
    max_retries: int = 0,
) -> SemanticChunker:
    """Chunker with a permissive threshold so only the budget splits by default."""
    return SemanticChunker(
        embedding_provider=embedder or MockEmbeddingProvider(),
        token_counter=make_whitespace_counter(),
        max_tokens_per_chunk=max_tokens,
        overlap_tokens=overlap,
        similarity_threshold=threshold,
        max_retries=max_retries,
        retry_backoff_seconds=0.0,
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_empty_document_yields_no_chunks(self) -> None:
        embedder = MockEmbeddingProvider()
        document = Document(
            document_id="empty.md",
            sections=[Section(section_type=SectionType.IMAGE, content="diagram.png")],
        )
        chunks = await _make_chunker(embedder).chunk(document)

        assert chunks == []
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_document_within_budget_is_one_chunk_without_embedding(self) -> None:
        embedder = MockEmbeddingProvider()
        document = _text_document("First sentence here. Second sentence here.")
        chunks = await _make_chunker(embedder, max_tokens=100).chunk(document)

        assert len(chunks) == 1
        assert chunks[0].text == "First sentence here. Second sentence here."
        assert chunks[0].token_count == 6
        assert chunks[0].index == 0
        assert embedder.calls == []


class TestOrderAndBudget:
    @pytest.mark.asyncio
    async def test_order_is_preserved(self) -> None:
        chunks = await _make_chunker(max_tokens=2).chunk(_text_document("A. B. C."))

        assert [c.text for c in chunks] == ["A. B.", "C."]
        assert " ".join(c.text for c in chunks) == "A. B. C."
        assert [c.index for c in chunks] == [0, 1]

    @pytest.mark.asyncio
    async def test_every_chunk_respects_the_budget(self) -> None:
        counter = make_whitespace_counter()
        sentences = [
            " ".join(f"w{i}_{j}" for j in range(1 + (i * 7) % 5)) + "." for i in range(40)
        ]
        document = _text_document(" ".join(sentences[:20]), " ".join(sentences[20:]))
        chunks = await _make_chunker(max_tokens=10).chunk(document)

        assert len(chunks) > 1
        for chunk in chunks:
            assert chunk.token_count == counter.count(chunk.text)
            assert chunk.token_count <= 10 or chunk.oversized

    @pytest.mark.asyncio
    async def test_sections_are_joined_with_blank_line(self) -> None:
        document = _text_document("Alpha one.", "Beta two.")
        chunks = await _make_chunker(max_tokens=100).chunk(document)

        assert chunks[0].text == "Alpha one.\n\nBeta two."
        assert [s.section_index for s in chunks[0].sources] == [0, 1]

    @pytest.mark.asyncio
    async def test_chunk_ids_are_stable(self) -> None:
        document = _text_document("A. B. C.", document_id="guides/setup.md")
        first = await _make_chunker(max_tokens=2).chunk(document)
        second = await _make_chunker(max_tokens=2).chunk(document)

        assert [c.chunk_id for c in first] == [c.chunk_id for c in second]
        assert first[1].chunk_id == make_chunk_id("guides/setup.md", 1)
        assert len({c.chunk_id for c in first}) == len(first)


class TestOversizedUnits:
    @pytest.mark.asyncio
    async def test_oversized_sentence_becomes_its_own_chunk(self) -> None:
        document = _text_document(
            "Short one. This sentence has way too many words. End."
        )
        chunks = await _make_chunker(max_tokens=3).chunk(document)

        assert [c.text for c in chunks] == [
            "Short one.",
            "This sentence has way too many words.",
            "End.",
        ]
        assert [c.oversized for c in chunks] == [False, True, False]
        assert chunks[1].token_count == 7


class TestSimilarity:
    @pytest.mark.asyncio
    async def test_topic_shift_closes_chunk_before_budget(self) -> None:
        embedder = MockEmbeddingProvider(topics={"cats": 0, "dogs": 1})
        document = _text_document("Cats purr. Cats nap. Dogs bark. Dogs run.")
        chunks = await _make_chunker(embedder, max_tokens=6, threshold=0.5).chunk(document)

        assert [c.text for c in chunks] == ["Cats purr. Cats nap.", "Dogs bark. Dogs run."]
        assert len(embedder.calls) == 1

    @pytest.mark.asyncio
    async def test_similarity_equal_to_threshold_stays_in_chunk(self) -> None:
        embedder = MockEmbeddingProvider(topics={"cats": 0, "dogs": 1})
        document = _text_document("Cats purr. Dogs bark. Cats nap.")

        tie = await _make_chunker(embedder, max_tokens=5, threshold=0.0).chunk(document)
        above = await _make_chunker(embedder, max_tokens=5, threshold=0.01).chunk(document)

        # Orthogonal topics have similarity exactly 0.0.
        assert tie[0].text == "Cats purr. Dogs bark."
        assert above[0].text == "Cats purr."


class TestOverlap:
    @pytest.mark.asyncio
    async def test_trailing_units_seed_next_chunk(self) -> None:
        document = _text_document("One a. Two b. Three c. Four d.")
        chunks = await _make_chunker(max_tokens=4, overlap=2).chunk(document)

        assert [c.text for c in chunks] == [
            "One a. Two b.",
            "Two b. Three c.",
            "Three c. Four d.",
        ]
        for chunk in chunks:
            assert chunk.token_count <= 4

    @pytest.mark.asyncio
    async def test_zero_overlap_shares_nothing(self) -> None:
        document = _text_document("One a. Two b. Three c. Four d.")
        chunks = await _make_chunker(max_tokens=4, overlap=0).chunk(document)

        assert [c.text for c in chunks] == ["One a. Two b.", "Three c. Four d."]

    def test_overlap_must_be_smaller_than_budget(self) -> None:
        with pytest.raises(ValueError):
            _make_chunker(max_tokens=4, overlap=4)


class TestEmbeddingFailures:
    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_chunking_error(self) -> None:
        embedder = MockEmbeddingProvider(failures=10)
        chunker = _make_chunker(embedder, max_tokens=2, max_retries=2)

        with pytest.raises(ChunkingError) as exc_info:
            await chunker.chunk(_text_document("A. B. C."))

        assert len(embedder.calls) == 3
        assert exc_info.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self) -> None:
        embedder = MockEmbeddingProvider(failures=1)
        chunks = await _make_chunker(embedder, max_tokens=2, max_retries=2).chunk(
            _text_document("A. B. C.")
        )

        assert [c.text for c in chunks] == ["A. B.", "C."]
        assert len(embedder.calls) == 2


class TestSentenceSplitting:
    def test_abbreviations_do_not_split(self) -> None:
        sentences = [s for s, _, _ in split_sentences("Dr. Smith arrived. He left, e.g. early!")]
        assert sentences == ["Dr. Smith arrived.", "He left, e.g. early!"]

    def test_offsets_point_into_source(self) -> None:
        text = "  First one.   Second one?"
        for sentence, start, end in split_sentences(text):
            assert text[start:end] == sentence

    def test_trailing_text_without_punctuation_is_kept(self) -> None:
        assert [s for s, _, _ in split_sentences("Done. and then")] == ["Done.", "and then"]

    def test_no_is_only_an_abbreviation_before_a_number(self) -> None:
        assert [s for s, _, _ in split_sentences("I said No. Then we left.")] == [
            "I said No.",
            "Then we left.",
        ]
        assert [s for s, _, _ in split_sentences("See No. 5 for details.")] == [
            "See No. 5 for details."
        ]

    def test_initialisms_do_not_split(self) -> None:
        assert [s for s, _, _ in split_sentences("The U.S. economy grew. Next.")] == [
            "The U.S. economy grew.",
            "Next.",
        ]


class TestSourceOffsetsThroughMarkdown:
    @pytest.mark.asyncio
    async def test_sentence_after_a_link_maps_to_its_source_text(self, tmp_path: Path) -> None:
        source = (
            "Intro see [the documentation page](https://example.com/a/very/long/path). "
            "Second sentence here.\n"
        )
        path = tmp_path / "linked.md"
        path.write_text(source, encoding="utf-8")

        chunks = await _make_chunker(max_tokens=5).chunk(MarkdownReader().read(path))

        assert [c.text for c in chunks] == [
            "Intro see the documentation page.",
            "Second sentence here.",
        ]
        first, last = chunks[0].sources[0], chunks[-1].sources[0]
        assert source[first.start_offset : first.end_offset] == (
            "Intro see [the documentation page](https://example.com/a/very/long/path)."
        )
        assert source[last.start_offset : last.end_offset] == "Second sentence here."

    @pytest.mark.asyncio
    async def test_blockquote_lines_map_past_their_markers(self, tmp_path: Path) -> None:
        source = "# Title\n\n> First [link](http://x) line.\n> Second line here.\n"
        path = tmp_path / "quote.md"
        path.write_text(source, encoding="utf-8")

        chunks = await _make_chunker(max_tokens=3).chunk(MarkdownReader().read(path))
        spans = [
            source[s.start_offset : s.end_offset] for chunk in chunks for s in chunk.sources
        ]

        assert spans == ["# Title", "First [link](http://x) line.", "Second line here."]
