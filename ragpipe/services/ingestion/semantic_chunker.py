"""Semantic chunking: split a document where its topic shifts.

Splits a :class:`~ragpipe.models.document.Document` into
:class:`~ragpipe.models.rag.Chunk` objects that are both within a token
budget and semantically coherent.

The algorithm works on *units*, the atoms a chunk is built from:

1. **Unit extraction** -- text sections are split into sentences with an
   abbreviation-aware splitter; headings, code blocks, tables and image
   alt text are each a single unit.  Units are never split further, so a
   chunk boundary can only fall between two sentences or two blocks.

2. **Short-circuit** -- when the whole document fits in the budget it is
   returned as one chunk without a single embedding call.

3. **Greedy accumulation** -- all units are embedded in one batched call.
   Walking them in order, a unit joins the current chunk only if the
   joined text still fits the budget *and* its cosine similarity to the
   centroid of the chunk so far is at least ``similarity_threshold``.
   Otherwise the chunk is closed and a new one starts at that unit, seeded
   with trailing units of the previous chunk worth at most
   ``overlap_tokens``.

A unit that alone exceeds the budget is emitted as its own chunk with
``oversized=True``; it is never truncated.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import structlog

from ragpipe.models.document import Document, SectionType
from ragpipe.models.rag import Chunk, ChunkSource, make_chunk_id
from ragpipe.utils.errors import ChunkingError, EmbeddingError

if TYPE_CHECKING:
    from ragpipe.interfaces.embedding_provider import IEmbeddingProvider
    from ragpipe.services.ingestion.tokenizer import TokenCounter

logger = structlog.get_logger(logger_name=__name__)

_SENTENCE_SEPARATOR = " "
_SECTION_SEPARATOR = "\n\n"

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "vs",
        "etc",
        "approx",
        "e.g",
        "i.e",
        "Fig",
        "Vol",
        "Inc",
        "Ltd",
    }
)

# "No." only abbreviates "number" when a numeral follows.
_NUMBER_ABBREVIATION = re.compile(r"\bNo\.(?=\s*\d)")
# Initialisms such as U.S. or U.K.
_INITIALISM = re.compile(r"\b(?:[A-Z]\.){2,}")
_SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*(?=\s|$)")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class _Unit:
    """An atomic piece of text a chunk is assembled from."""

    text: str
    section_index: int
    start_offset: int
    end_offset: int
    tokens: int


class SemanticChunker:
    """Splits documents into token-bounded, topically coherent chunks.

    Parameters
    ----------
    embedding_provider:
        Used to embed units when the document does not fit in one chunk.
    token_counter:
        Exact tokenizer used for every budget decision.
    max_tokens_per_chunk:
        Hard upper bound on a chunk's token count (oversized units excepted).
    overlap_tokens:
        Token allowance for trailing units carried into the next chunk.
    similarity_threshold:
        Minimum cosine similarity between a unit and the current chunk's
        centroid for the unit to join it.  Ties stay in the current chunk.
    max_retries, retry_backoff_seconds:
        Extra attempts for the batched embedding call, with linear backoff.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        token_counter: TokenCounter,
        max_tokens_per_chunk: int = 2000,
        overlap_tokens: int = 0,
        similarity_threshold: float = 0.5,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
    ) -> None:
        if max_tokens_per_chunk <= 0:
            raise ValueError(f"max_tokens_per_chunk must be > 0, got {max_tokens_per_chunk}")
        if not 0 <= overlap_tokens < max_tokens_per_chunk:
            raise ValueError(
                f"overlap_tokens must be in [0, {max_tokens_per_chunk}), got {overlap_tokens}"
            )
        self._embedding_provider = embedding_provider
        self._counter = token_counter
        self._max_tokens = max_tokens_per_chunk
        self._overlap = overlap_tokens
        self._threshold = similarity_threshold
        self._max_retries = max(0, max_retries)
        self._backoff = retry_backoff_seconds

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chunk(self, document: Document) -> list[Chunk]:
        """Split *document* into chunks, in document order.

        Returns
        -------
        list[Chunk]
            Chunks with indices ``0..n-1``.  A document with no text
            returns an empty list.

        Raises
        ------
        ChunkingError
            If the units could not be embedded after all retries.
        """
        units = self._extract_units(document)
        if not units:
            logger.debug("chunking_skipped_empty", document_id=document.document_id)
            return []

        whole_tokens = self._counter.count(self._join(units))
        if whole_tokens <= self._max_tokens:
            chunks = [self._build_chunk(document.document_id, 0, units, whole_tokens, False)]
        else:
            embeddings = await self._embed_units(document.document_id, units)
            chunks = self._accumulate(document.document_id, units, embeddings)

        logger.debug(
            "chunking_complete",
            document_id=document.document_id,
            num_units=len(units),
            num_chunks=len(chunks),
            oversized=sum(1 for c in chunks if c.oversized),
        )
        return chunks

    # ------------------------------------------------------------------
    # Unit extraction
    # ------------------------------------------------------------------

    def _extract_units(self, document: Document) -> list[_Unit]:
        units: list[_Unit] = []
        for index, section in enumerate(document.sections):
            if section.section_type == SectionType.TEXT:
                for sentence, start, end in split_sentences(section.content):
                    text = _WHITESPACE.sub(" ", sentence)
                    source_start, source_end = section.source_span(start, end)
                    units.append(
                        _Unit(
                            text=text,
                            section_index=index,
                            start_offset=source_start,
                            end_offset=source_end,
                            tokens=self._counter.count(text),
                        )
                    )
                continue

            text = section.text_for_chunking()
            if not text:
                continue
            units.append(
                _Unit(
                    text=text,
                    section_index=index,
                    start_offset=section.start_offset,
                    end_offset=section.end_offset,
                    tokens=self._counter.count(text),
                )
            )
        return units

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def _embed_units(self, document_id: str, units: list[_Unit]) -> np.ndarray:
        """Embed every unit in one batched call, retrying on failure."""
        texts = [u.text for u in units]
        last_error: EmbeddingError | None = None

        for attempt in range(1, self._max_retries + 2):
            try:
                vectors = await self._embedding_provider.embed(texts)
                break
            except EmbeddingError as exc:
                last_error = exc
                logger.warning(
                    "chunking_embedding_failed",
                    document_id=document_id,
                    attempt=attempt,
                    max_attempts=self._max_retries + 1,
                    error=str(exc),
                )
                if attempt <= self._max_retries:
                    await asyncio.sleep(self._backoff * attempt)
        else:
            raise ChunkingError(
                message=(
                    f"Could not embed {len(texts)} units of '{document_id}' "
                    f"after {self._max_retries + 1} attempts: {last_error}"
                ),
                provider_name=self._embedding_provider.get_provider_name(),
            ) from last_error

        if len(vectors) != len(texts):
            raise ChunkingError(
                message=(
                    f"Embedding provider returned {len(vectors)} vectors "
                    f"for {len(texts)} units of '{document_id}'"
                ),
                provider_name=self._embedding_provider.get_provider_name(),
            )
        return np.asarray(vectors, dtype=np.float64)

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    def _accumulate(
        self, document_id: str, units: list[_Unit], embeddings: np.ndarray
    ) -> list[Chunk]:
        """Greedy walk over *units* honouring budget, similarity and overlap."""
        chunks: list[Chunk] = []
        # Indices into ``units`` of the chunk being built, and its token count.
        current: list[int] = []
        current_tokens = 0

        def close() -> None:
            nonlocal current, current_tokens
            if current:
                chunks.append(
                    self._build_chunk(
                        document_id,
                        len(chunks),
                        [units[i] for i in current],
                        current_tokens,
                        False,
                    )
                )
            current = []
            current_tokens = 0

        for i, unit in enumerate(units):
            if unit.tokens > self._max_tokens:
                close()
                chunks.append(
                    self._build_chunk(document_id, len(chunks), [unit], unit.tokens, True)
                )
                continue

            if not current:
                current = [i]
                current_tokens = unit.tokens
                continue

            candidate_tokens = self._counter.count(self._join([units[j] for j in current + [i]]))
            if candidate_tokens <= self._max_tokens and (
                self._similarity(embeddings[current], embeddings[i]) >= self._threshold
            ):
                current.append(i)
                current_tokens = candidate_tokens
                continue

            seed = self._overlap_seed(units, current)
            close()
            current, current_tokens = self._seed_chunk(units, seed, i)

        close()
        return chunks

    def _overlap_seed(self, units: list[_Unit], closed: list[int]) -> list[int]:
        """Return trailing indices of *closed* whose tokens sum to <= overlap."""
        if self._overlap <= 0:
            return []
        seed: list[int] = []
        total = 0
        for i in reversed(closed):
            if total + units[i].tokens > self._overlap:
                break
            seed.insert(0, i)
            total += units[i].tokens
        return seed

    def _seed_chunk(self, units: list[_Unit], seed: list[int], i: int) -> tuple[list[int], int]:
        """Start a chunk with *seed* followed by unit *i*, trimming the seed to fit."""
        while seed:
            tokens = self._counter.count(self._join([units[j] for j in seed + [i]]))
            if tokens <= self._max_tokens:
                return seed + [i], tokens
            seed = seed[1:]
        return [i], units[i].tokens

    @staticmethod
    def _similarity(current: np.ndarray, candidate: np.ndarray) -> float:
        """Cosine similarity between the centroid of *current* and *candidate*."""
        centroid = current.mean(axis=0)
        denom = float(np.linalg.norm(centroid) * np.linalg.norm(candidate))
        if denom == 0.0:
            return 0.0
        return float(np.dot(centroid, candidate) / denom)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _join(units: list[_Unit]) -> str:
        """Join units with a space inside a section and a blank line across sections."""
        parts: list[str] = []
        previous_section: int | None = None
        for unit in units:
            if previous_section is not None:
                parts.append(
                    _SENTENCE_SEPARATOR
                    if unit.section_index == previous_section
                    else _SECTION_SEPARATOR
                )
            parts.append(unit.text)
            previous_section = unit.section_index
        return "".join(parts)

    def _build_chunk(
        self,
        document_id: str,
        index: int,
        units: list[_Unit],
        token_count: int,
        oversized: bool,
    ) -> Chunk:
        sources: list[ChunkSource] = []
        for unit in units:
            if sources and sources[-1].section_index == unit.section_index:
                last = sources[-1]
                sources[-1] = ChunkSource(
                    section_index=last.section_index,
                    start_offset=min(last.start_offset, unit.start_offset),
                    end_offset=max(last.end_offset, unit.end_offset),
                )
            else:
                sources.append(
                    ChunkSource(
                        section_index=unit.section_index,
                        start_offset=unit.start_offset,
                        end_offset=unit.end_offset,
                    )
                )
        return Chunk(
            chunk_id=make_chunk_id(document_id, index),
            document_id=document_id,
            index=index,
            text=self._join(units),
            token_count=token_count,
            sources=sources,
            oversized=oversized,
        )


def split_sentences(text: str) -> list[tuple[str, int, int]]:
    """Split *text* at sentence boundaries while respecting abbreviations.

    Handles ``.``, ``!``, ``?`` (optionally followed by closing quotes or
    brackets) before whitespace or end-of-string.  Common abbreviations
    (Dr., e.g., etc.) do not trigger a split.

    Returns
    -------
    list[tuple[str, int, int]]
        ``(sentence, start, end)`` triples; offsets index into *text* and
        exclude surrounding whitespace.
    """
    # Mask periods after known abbreviations so they don't end a sentence.
    # '\x00' keeps the string length, so indices stay aligned with *text*.
    masked = text
    for abbr in _ABBREVIATIONS:
        masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)
    masked = _NUMBER_ABBREVIATION.sub("No\x00", masked)
    masked = _INITIALISM.sub(lambda m: m.group(0).replace(".", "\x00"), masked)

    spans: list[tuple[int, int]] = []
    last = 0
    for match in _SENTENCE_END.finditer(masked):
        spans.append((last, match.end()))
        last = match.end()
    spans.append((last, len(text)))

    sentences: list[tuple[str, int, int]] = []
    for start, end in spans:
        raw = text[start:end]
        stripped = raw.strip()
        if not stripped:
            continue
        lead = len(raw) - len(raw.lstrip())
        begin = start + lead
        sentences.append((stripped, begin, begin + len(stripped)))
    return sentences
