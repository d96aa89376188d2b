"""LLM-backed chunk enrichers: summaries and keywords.

Both enrichers return a new :class:`~ragpipe.models.rag.Chunk` with an
extra ``metadata`` entry; the chunk text itself is never changed, so the
embedding still represents the original passage.  Failures raise and are
absorbed by the enrichment boundary.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

import structlog

from ragpipe.interfaces.enricher import IChunkEnricher
from ragpipe.utils.errors import EnrichmentError

if TYPE_CHECKING:
    from ragpipe.interfaces.llm_provider import ILLMProvider
    from ragpipe.models.rag import Chunk

logger = structlog.get_logger(logger_name=__name__)

# Chunk text sent to the model is capped; summaries of the head are good enough.
_MAX_PROMPT_CHARS = 6000

_SUMMARY_SYSTEM_PROMPT = (
    "You write short, factual summaries of document passages for a search index."
)

_SUMMARY_USER_PROMPT = """\
Summarize the following passage in at most {max_words} words.
Return only the summary, without a preamble.

Passage:
{text}"""

_KEYWORD_SYSTEM_PROMPT = "You are a metadata extraction assistant for a document search index."

_KEYWORD_USER_PROMPT = """\
Extract up to {max_keywords} keywords or key phrases from this passage.
Return JSON: {{"keywords": [...]}}
Only include terms that appear in or are clearly implied by the text.

Passage:
{text}"""


class SummaryEnricher(IChunkEnricher):
    """Adds ``metadata["summary"]``: a short abstract of the chunk."""

    def __init__(self, llm: ILLMProvider, max_words: int = 100) -> None:
        self._llm = llm
        self._max_words = max_words

    async def enrich(self, chunk: Chunk) -> Chunk:
        response = await self._llm.complete(
            system_prompt=_SUMMARY_SYSTEM_PROMPT,
            user_prompt=_SUMMARY_USER_PROMPT.format(
                max_words=self._max_words, text=chunk.text[:_MAX_PROMPT_CHARS]
            ),
            temperature=0.2,
            max_tokens=self._max_words * 3,
        )
        summary = " ".join(response.split())
        if not summary:
            raise EnrichmentError(
                message="Empty summary response",
                provider_name=self._llm.get_provider_name(),
            )
        return chunk.model_copy(update={"metadata": {**chunk.metadata, "summary": summary}})


class KeywordEnricher(IChunkEnricher):
    """Adds ``metadata["keywords"]``: a comma-separated keyword list."""

    def __init__(self, llm: ILLMProvider, max_keywords: int = 5) -> None:
        self._llm = llm
        self._max_keywords = max_keywords

    async def enrich(self, chunk: Chunk) -> Chunk:
        response = await self._llm.complete(
            system_prompt=_KEYWORD_SYSTEM_PROMPT,
            user_prompt=_KEYWORD_USER_PROMPT.format(
                max_keywords=self._max_keywords, text=chunk.text[:_MAX_PROMPT_CHARS]
            ),
            temperature=0.1,
            max_tokens=300,
        )
        keywords = self._parse_response(response)[: self._max_keywords]
        logger.debug("keywords_extracted", chunk_id=chunk.chunk_id, count=len(keywords))
        return chunk.model_copy(
            update={"metadata": {**chunk.metadata, "keywords": ", ".join(keywords)}}
        )

    @staticmethod
    def _parse_response(response: str) -> list[str]:
        """Parse the model's JSON reply into a de-duplicated keyword list.

        Accepts clean JSON, JSON inside a markdown fence, or JSON embedded
        in prose.  Anything else raises :class:`EnrichmentError`.
        """
        cleaned = response.strip()

        fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
        if fence_match:
            cleaned = fence_match.group(1).strip()
        else:
            brace_start = cleaned.find("{")
            brace_end = cleaned.rfind("}")
            if brace_start != -1 and brace_end > brace_start:
                cleaned = cleaned[brace_start : brace_end + 1]

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise EnrichmentError(message=f"Unparseable keyword response: {exc}") from exc

        raw = data.get("keywords") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            raise EnrichmentError(message="Keyword response has no 'keywords' list")

        seen: set[str] = set()
        keywords: list[str] = []
        for item in raw:
            if not isinstance(item, str):
                continue
            keyword = item.strip()
            if keyword and keyword.lower() not in seen:
                seen.add(keyword.lower())
                keywords.append(keyword)
        return keywords
