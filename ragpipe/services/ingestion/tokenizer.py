"""Exact token counting backed by a HuggingFace ``tokenizers`` vocabulary.

Chunk budgets are enforced on real token counts, not on character
estimates.  The default vocabulary is ``Xenova/gpt-4`` (cl100k_base), the
one the GPT-4 family and ``text-embedding-3-*`` models use.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from tokenizers import Tokenizer

from ragpipe.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TOKENIZER_MODEL = "Xenova/gpt-4"


class TokenCounter:
    """Counts tokens with a loaded :class:`tokenizers.Tokenizer`.

    Special tokens are never added, so ``count(a + b)`` is close to
    ``count(a) + count(b)`` and counts match what the embedding API bills.
    """

    def __init__(self, tokenizer: Tokenizer, name: str = "custom") -> None:
        self._tokenizer = tokenizer
        self._name = name

    @classmethod
    def from_pretrained(cls, model_id: str = DEFAULT_TOKENIZER_MODEL) -> "TokenCounter":
        """Load ``tokenizer.json`` for *model_id* from the HuggingFace hub.

        Raises
        ------
        ConfigurationError
            If the tokenizer cannot be downloaded or parsed.  There is no
            heuristic fallback: an approximate count could silently break
            the chunk budget.
        """
        try:
            tokenizer = Tokenizer.from_pretrained(model_id)
        except Exception as exc:
            raise ConfigurationError(
                message=f"Could not load tokenizer '{model_id}': {exc}",
                provider_name="tokenizers",
            ) from exc
        logger.info("tokenizer_loaded", model=model_id)
        return cls(tokenizer, name=model_id)

    @classmethod
    def from_file(cls, path: str | Path) -> "TokenCounter":
        """Load a local ``tokenizer.json`` (useful for offline runs)."""
        try:
            tokenizer = Tokenizer.from_file(str(path))
        except Exception as exc:
            raise ConfigurationError(
                message=f"Could not load tokenizer file '{path}': {exc}",
                provider_name="tokenizers",
            ) from exc
        return cls(tokenizer, name=str(path))

    @property
    def name(self) -> str:
        return self._name

    def count(self, text: str) -> int:
        """Return the number of tokens in *text*."""
        if not text:
            return 0
        return len(self._tokenizer.encode(text, add_special_tokens=False).ids)

    def count_batch(self, texts: list[str]) -> list[int]:
        """Return token counts for *texts*, positionally."""
        if not texts:
            return []
        encodings = self._tokenizer.encode_batch(texts, add_special_tokens=False)
        return [len(e.ids) if t else 0 for e, t in zip(encodings, texts)]
