"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Works against api.openai.com and any OpenAI-compatible endpoint (GitHub
Models, Azure AI inference, ...) via ``openai_base_url``.
"""

from __future__ import annotations

import openai
import structlog

from ragpipe.config.settings import Settings
from ragpipe.interfaces.embedding_provider import IEmbeddingProvider
from ragpipe.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  For models
    not in the known-dimension table, ``settings.embedding_dimension`` is
    used and also requested from the API through ``dimensions``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.openai_timeout_seconds, connect=10.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        # The client refuses an empty key, so keyless providers get none.
        self._client = openai.AsyncOpenAI(**client_kwargs) if self._api_key else None
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, settings.embedding_dimension)
        # text-embedding-3-* can shorten vectors server-side.
        self._request_dimensions = (
            self._model.startswith("text-embedding-3")
            and settings.embedding_dimension != self._dimension
        )
        if self._request_dimensions:
            self._dimension = settings.embedding_dimension
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Automatically splits into batches of 2048 if the input exceeds the
        per-call limit.
        """
        if not texts:
            return []
        if self._client is None:
            raise EmbeddingError(
                message="OPENAI_API_KEY is not set",
                provider_name=self.get_provider_name(),
            )

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                kwargs: dict = {"input": batch, "model": self._model}
                if self._request_dimensions:
                    kwargs["dimensions"] = self._dimension
                response = await self._client.embeddings.create(**kwargs)
                # The API returns items tagged with their input index.
                ordered = sorted(response.data, key=lambda item: item.index)
                all_embeddings.extend(item.embedding for item in ordered)
                logger.debug(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
            return all_embeddings
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
