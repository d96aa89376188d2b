"""OpenAI-compatible chat-completion provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When ``openai_base_url`` is configured (e.g. GitHub Models at
``https://models.inference.ai.azure.com``) the client points at that
endpoint instead of api.openai.com; the rest of the pipeline never imports
``openai`` directly.
"""

from __future__ import annotations

import openai
import structlog

from ragpipe.config.settings import Settings
from ragpipe.interfaces.llm_provider import ILLMProvider
from ragpipe.utils.errors import GenerationError

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """Chat provider backed by an OpenAI-compatible API (``gpt-4.1`` by default)."""

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
        self._model = settings.openai_chat_model or "gpt-4.1"
        self._timeout = settings.openai_timeout_seconds
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        """Generate a text completion via the chat completions API."""
        if self._client is None:
            raise GenerationError(
                message="OPENAI_API_KEY is not set",
                provider_name=self.get_provider_name(),
            )
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
            content = response.choices[0].message.content if response.choices else None
            if content is None:
                raise GenerationError(
                    message=f"{self._provider_label} returned empty response",
                    provider_name=self.get_provider_name(),
                )
            logger.debug(
                "openai_completion",
                model=self._model,
                provider=self._provider_label,
                tokens=response.usage.total_tokens if response.usage else None,
            )
            return content
        except openai.APITimeoutError as exc:
            raise GenerationError(
                message=f"{self._provider_label} timed out after {self._timeout:g}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise GenerationError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """List models to check the API key is accepted, without inference cost."""
        if not self.is_available() or self._client is None:
            return False
        try:
            await self._client.models.list()
            return True
        except openai.APIError:
            return False

    def get_provider_name(self) -> str:
        return self._provider_label
