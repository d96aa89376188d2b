"""Abstract base class for chat-completion service providers.

Enrichers use the chat client for summaries, keywords and image alt text.
Only text prompts are sent; no image bytes ever leave the process.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAILLMProvider (ragpipe/providers/llm/)
class ILLMProvider(ABC):
    """Contract for chat-completion services used by the enrichers."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        """Generate a text completion.

        Parameters
        ----------
        system_prompt:
            Instructions that set the model's role and output format.
        user_prompt:
            The content to operate on.
        temperature:
            Sampling temperature; low values keep enrichment output stable.
        max_tokens:
            Upper bound on the completion length.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        ragpipe.utils.errors.GenerationError
            If the API call fails or returns no content.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (does not call the API)."""

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Make a cheap authenticated call and report whether it succeeded."""
