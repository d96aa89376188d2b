"""Custom exception hierarchy for ragpipe.

All application exceptions inherit from :class:`RagPipeError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "chromadb", "markdown") caused the failure.

The hierarchy is organized by pipeline stage:

    RagPipeError  (base -- catch-all for any ragpipe error)
    +-- ReadError                (reading: source unreadable or malformed)
    +-- EmbeddingError           (embedding service call failed)
    +-- GenerationError          (chat-completion service call failed)
    +-- EnrichmentError          (best-effort enricher failed; recovered locally)
    +-- ChunkingError            (semantic split could not embed its units)
    +-- StoreError               (vector store write or search failed)
    +-- ConfigurationError       (startup / invalid config)
    +-- PipelineCancelledError   (document interrupted by the cancel signal)

Fatal errors (read, chunking, store) end processing of the current
document only; the orchestrator converts them into a failed
:class:`~ragpipe.models.pipeline.PipelineResult` and moves on.
"""


class RagPipeError(Exception):
    """Base exception for all ragpipe errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets for
    structured log output, e.g. ``[openai_embedding] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

class ReadError(RagPipeError):
    """Raised when a source file cannot be read or parsed into a Document."""

    def __init__(
        self,
        message: str = "Failed to read source document",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Model service errors
# ---------------------------------------------------------------------------

class EmbeddingError(RagPipeError):
    """Raised when the embedding service fails or returns malformed vectors."""

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class GenerationError(RagPipeError):
    """Raised when a chat-completion call fails or returns an empty response."""

    def __init__(
        self,
        message: str = "Chat completion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Transformation errors
# ---------------------------------------------------------------------------

class EnrichmentError(RagPipeError):
    """Raised when a document or chunk enricher fails.

    Never fatal: the enrichment boundary logs it and passes the input
    through unchanged.
    """

    def __init__(
        self,
        message: str = "Enrichment failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ChunkingError(RagPipeError):
    """Raised when the semantic chunker cannot embed the units it must compare."""

    def __init__(
        self,
        message: str = "Semantic chunking failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------

class StoreError(RagPipeError):
    """Raised when a vector store write, delete or search fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(RagPipeError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PipelineCancelledError(RagPipeError):
    """Raised when the cancel signal interrupts a document before it is written."""

    def __init__(
        self,
        message: str = "Ingestion cancelled",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
