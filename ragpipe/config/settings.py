"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first):

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-...``
  2. A ``.env`` file in the working directory
  3. The defaults declared below

Field names map to upper-cased variable names (``max_tokens_per_chunk`` is
read from ``MAX_TOKENS_PER_CHUNK``).  The pipeline tunables here are only
*overrides*; :func:`ragpipe.config.loader.load_config` layers them on top of
the YAML file and only applies the ones that were explicitly set.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ragpipe runtime settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Model services ===
    # openai_base_url points the OpenAI client at any compatible endpoint,
    # e.g. GitHub Models at https://models.inference.ai.azure.com.
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_chat_model: str = "gpt-4.1"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_timeout_seconds: float = 60.0

    # === Tokenizer ===
    # HuggingFace hub id of a tokenizer.json; Xenova/gpt-4 is the cl100k vocabulary.
    tokenizer_model: str = "Xenova/gpt-4"
    tokenizer_file: str = ""

    # === Vector store ===
    chromadb_persist_dir: str = "./data/chromadb"

    # === Pipeline tunables (see PipelineConfig) ===
    max_tokens_per_chunk: int = 2000
    overlap_tokens: int = 0
    similarity_threshold: float = 0.5
    top_k: int = 3
    collection_name: str = "data"
    embedding_dimension: int = 1536
    max_embedding_retries: int = 3
    retry_backoff_seconds: float = 1.0
    incremental_ingestion: bool = True
    max_concurrent_enrichments: int = 5

    # === Sources ===
    source_directory: str = "./data"
    file_pattern: str = "*.md"
    enrichment_enabled: bool = True

    # === App Config ===
    config_path: str = "config/ragpipe.yaml"
    app_env: str = "development"
    log_level: str = "INFO"
