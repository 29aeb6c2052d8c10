from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""  # Optional: enables the deep-context model

    # Supabase (vector store + persistence); in-memory fallback when unset
    supabase_url: str = ""
    supabase_key: str = ""

    # Shared secret for the automation webhook (Bearer token)
    webhook_secret: str = ""

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Models
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    general_model: str = "gpt-4o"
    quick_model: str = "gpt-4o-mini"
    topic_model: str = "gpt-4o-mini"
    deep_model: str = "claude-3-5-haiku-20241022"
    use_deep_model: bool = True
    general_max_tokens: int = 4000
    deep_max_tokens: int = 6000
    quick_max_tokens: int = 200
    chat_max_tokens: int = 900
    analysis_temperature: float = 0.1
    chat_temperature: float = 0.2

    # Chunking (token estimates, ceil(chars / 4))
    chunk_target_tokens: int = 1500
    chunk_overlap_tokens: int = 200
    chunk_min_tokens: int = 800

    # Embeddings and rate limits
    embedding_batch_size: int = 20
    embedding_requests_per_second: float = 10.0
    topic_requests_per_second: float = 5.0
    llm_max_concurrency: int = 4

    # RAG cache
    rag_cache_ttl_seconds: int = 24 * 60 * 60

    # Timeouts (seconds)
    llm_timeout_seconds: float = 120.0
    index_timeout_seconds: float = 600.0
    analysis_timeout_seconds: float = 300.0
    consolidation_timeout_seconds: float = 300.0

    # Background processing
    pending_batch_size: int = 10
    job_max_retries: int = 0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def vector_store_configured(self) -> bool:
        """True when Supabase credentials look real (not blank or placeholder)."""
        if not self.supabase_url or not self.supabase_key:
            return False
        return "fake" not in self.supabase_url and "fake" not in self.supabase_key

    @property
    def deep_model_enabled(self) -> bool:
        return self.use_deep_model and bool(self.anthropic_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
