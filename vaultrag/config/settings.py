"""Application settings loaded from environment variables via pydantic-settings.

Two sources, highest priority first:

1. Environment variables, e.g. ``DATABASE_URL=postgresql://...``
2. A ``.env`` file in the working directory (local development)

Field ``openai_api_key`` maps to ``OPENAI_API_KEY`` and so on.  Defaults
apply when neither source sets a value.  Chunk sizes and the relevance
threshold are empirical starting points, not tuned values.
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """vaultrag settings.

    Environment variables override defaults.  Loaded from .env when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding model ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, local gateway, ...)
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 0  # 0 = look up from the known-model table
    embedding_timeout_seconds: float = 15.0

    # === Primary store: PostgreSQL + pgvector ===
    # Empty string = "not configured"; search then goes straight to the flat file.
    database_url: str = ""
    pg_table: str = "document_fragments"
    pg_connect_timeout_seconds: int = 10
    ivfflat_min_rows: int = 10
    ivfflat_lists: int = 10

    # === Fallback store: flat JSON file ===
    vector_index_path: str = "data/vector-index.json"
    mirror_to_flat_file: bool = True

    # === Chunking / ingestion ===
    chunk_max_chars: int = 800
    chunk_overlap: int = 150
    min_document_chars: int = 50
    min_fragment_chars: int = 20
    preview_chars: int = 100
    vault_window_chars: int = 2000
    index_manifest_path: str = "data/index-manifest.json"
    max_upload_bytes: int = 20 * 1024 * 1024

    # === Search ===
    relevance_threshold: float = 0.3
    search_default_top_k: int = 5
    search_max_top_k: int = 20

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    @field_validator("pg_table")
    @classmethod
    def _check_table_name(cls, value: str) -> str:
        # Interpolated into DDL as an identifier, so keep it boring.
        if not value.replace("_", "").isalnum():
            raise ValueError(f"pg_table must be alphanumeric/underscore, got {value!r}")
        return value

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_max_chars:
            raise ValueError("chunk_overlap must be smaller than chunk_max_chars")
        return self

    def has_primary_store(self) -> bool:
        """Return ``True`` when a PostgreSQL connection string is configured."""
        return bool(self.database_url)
