"""Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    debug: bool = False

    # Google Programmable Search
    google_search_api_key: str = ""
    google_search_engine_id: str = ""
    search_result_limit: int = 3
    search_cache_ttl: int = 3600
    validation_timeout: float = 5.0
    fetch_timeout: float = 30.0

    # Google AI Embeddings
    # Set GOOGLE_API_KEY for API key auth, otherwise uses Vertex AI ADC.
    google_api_key: str = ""
    gcp_project_id: str = ""
    gcp_location: str = "us-central1"
    embedding_model: str = "text-embedding-005"
    embedding_dimensions: int = 768
    embedding_batch_size: int = 50

    # Durable tier / Qdrant (":memory:" runs an in-process instance)
    qdrant_url: str = "http://localhost:6333"
    qdrant_collection: str = "pdf_documents"
    qdrant_api_key: str = ""

    # Query cache / Redis (empty url keeps the cache in process memory)
    redis_url: str = ""
    query_cache_ttl: int = 3600
    recent_searches_max: int = 10

    # Chunking and retrieval
    chunk_size: int = 1000
    chunk_overlap: int = 200
    large_document_page_threshold: int = 50
    page_group_size: int = 50
    ephemeral_top_k: int = 5
    durable_top_k: int = 10
    bulk_retrieve_limit: int = 100
    score_threshold: float | None = None

    # Semantic cache keys
    semantic_key_version: int = 1
    spacy_model: str = "en_core_web_sm"


settings = Settings()
