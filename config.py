"""
Configuration management for the Document Intelligence Engine
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application Configuration
    app_name: str = "Document Intelligence Engine"
    app_version: str = "1.0.0"
    environment: str = "development"

    # Completion service (OpenAI-compatible chat completions endpoint)
    llm_api_key: Optional[str] = None
    llm_base_url: str = "https://api.groq.com/openai/v1/chat/completions"
    llm_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    llm_fallback_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    classification_model: str = "llama3-8b-8192"
    llm_max_output_tokens: int = 1024
    max_context_tokens: int = 3000
    request_timeout_seconds: float = 30.0
    llm_max_retries: int = 2
    llm_retry_base_delay: float = 1.0
    circuit_breaker_threshold: int = 3
    circuit_breaker_recovery_seconds: int = 60

    # Retrieval Configuration
    chunk_size: int = 1000
    chunk_overlap: int = 200
    retrieval_top_k: int = 3
    embedding_backend: str = "sentence-transformers"
    embedding_model: str = "paraphrase-multilingual-MiniLM-L12-v2"
    embedding_dimensions: int = 100
    embedding_fallback_enabled: bool = True
    embedding_batch_size: int = 32
    vector_index_backend: str = "memory"

    # Subject classification
    default_subject: str = "Uncategorized"
    external_subject: str = "External Resources"
    classification_word_budget: int = 1000
    classification_max_pages: int = 5

    # Quiz generation
    quiz_default_count: int = 3
    quiz_max_count: int = 26
    quiz_default_tone: str = "formal"

    # Ingestion
    max_concurrent_uploads: int = 1
    completed_item_grace_seconds: float = 3.0
    upload_chunk_size_bytes: int = 256 * 1024
    storage_directory: str = "./storage"

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "structured"
    log_file: Optional[str] = None


# Global settings instance
settings = Settings()
