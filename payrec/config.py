# payrec/config.py

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Payrec API"
    app_env: str = "development"
    debug: bool = True
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # Storage
    storage_backend: str = "supabase"  # or "memory"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""

    # Matching policy
    fuzzy_min_overlap: float = 0.5
    fuzzy_confident_overlap: float = 0.75
    fuzzy_margin: float = 0.1
    alias_confidence: float = 1.0
    exact_confidence: float = 0.9
    max_candidates: int = 5
    payer_stopwords: list[str] = []

    # Money
    default_currency: str = "ARS"

    # Stripe webhooks
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_school_id_metadata_key: str = "school_id"

    # Issuer worker
    issuer_url: str = ""
    issuer_api_key: str = ""
    issuer_timeout_seconds: float = 15.0
    issuer_max_retries: int = 3
    issuer_batch_size: int = 50
    worker_secret: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
