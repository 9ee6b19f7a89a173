"""
Centralized application configuration.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Metagapura Portal"
    debug: bool = False

    # Database (Supabase Postgres)
    database_url: str = "sqlite:///./portal.db"
    # Schemas searched for unqualified table names (Postgres only)
    database_search_path: str = "citia_mora_datamart,test,public"
    # Create tables on startup - local development only, the datamart is owned by n8n
    database_auto_create: bool = False

    # N8N - campaign planning (multipart, basic auth)
    n8n_campaign_webhook_url: str = ""
    n8n_campaign_webhook_user: str = ""
    n8n_campaign_webhook_pass: str = ""

    # N8N - sync to Citia DB
    n8n_sync_webhook_url: str = ""
    n8n_webhook_username: str = ""
    n8n_webhook_password: str = ""

    # N8N - internal broadcast engine
    n8n_broadcast_webhook_url: str = ""

    # N8N - notes summary
    n8n_notes_webhook_url: str = ""
    n8n_notes_webhook_user: str = ""
    n8n_notes_webhook_pass: str = ""

    webhook_timeout_seconds: float = 30.0

    # Notes summary rate window
    summary_rate_limit_hours: int = 24

    # Supabase JWT verification
    supabase_jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = "authenticated"

    # Status polling
    status_poll_interval_seconds: float = 3.0
    status_poll_burst_seconds: float = 60.0
    status_poll_backoff_interval_seconds: float = 10.0
    status_history_limit: int = 100

    # Extra CORS origins, comma separated
    cors_origins: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get the cached application settings."""
    return Settings()
