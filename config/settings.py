"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote table source
    tables_base_url: str = "http://localhost:8081/tables"
    tables_api_key: Optional[str] = None
    tables_request_timeout: float = 30.0
    tables_retry_attempts: int = 3

    # Cache settings
    table_cache_ttl_seconds: int = 1200
    subjects_cache_ttl_seconds: Optional[int] = 360
    cache_max_entries: Optional[int] = None
    # None lets waiters block for as long as the in-flight fetch takes
    coalesce_timeout_seconds: Optional[float] = None

    # CSC wiki notifications
    wiki_service_url: str = "https://api.test.projects-cabinet.ru/wiki/"
    wiki_request_timeout: float = 10.0

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
