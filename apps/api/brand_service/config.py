from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", env_file=".env")

    app_name: str = "Brand Service"
    # Reported as `serviceName` on every run created in the runs-service.
    service_name: str = "brand-service"
    default_app_id: str = "mcpfactory"
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./brand_service.db"

    runs_service_url: str = "https://runs.mcpfactory.org"
    runs_service_api_key: str = ""
    runs_service_timeout_seconds: float = 15.0

    scraping_service_url: str = "http://localhost:3010"
    scraping_service_api_key: str = ""
    map_timeout_seconds: float = 30.0
    scrape_timeout_seconds: float = 60.0
    map_url_limit: int = Field(default=100, ge=1, le=500)
    max_selected_urls: int = Field(default=10, ge=1, le=50)
    scrape_concurrency: int = Field(default=5, ge=1, le=20)

    anthropic_base_url: str = "https://api.anthropic.com/v1"
    # Platform key; callers may bring their own per request.
    anthropic_api_key: str = ""
    anthropic_version: str = "2023-06-01"
    llm_timeout_seconds: float = 120.0

    extraction_cache_days: int = Field(default=30, ge=1)

    job_retention_seconds: int = Field(default=3600, ge=60)
    job_sweep_interval_seconds: int = Field(default=300, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
