"""Configuration management for the ClickUp listener."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./clickup_listener.db"

    # Webhook
    signature_header: str = "X-Signature"

    # YAML file with webhook configurations to seed on startup
    configurations_file: str = "clickup_configs.yaml"

    # App
    log_level: str = "INFO"
    env: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
