"""
Runtime configuration, read from the environment (prefix EDUSYNC_) or .env.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PRESENCE_PALETTE = [
    "hsl(var(--primary))",
    "hsl(var(--secondary))",
    "hsl(var(--accent))",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#06b6d4",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EDUSYNC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "edusync"
    log_level: str = "INFO"

    # Relational store
    database_path: str = ":memory:"

    # LLM completion gateway
    llm_gateway_url: str = "https://ai.gateway.lovable.dev/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "google/gemini-2.5-flash"

    # Video rooms
    daily_api_url: str = "https://api.daily.co/v1"
    daily_api_key: Optional[str] = None

    # Payments
    stripe_secret_key: Optional[str] = None
    stripe_api_version: str = "2023-10-16"

    # Outbound HTTP; None keeps the client library default
    http_timeout: Optional[float] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
