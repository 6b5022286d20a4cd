"""Configuration settings for the application."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Grok (xAI) enrichment API
    grok_api_key: Optional[str] = None
    grok_api_url: str = "https://api.x.ai/v1/chat/completions"
    grok_model: str = "grok-4-fast-non-reasoning"
    grok_timeout: float = 30.0

    # Google Places API (New) text search
    google_places_api_key: Optional[str] = None
    places_search_url: str = "https://places.googleapis.com/v1/places:searchText"
    places_timeout: float = 10.0

    # Redis Configuration (cross-run discovery lock)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    discovery_lock_enabled: bool = False
    discovery_lock_timeout: float = 120.0

    # FastAPI Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    # CORS Configuration
    frontend_url: str = "http://localhost:3000"

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./workhaven.db"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def has_grok_credentials(self) -> bool:
        return bool(self.grok_api_key and self.grok_api_key.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Global settings instance
settings = get_settings()
