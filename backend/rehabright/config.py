"""Application configuration."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "RehabRight"
    debug: bool = False
    api_prefix: str = "/api"
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite+aiosqlite:///./rehabright.db"
    auto_create_tables: bool = True

    # Live sessions
    max_active_sessions: int = 100
    session_idle_timeout_seconds: float = 300.0  # 0 disables expiry

    # Session summary via text generation (numeric features only)
    enable_ai: bool = False
    ai_provider: str = "openai"  # "openai" or "gemini", anything else = template
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_url: str = "https://api.openai.com/v1/chat/completions"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    ai_max_tokens: int = 150
    ai_temperature: float = 0.7
    ai_timeout_seconds: float = 10.0

    # Voice cues
    voice_debounce_ms: float = 800.0
    voice_repeat_interval_ms: float = 2000.0  # Same message not repeated sooner
    voice_rate: int = 160

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
