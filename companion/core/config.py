"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    generation_model: str = "gpt-4o-mini"
    generation_max_tokens: int = 80
    generation_temperature: float = 0.7
    presence_penalty: float = 0.6
    frequency_penalty: float = 0.4
    realtime_model: str = "gpt-4o-realtime-preview-2024-12-17"
    realtime_voice: str = "shimmer"

    # Speech synthesis providers
    elevenlabs_api_key: str = ""
    elevenlabs_model: str = "eleven_turbo_v2_5"
    sarvam_api_key: str = ""
    synthesis_timeout_seconds: float = 30.0

    # Database
    database_url: str

    # Auth (bearer JWT issued by the identity provider)
    auth_jwt_secret: str
    auth_jwt_issuer: Optional[str] = None

    # Conversation
    max_history_messages: int = 10

    # Usage budgets
    free_tier_daily_limit_seconds: int = 1800
    max_call_duration_seconds: int = 7200
    subscription_grace_days: int = 3

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
