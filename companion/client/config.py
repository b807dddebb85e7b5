"""Call client configuration."""
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

Platform = Literal["ios", "android", "desktop"]


class ClientSettings(BaseSettings):
    """Call client settings loaded from COMPANION_* environment variables."""

    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 60.0
    platform: Platform = "desktop"

    # Call lifecycle
    ring_min_seconds: float = 10.0
    ring_max_seconds: float = 15.0
    call_end_delay_seconds: float = 1.5
    free_call_limit_seconds: int = 1800
    warning_before_end_seconds: int = 60
    resume_listening_delay_seconds: float = 0.5
    error_retry_delay_seconds: float = 1.0
    history_limit: int = 20

    # Audio capture
    sample_rate: int = 16000
    status_interval_seconds: float = 0.1

    # Realtime streaming
    realtime_url: str = "wss://api.openai.com/v1/realtime"
    realtime_model: str = "gpt-4o-realtime-preview-2024-12-17"
    realtime_voice: str = "shimmer"
    realtime_sample_rate: int = 24000
    realtime_chunk_seconds: float = 0.25
    playback_min_base64_chars: int = 20000
    playback_min_chunks: int = 5
    playback_poll_seconds: float = 0.1
    playback_segment_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_prefix="COMPANION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
