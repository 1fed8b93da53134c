from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod"),
        extra="ignore",
    )

    # Gemini via its OpenAI-compatible endpoint
    gemini_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("gemini_api_key", "api_key")
    )
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    gemini_model: str = "gemini-2.5-flash"

    # Storage
    database_url: Optional[str] = None
    storage_key: str = "haulhelper_data_v1"
    session_key: str = "haulhelper_session_v1"
    store_latency_seconds: float = 0.6
    auth_latency_seconds: float = 1.0

    # Notifications
    notification_delay_scale: float = 1.0
    banner_dismiss_seconds: float = 6.0
    push_base_url: Optional[str] = None  # e.g. https://ntfy.sh
    push_topic: str = "haulhelper"
    push_auth: Optional[str] = None

    # Demo auth shim
    demo_auth: bool = True
    otp_length: int = 6
    otp_ttl_seconds: int = 300


@lru_cache()
def get_settings() -> Settings:
    return Settings()
