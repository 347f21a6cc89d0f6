from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Bridge settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Shared secret every API caller must present as a bearer token
    INTERNAL_API_SECRET: str

    DATABASE_URL: str = "sqlite:///./data/whatsapp.db"

    LOG_LEVEL: str = "INFO"

    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Where the provider keeps its session files
    SESSION_DATA_PATH: str = "./whatsapp_session"

    RECONNECT_DELAY_SECONDS: float = 10.0

    # Envelopes a push subscriber may fall behind before it is dropped
    SUBSCRIBER_QUEUE_SIZE: int = 256

    # "package.module:callable" returning a MessagingProvider
    PROVIDER_FACTORY: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
