from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    A .env file is read as a fallback; real environment variables win.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    CORS_ORIGIN: str = "http://localhost:5173"

    # Datastore - URL is required, the service key is applied as its password
    DATABASE_URL: str
    DATABASE_SERVICE_KEY: Optional[str] = None
    DATASTORE_TIMEOUT_SECONDS: float = 10.0

    RECIPIENT_CODE_LENGTH: int = 6

    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
