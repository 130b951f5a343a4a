from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings with environment variable support (SNTP_*)"""

    SERVER: str = "us.pool.ntp.org:123"
    TIMEOUT: float = 5.0  # seconds
    RETRIES: int = 1

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_PATH: Optional[str] = None

    class Config:
        env_prefix = "SNTP_"
        env_file = ".env"
        case_sensitive = True

    @field_validator("TIMEOUT")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("TIMEOUT must be positive")
        return value

    @field_validator("RETRIES")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("RETRIES must be at least 1")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value}")
        return value


# Global settings instance
settings = Settings()
