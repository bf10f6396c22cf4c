"""Application configuration from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Listener
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=0, le=65535)

    # Seconds to wait for in-flight requests once shutdown starts
    shutdown_grace_period: float = Field(default=5.0, gt=0)

    # App settings
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")

    model_config = {
        "env_prefix": "OKSERVICE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
