"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables with SG_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="SG_",
        env_file=".env",
        case_sensitive=False,
    )

    app_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"
    cors_origins: list[str] = ["*"]

    # --- Rewards ---
    signup_bonus: int = 30
    referral_bonus: int = 50
    referral_code_prefix: str = "SG"
    referral_code_max_attempts: int = Field(default=5, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()
