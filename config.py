from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional
from functools import lru_cache
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "Transaction Ledger"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging settings
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Ledger settings
    error_policy: Literal["halt", "skip"] = "halt"  # skip = log rejected records and continue

    # Output settings
    sort_output: bool = True
    amount_precision: Optional[int] = Field(None, ge=0, le=20)  # None = shortest round-trip
    csv_delimiter: str = Field(",", min_length=1, max_length=1)

    # Security settings
    rate_limit_per_minute: int = 30
    max_request_size: int = 1024 * 1024  # 1MB

    @property
    def skip_rejected(self) -> bool:
        return self.error_policy == "skip"


# Presets selected by APP_ENV; explicit environment variables still win
class DevelopmentSettings(Settings):
    debug: bool = True
    log_level: str = "DEBUG"
    log_format: Literal["json", "text"] = "text"
    error_policy: Literal["halt", "skip"] = "skip"
    rate_limit_per_minute: int = 100


class ProductionSettings(Settings):
    debug: bool = False
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    error_policy: Literal["halt", "skip"] = "halt"
    rate_limit_per_minute: int = 30


class TestingSettings(Settings):
    debug: bool = True
    log_level: str = "WARNING"
    log_format: Literal["json", "text"] = "text"
    rate_limit_per_minute: int = 1000


SETTINGS_BY_ENVIRONMENT = {
    "development": DevelopmentSettings,
    "production": ProductionSettings,
    "testing": TestingSettings,
}


def get_settings_for_environment(env: str) -> Settings:
    """Build the preset for ``env``; unknown or empty names give the plain defaults."""
    settings_class = SETTINGS_BY_ENVIRONMENT.get(env.strip().lower(), Settings)
    return settings_class()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings for the environment named by APP_ENV."""
    return get_settings_for_environment(os.environ.get("APP_ENV", ""))
