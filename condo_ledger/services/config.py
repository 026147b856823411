"""Application configuration from environment variables."""

from decimal import Decimal

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./condo_ledger.db",
        description="SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Log file path")

    # Penalty policy defaults for new accounts
    default_grace_period_days: int = Field(
        default=10, description="Days after due date before penalties accrue"
    )
    default_penalty_rate_percent: Decimal = Field(
        default=Decimal("5"), description="Monthly compounding penalty rate (percent)"
    )

    # API
    api_title: str = Field(default="Condo Ledger API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")

    @field_validator("default_grace_period_days")
    @classmethod
    def _grace_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("default_grace_period_days must be >= 0")
        return value

    @field_validator("default_penalty_rate_percent")
    @classmethod
    def _rate_not_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("default_penalty_rate_percent must be >= 0")
        return value


# Global settings instance
settings = Settings()
