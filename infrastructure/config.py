"""Application configuration loaded from the environment / .env file"""
from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings; every field can be overridden by an environment variable"""

    # API
    PROJECT_NAME: str = "Rental Booking API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    # Database
    DATABASE_URL: str = Field(
        "postgresql+asyncpg://postgres@localhost:5432/rentals",
        description="SQLAlchemy async URL",
    )
    DB_ECHO: bool = Field(False, description="Log SQL statements")
    DB_POOL_SIZE: int = Field(10, description="Connection pool size")
    DB_MAX_OVERFLOW: int = Field(20, description="Connections allowed above the pool size")
    DB_POOL_TIMEOUT: int = Field(30, description="Seconds to wait for a pooled connection")
    DB_QUERY_TIMEOUT: float = Field(10.0, description="Seconds before a repository call is abandoned")
    DB_CREATE_SCHEMA: bool = Field(False, description="Create missing tables on startup")

    # Booking
    DEFAULT_CURRENCY: str = Field("QAR", description="Currency used when none is given")
    SERVICE_FEE_RATE: Decimal = Field(Decimal("0.10"), description="Share of the booking total kept as service fee")

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings_instance = None


def get_settings() -> Settings:
    """Return the cached settings instance, loading it on first use"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
