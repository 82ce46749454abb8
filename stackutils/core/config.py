import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Library settings"""
    model_config = SettingsConfigDict(
        env_prefix="STACKUTILS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = Field(default="stackutils")

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Log level used by setup_structured_logging"
    )
    log_json: bool = Field(
        default=True,
        description="Render structured logs as JSON instead of console output"
    )

    # Database connection pool settings
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before recreating connections"
    )
    db_pool_pre_ping: bool = Field(
        default=True,
        description="Validate connections before use"
    )

    # Async execution settings
    async_max_workers: Optional[int] = Field(
        default=None,
        description="Worker threads for execute_async (defaults to the pool size)"
    )

    # Resource names
    config_file_name: str = Field(
        default="mysql.yml",
        description="Name of the YAML connection settings file in the data directory"
    )
    bootstrap_resource: str = Field(
        default="database.sql",
        description="Packaged schema bootstrap script"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator('db_pool_timeout')
    @classmethod
    def validate_pool_timeout(cls, v):
        if v <= 0:
            raise ValueError("db_pool_timeout must be positive so pool checkout never waits forever")
        return v

    @field_validator('async_max_workers')
    @classmethod
    def validate_async_max_workers(cls, v):
        if v is not None and v < 1:
            raise ValueError("async_max_workers must be at least 1")
        return v


# Global settings instance
settings = Settings()
