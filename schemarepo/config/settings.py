"""
Configuration Settings
======================

Centralized configuration using Pydantic V2 Settings.
"""

import json
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Connection
    db_driver: str = Field(default="postgresql+psycopg")
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432, gt=0)
    db_name: str = Field(default="postgres")
    db_sslmode: str = Field(default="disable")
    db_user: str = Field(default="postgres")
    db_password: str = Field(default="")
    db_schemas: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["public"])

    # Pool
    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=90, ge=0)
    db_pool_recycle: int = Field(default=1800)
    db_pool_timeout: float = Field(default=30.0, gt=0.0)
    db_pool_pre_ping: bool = Field(default=False)
    db_echo: bool = Field(default=False)

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("db_schemas", mode="before")
    @classmethod
    def split_schemas(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                v = json.loads(v)
            else:
                v = [part.strip() for part in v.split(",")]
        return [name for name in v if name]

    @field_validator("db_schemas")
    @classmethod
    def validate_schemas(cls, v: List[str]) -> List[str]:
        """At least one schema must be configured."""
        if not v:
            raise ValueError("db_schemas must name at least one schema")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {v!r}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings


def print_settings(current: Settings = None) -> None:
    """Print the active settings with the password masked."""
    current = current or settings
    for name, value in current.model_dump().items():
        if name == "db_password" and value:
            value = "********"
        print(f"{name:<20} {value}")
