"""
Configuration for the GetSticky board server.

Settings are grouped per concern and loaded from environment variables
with one prefix per group:

- GETSTICKY_*       server (host, port, default board, bridge hosts)
- GETSTICKY_DB_*    SQLite graph database
- GETSTICKY_LLM_*   Claude backend (ANTHROPIC_API_KEY is honoured as well)
- GETSTICKY_LOG_*   logging
"""

import logging
from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Network and board defaults."""

    model_config = SettingsConfigDict(env_prefix="GETSTICKY_", extra="ignore")

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    default_board: str = Field(default="default", min_length=1, max_length=64)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    bridge_allowed_hosts: list[str] = Field(default_factory=lambda: ["127.0.0.1", "::1", "localhost"])


class DatabaseSettings(BaseSettings):
    """Durable graph store location."""

    model_config = SettingsConfigDict(env_prefix="GETSTICKY_DB_", extra="ignore")

    path: Path = Path("./getsticky-data/getsticky.db")
    busy_timeout: float = Field(default=5.0, gt=0.0, le=120.0)


class LLMSettings(BaseSettings):
    """Claude backend used by the query orchestrator."""

    model_config = SettingsConfigDict(env_prefix="GETSTICKY_LLM_", extra="ignore", populate_by_name=True)

    api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("GETSTICKY_LLM_API_KEY", "ANTHROPIC_API_KEY"),
    )
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = Field(default=4096, ge=1, le=64_000)
    base_url: str | None = None
    timeout: float = Field(default=60.0, gt=0.0)
    default_agent_name: str = Field(default="Claude", min_length=1, max_length=64)


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GETSTICKY_LOG_", extra="ignore")

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseModel):
    """All settings groups, accessible as settings.server, settings.llm, ..."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def configure_logging(config: LoggingSettings) -> None:
    """Configure root logging once for the server process."""
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.format)


settings = Settings()
