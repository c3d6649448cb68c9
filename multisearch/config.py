"""
Configuration module using Pydantic BaseSettings.
Reads from environment variables and .env file.
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Main configuration for the MultiSearch backend.
    All values can be overridden via environment variables or .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(
        default="127.0.0.1",
        description="Interface the HTTP server binds to",
    )
    port: int = Field(
        default=3000,
        description="HTTP listen port (env PORT)",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level for the server process",
    )

    data_dir: str = Field(
        default="data",
        description="Directory holding the history store file",
    )
    store_filename: str = Field(
        default="history.json",
        description="Name of the JSON history store inside data_dir",
    )
    public_dir: str = Field(
        default="public",
        description="Static site directory served at / when it exists",
    )

    flush_delay_sec: float = Field(
        default=0.15,
        description="Debounce window before the store is written to disk",
    )
    provider_timeout_sec: float = Field(
        default=1.5,
        description="Timeout for a single outbound suggestion request",
    )

    max_history: int = Field(
        default=1000,
        description="Maximum stored history entries per user",
    )
    recent_limit: int = Field(
        default=50,
        description="Entries returned by GET /api/history",
    )
    history_match_limit: int = Field(
        default=6,
        description="History matches merged into a suggestion response",
    )
    suggest_limit: int = Field(
        default=12,
        description="Maximum suggestions returned by GET /api/suggest",
    )
    default_engine: str = Field(
        default="google",
        description="Provider used when the request names none or an unknown one",
    )
    max_body_bytes: int = Field(
        default=64 * 1024,
        description="Largest accepted JSON request body",
    )

    @property
    def store_path(self) -> Path:
        """Full path of the backing store file."""
        return Path(self.data_dir) / self.store_filename


settings = Settings()
