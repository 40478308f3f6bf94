"""
Application settings for moqrelay.

This module defines all configuration settings for moqrelay using Pydantic BaseSettings.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings using Pydantic BaseSettings."""

    # Control channel (QUIC) settings
    control_host: str = Field(default="localhost", alias="MOQRELAY_CONTROL_HOST")
    control_port: int = Field(default=4242, alias="MOQRELAY_CONTROL_PORT")
    alpn_protocol: str = Field(default="moq-media-url-send", alias="MOQRELAY_ALPN")
    max_message_size: int = Field(default=4096, alias="MOQRELAY_MAX_MESSAGE_SIZE")
    keep_alive_period: float = Field(default=1.0, alias="MOQRELAY_KEEP_ALIVE_PERIOD")
    idle_timeout: float = Field(default=30.0, alias="MOQRELAY_IDLE_TIMEOUT")
    max_concurrent_streams: int = Field(default=64, alias="MOQRELAY_MAX_CONCURRENT_STREAMS")
    cert_file: str | None = Field(default=None, alias="MOQRELAY_CERT_FILE")
    key_file: str | None = Field(default=None, alias="MOQRELAY_KEY_FILE")

    # Relay broker and media pipeline settings
    relay_url: str = Field(default="https://localhost:4443", alias="MOQRELAY_RELAY_URL")
    ffmpeg_bin: str = Field(default="ffmpeg", alias="MOQRELAY_FFMPEG_BIN")
    moqrs_dir: str = Field(default="~/moq-rs", alias="MOQRELAY_MOQRS_DIR")
    moq_pub_bin: str | None = Field(default=None, alias="MOQRELAY_MOQ_PUB_BIN")  # default: <moqrs_dir>/target/release/moq-pub
    moq_sub_bin: str | None = Field(default=None, alias="MOQRELAY_MOQ_SUB_BIN")  # default: <moqrs_dir>/target/release/moq-sub
    subscribe_delay: float = Field(default=3.0, alias="MOQRELAY_SUBSCRIBE_DELAY")
    subscribe_duration: int = Field(default=10, alias="MOQRELAY_SUBSCRIBE_DURATION")
    termination_timeout: float = Field(default=5.0, alias="MOQRELAY_TERMINATION_TIMEOUT")

    # Playlist ingestion
    http_timeout: float = Field(default=15.0, alias="MOQRELAY_HTTP_TIMEOUT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="MOQRELAY_LOG_FORMAT")  # json|console
    env: str = Field(default="dev", alias="ENV")  # dev|prod|test

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",  # Ignore extra fields like PYTHONPATH from .env
    )


def _resolve_env_file() -> str | None:
    # 1) Explicit override
    explicit = os.getenv("MOQRELAY_ENV_FILE")
    if explicit and Path(explicit).is_file():
        return explicit

    # 2) CWD .env
    cwd_env = Path.cwd() / ".env"
    if cwd_env.is_file():
        return str(cwd_env)

    # 3) Walk up from this file to find nearest .env
    here = Path(__file__).resolve()
    for parent in here.parents:
        candidate = parent / ".env"
        if candidate.is_file():
            return str(candidate)
    return None


# Global settings instance (load from best-effort .env discovery)
_env_file = _resolve_env_file()
settings = Settings(_env_file=_env_file) if _env_file else Settings()  # type: ignore[call-arg]
