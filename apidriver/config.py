# apidriver/config.py
import logging
from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized, env-driven configuration for API scripts.
    Override via APIDRIVER_* environment variables or a .env file at repo root.
    """
    root_url: str = Field(default="")
    default_headers: Dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )
    request_timeout_s: float = Field(default=30.0)
    verify_ssl: bool = Field(default=True)
    follow_redirects: bool = Field(default=True)
    poll_delay_ms: float = Field(default=10.0, ge=0)
    poll_timeout_ms: float = Field(default=10000.0, ge=0)
    trace: bool = Field(default=False)  # stash/dispatch tracing at DEBUG
    log_level: str = Field(default="INFO")
    reports_dir: str = Field(default="reports")
    enable_step_logs: bool = Field(default=False)

    # Pydantic v2 config: ignore unknown envs, load .env in UTF-8
    model_config = SettingsConfigDict(
        env_prefix="APIDRIVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the configured level with the standard log format."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.trace:
        logging.getLogger("apidriver").setLevel(logging.DEBUG)
