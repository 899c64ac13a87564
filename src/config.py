"""Application configuration loaded from environment variables."""

import logging
import sys
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "FitToday Health Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str | None = None  # postgres connection string for asyncpg
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout: int = 30

    # --- Sync scheduling ---
    max_concurrent_syncs: int = 5
    min_sync_interval_seconds: int = 900  # 15 minutes between full passes

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Install the root log handler. Call once at process startup."""
    s = settings or get_settings()
    logging.basicConfig(
        level=logging.DEBUG if s.debug else s.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
