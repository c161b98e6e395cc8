"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    database_url: str
    server_port: int = 8080
    trend_window_months: int = 3
    refresh_source_dir: Optional[str] = None
    refresh_delay_seconds: float = 0.0
    db_pool_max: int = 5


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    server_port = int(os.getenv("PORT", "8080"))
    trend_window_months = int(os.getenv("RANKD_TREND_WINDOW_MONTHS", "3"))
    refresh_source_dir = os.getenv("RANKD_REFRESH_SOURCE_DIR") or None
    refresh_delay_seconds = float(os.getenv("RANKD_REFRESH_DELAY_SECONDS", "0"))
    db_pool_max = int(os.getenv("RANKD_DB_POOL_MAX", "5"))

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if trend_window_months <= 0:
        logger.warning("RANKD_TREND_WINDOW_MONTHS=%s is not positive; using 3.", trend_window_months)
        trend_window_months = 3

    return Settings(
        database_url=database_url,
        server_port=server_port,
        trend_window_months=trend_window_months,
        refresh_source_dir=refresh_source_dir,
        refresh_delay_seconds=refresh_delay_seconds,
        db_pool_max=db_pool_max,
    )
