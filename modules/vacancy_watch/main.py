from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def validate(**kwargs: Any) -> Settings:
    """
    Check a scheduler payload without crawling.

    The service calls this once at startup so a bad option fails the process
    instead of every scheduled run. Raises lib.config.ConfigError.
    """
    return Settings.from_env_and_kwargs(kwargs)


def run(**kwargs: Any) -> dict:
    """
    Entry point for the 'vacancy_watch' module.

    Accepts kwargs (from scheduler/runner), including:
      driver: str      # "sqlite" | "postgresql" | ...
      url: str         # DB path / URI
      username: str
      password: str

      # Crawl tuning (optional)
      base_url: str = "https://www.sql.ru/forum/job-offers/"
      site_timezone: str = "Europe/Moscow"
      lookback_bound: int = 5
      skip_rows: int = 4
      topic: str = "java"
      exclusions: list[str]

    Returns:
      The crawl summary dict ({"added_count": ..., "stopped_by": ..., ...}).
    """
    settings = validate(**kwargs)

    log_activity({
        "component": "vacancy_watch.main",
        "op": "start",
        "driver": settings.driver,
        "base_url": settings.base_url,
        "topic": settings.topic,
    })

    return _run_engine(settings)
