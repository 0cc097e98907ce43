from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .relevance import DEFAULT_EXCLUSIONS, DEFAULT_TOPIC

DEFAULT_BASE_URL = "https://www.sql.ru/forum/job-offers/"
DEFAULT_SITE_TZ = "Europe/Moscow"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

# Payload keys that must be present (the connection values from the config file)
REQUIRED_KEYS = ("driver", "url", "username", "password")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class Settings:
    """
    Canonical configuration for one 'vacancy_watch' run.

    Connection values (required):
        driver, url, username, password

    Crawl behavior (optional):
        base_url        listing root; page N is base_url + str(N)
        site_timezone   tz the forum prints its wall clock in (used for epoch ms)
        lookback_bound  consecutive stale rows tolerated before the crawl stops
        skip_rows       leading non-data rows on each listing page
        topic / exclusions  relevance filter terms
    """

    driver: str
    url: str
    username: str
    password: str = field(repr=False)

    base_url: str = DEFAULT_BASE_URL
    site_timezone: str = DEFAULT_SITE_TZ
    lookback_bound: int = 5
    skip_rows: int = 4
    topic: str = DEFAULT_TOPIC
    exclusions: tuple[str, ...] = DEFAULT_EXCLUSIONS

    # HTTP
    http_timeout: float = 15.0
    request_delay_seconds: float = 1.0
    http_retries: int = 0
    user_agent: str = DEFAULT_USER_AGENT
    page_encoding: str | None = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.site_timezone)

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from the scheduler payload with validation.

        Expected kwargs:
            driver, url, username, password: str   # required
            base_url: str
            site_timezone: str = "Europe/Moscow"
            lookback_bound: int = 5
            skip_rows: int = 4
            topic: str = "java"
            exclusions: list[str] | "a,b,c"
            http_timeout: float = 15
            request_delay_seconds: float = 1
            http_retries: int = 0
            user_agent: str
            page_encoding: str
        """
        kw = dict(kwargs or {})

        missing = [k for k in REQUIRED_KEYS if kw.get(k) is None or (k in ("driver", "url") and not str(kw[k]).strip())]
        if missing:
            raise ConfigError(f"Missing required connection value(s): {', '.join(missing)}")

        exclusions = kw.get("exclusions", DEFAULT_EXCLUSIONS)
        if isinstance(exclusions, str):
            exclusions = exclusions.split(",")
        if not isinstance(exclusions, (list, tuple)):
            raise ConfigError("'exclusions' must be a list or a comma-separated string.")

        try:
            settings = cls(
                driver=str(kw["driver"]).strip(),
                url=str(kw["url"]).strip(),
                username=str(kw["username"]).strip(),
                password=str(kw["password"]),
                base_url=str(kw.get("base_url") or DEFAULT_BASE_URL).strip(),
                site_timezone=str(kw.get("site_timezone") or DEFAULT_SITE_TZ).strip(),
                lookback_bound=int(kw.get("lookback_bound") if kw.get("lookback_bound") is not None else 5),
                skip_rows=int(kw.get("skip_rows") if kw.get("skip_rows") is not None else 4),
                topic=str(kw.get("topic") or DEFAULT_TOPIC),
                exclusions=tuple(str(e).strip() for e in exclusions if str(e).strip()),
                http_timeout=float(kw.get("http_timeout") or 15.0),
                request_delay_seconds=float(
                    kw.get("request_delay_seconds") if kw.get("request_delay_seconds") is not None else 1.0
                ),
                http_retries=int(kw.get("http_retries") or 0),
                user_agent=str(kw.get("user_agent") or DEFAULT_USER_AGENT),
                page_encoding=(str(kw["page_encoding"]).strip() or None) if kw.get("page_encoding") else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid vacancy_watch option: {e}") from e

        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _validate_settings(s: Settings) -> None:
    if s.lookback_bound < 1:
        raise ConfigError("'lookback_bound' must be >= 1.")
    if s.skip_rows < 0:
        raise ConfigError("'skip_rows' must be >= 0.")
    if s.http_timeout <= 0:
        raise ConfigError("'http_timeout' must be > 0.")
    if s.request_delay_seconds < 0:
        raise ConfigError("'request_delay_seconds' must be >= 0.")
    if s.http_retries < 0:
        raise ConfigError("'http_retries' must be >= 0.")
    if not s.topic.strip():
        raise ConfigError("'topic' cannot be empty.")
    if not s.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"'base_url' must be an http(s) URL (got {s.base_url!r}).")
    try:
        ZoneInfo(s.site_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown 'site_timezone': {s.site_timezone!r}") from e
