# service/config_schema.py
from __future__ import annotations

import importlib
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config file is missing, unreadable or incomplete."""


# canonical key -> accepted spellings (first match wins)
_REQUIRED_KEYS: dict[str, tuple[str, ...]] = {
    "db.driver": ("db.driver", "jdbc.driver"),
    "db.url": ("db.url", "jdbc.url"),
    "db.username": ("db.username", "jdbc.username"),
    "db.password": ("db.password", "jdbc.password"),
    "cron.time": ("cron.time", "cron"),
}

# present but blank is fine (sqlite has no credentials)
_MAY_BE_EMPTY = {"db.username", "db.password"}

# optional config key -> vacancy_watch kwarg
_CRAWL_OPTIONS: dict[str, str] = {
    "site.base_url": "base_url",
    "site.timezone": "site_timezone",
    "crawl.lookback_bound": "lookback_bound",
    "crawl.skip_rows": "skip_rows",
    "crawl.topic": "topic",
    "crawl.exclusions": "exclusions",
    "http.timeout_sec": "http_timeout",
    "http.delay_sec": "request_delay_seconds",
    "http.retries": "http_retries",
    "http.user_agent": "user_agent",
    "http.encoding": "page_encoding",
}


@dataclass(frozen=True)
class AppConfig:
    """
    Validated service configuration.

    The five required values are always present; only username and password may be empty.
    `crawl` holds optional vacancy_watch kwargs, already renamed.
    """

    driver: str
    url: str
    username: str
    password: str = field(repr=False)
    cron: str = ""
    timezone: str = "UTC"
    log_level: str = "INFO"
    module: str = "modules.vacancy_watch"
    crawl: Mapping[str, Any] = field(default_factory=dict)
    source: str = ""

    def job_payload(self) -> dict[str, Any]:
        """kwargs handed to the scheduled module on every run."""
        return {
            "driver": self.driver,
            "url": self.url,
            "username": self.username,
            "password": self.password,
            **dict(self.crawl),
        }


def load_config(path: str | None = None) -> AppConfig:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument
      2) os.environ['CONFIG_PATH']

    Supported formats: .json, .yml/.yaml, .properties (key=value). Nested
    JSON/YAML objects are flattened with dots ({"db": {"url": ...}} -> "db.url").

    Raises ConfigError on a missing/unreadable file or missing required keys.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        raise ConfigError("No configuration file given (pass a path or set CONFIG_PATH).")

    flat = _flatten(_read_any(resolved_path))
    cfg = _build(flat, source=resolved_path)
    logger.info("Loaded config from %s (driver=%s, cron=%r)", resolved_path, cfg.driver, cfg.cron)
    return cfg


def validate_payload(cfg: AppConfig) -> None:
    """
    Let the scheduled module check its own options before anything is scheduled.

    Calls `<cfg.module>.validate(**cfg.job_payload())` when the module defines it.
    Raises ConfigError if the module cannot be imported or rejects the payload.
    """
    try:
        mod = importlib.import_module(cfg.module)
    except ImportError as e:
        raise ConfigError(f"Cannot import module {cfg.module!r}: {e}") from e

    check = getattr(mod, "validate", None)
    if not callable(check):
        return
    try:
        check(**cfg.job_payload())
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid options for {cfg.module} in {cfg.source}: {e}") from e


# ---- Internal helpers --------------------------------------------------------


def _build(flat: dict[str, Any], *, source: str) -> AppConfig:
    values: dict[str, str] = {}
    missing: list[str] = []
    for canonical, spellings in _REQUIRED_KEYS.items():
        found = next((flat[k] for k in spellings if k in flat and flat[k] is not None), None)
        if found is None or (canonical not in _MAY_BE_EMPTY and not str(found).strip()):
            missing.append(canonical)
            continue
        values[canonical] = str(found) if canonical == "db.password" else str(found).strip()
    if missing:
        raise ConfigError(f"Missing required key(s) in {source}: {', '.join(missing)}")

    crawl = {kw: flat[key] for key, kw in _CRAWL_OPTIONS.items() if key in flat and flat[key] not in (None, "")}

    tz = flat.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        tz = os.environ.get("TZ", "UTC")

    return AppConfig(
        driver=values["db.driver"],
        url=values["db.url"],
        username=values["db.username"],
        password=values["db.password"],
        cron=values["cron.time"],
        timezone=tz.strip(),
        log_level=str(flat.get("log_level") or "INFO").upper(),
        module=str(flat.get("module") or "modules.vacancy_watch"),
        crawl=crawl,
        source=source,
    )


def _flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in data.items():
        key = f"{prefix}{k}"
        if isinstance(v, Mapping):
            out.update(_flatten(v, prefix=f"{key}."))
        else:
            out[key] = v
    return out


def _read_any(path: str) -> dict[str, Any]:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".json"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        return _require_mapping(data, path)

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        return _require_mapping(data or {}, path)

    if lower.endswith(".properties"):
        return _parse_properties(text)

    # Unknown extension: JSON first, then key=value
    try:
        return _require_mapping(json.loads(text), path)
    except json.JSONDecodeError:
        return _parse_properties(text)


def _require_mapping(data: Any, path: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    return data


def _parse_properties(text: str) -> dict[str, str]:
    """Minimal Java .properties reader: key=value or key: value, '#'/'!' comments."""
    out: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line[0] in "#!":
            continue
        seps = [i for i in (line.find("="), line.find(":")) if i > 0]
        if not seps:
            out[line] = ""
            continue
        i = min(seps)
        out[line[:i].strip()] = line[i + 1:].strip()
    return out
