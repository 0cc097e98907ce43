# modules/vacancy_watch/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .dates import RU_LOCALE, DateFormatError, DateLocale, DateNormalizer
from .db import PostingStore, SqlPostingStore, StorageConnectionError, StorageError
from .engine import CrawlEngine, run_once
from .fetcher import FetchError, PageFetcher, SqlRuFetcher
from .models import CrawlSummary, ListingRow, Posting
from .relevance import RelevanceFilter

__all__ = [
    "RU_LOCALE",
    "ConfigError",
    "CrawlEngine",
    "CrawlSummary",
    "DateFormatError",
    "DateLocale",
    "DateNormalizer",
    "FetchError",
    "ListingRow",
    "PageFetcher",
    "Posting",
    "PostingStore",
    "RelevanceFilter",
    "Settings",
    "SqlPostingStore",
    "SqlRuFetcher",
    "StorageConnectionError",
    "StorageError",
    "run_once",
]
