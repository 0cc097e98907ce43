from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime


@dataclass(frozen=True)
class ListingRow:
    """
    One <tr> of a forum listing page, before filtering/normalization.
    Header and info rows come through with empty fields; the engine skips them by index.
    """

    title: str
    link: str
    raw_date: str


@dataclass(frozen=True)
class Posting:
    """
    A relevant, new vacancy ready for storage.
    Dedupe is performed by the store on `name` (UNIQUE column).
    """

    name: str
    body: str
    link: str
    published_at: datetime  # naive, site-local wall clock


@dataclass
class CrawlState:
    """Per-run mutable state of the crawl loop."""

    last_known: datetime
    consecutive_stale: int = 0
    added: int = 0


@dataclass
class CrawlSummary:
    """
    Counters describing one finished crawl.
    - stopped_by: "lookback" (bound of consecutive stale rows reached)
                  or "pages_exhausted" (ran out of pages first)
    """

    last_known: str
    added_count: int = 0
    duplicate_count: int = 0
    pages_scanned: int = 0
    rows_seen: int = 0
    stale_rows: int = 0
    skipped_rows: int = 0
    detail_fetches: int = 0
    stopped_by: str = "pages_exhausted"
    duration_us: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
