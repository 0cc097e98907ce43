"""
Incremental crawl of the vacancy forum.

Features:
  - Resume from the newest stored vacancy (or Jan 1 of the current year on a first run)
  - Early stop after `lookback_bound` consecutive rows that are not newer than that cutoff
  - Locale date normalization + topic filter per row
  - Dependency injection for testability (`fetcher`, `store_factory`, `clock`)
  - Structured activity/error records via `logging_bridge`
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from . import logging_bridge
from .config import Settings
from .dates import DateFormatError, DateLocale, DateNormalizer, RU_LOCALE, from_millis, start_of_year
from .db import PostingStore, SqlPostingStore
from .fetcher import FetchError, PageFetcher, SqlRuFetcher
from .models import CrawlState, CrawlSummary, ListingRow, Posting
from .relevance import RelevanceFilter

LOG = logging.getLogger(__name__)


# =============================================================================
# CRAWL ENGINE
# =============================================================================
class CrawlEngine:
    """
    One sequential pass over the listing pages.

    Row order matters: the stale counter is "consecutive", so pages and rows are
    walked strictly in site order and the counter is carried across page boundaries.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        store: PostingStore,
        normalizer: DateNormalizer,
        relevance: RelevanceFilter,
        *,
        lookback_bound: int = 5,
        skip_rows: int = 4,
        tz: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if lookback_bound < 1:
            raise ValueError("lookback_bound must be >= 1")
        self.fetcher = fetcher
        self.store = store
        self.normalizer = normalizer
        self.relevance = relevance
        self.lookback_bound = lookback_bound
        self.skip_rows = skip_rows
        self.tz = tz or ZoneInfo("UTC")
        self._clock = clock or (lambda: datetime.now(self.tz))

    def today(self) -> date:
        return self._clock().date()

    def last_known(self) -> datetime:
        """Newest stored publish time; Jan 1 00:00 of the current year for an empty store."""
        ms = self.store.latest_timestamp()
        if not ms:
            return start_of_year(self.today())
        return from_millis(ms, self.tz)

    def run(self) -> CrawlSummary:
        t0 = time.perf_counter_ns()
        today = self.today()
        state = CrawlState(last_known=self.last_known())
        summary = CrawlSummary(last_known=state.last_known.isoformat())
        LOG.info("Crawl start: cutoff=%s lookback_bound=%d", summary.last_known, self.lookback_bound)

        total = self.fetcher.total_pages()
        page = 1
        while page < total and state.consecutive_stale < self.lookback_bound:
            rows = self.fetcher.fetch_page(page)
            summary.pages_scanned += 1
            for index, row in enumerate(rows[self.skip_rows:], start=self.skip_rows):
                if state.consecutive_stale >= self.lookback_bound:
                    break
                self._visit(row, page, index, today, state, summary)
            page += 1

        summary.added_count = state.added
        summary.stopped_by = "lookback" if state.consecutive_stale >= self.lookback_bound else "pages_exhausted"
        summary.duration_us = int((time.perf_counter_ns() - t0) // 1000)
        LOG.info(
            "Crawl done: added=%d pages=%d/%d stopped_by=%s",
            summary.added_count,
            summary.pages_scanned,
            total,
            summary.stopped_by,
        )
        return summary

    # -------------------------------------------------------------------------
    # ONE ROW
    # -------------------------------------------------------------------------
    def _visit(
        self,
        row: ListingRow,
        page: int,
        index: int,
        today: date,
        state: CrawlState,
        summary: CrawlSummary,
    ) -> None:
        summary.rows_seen += 1
        try:
            published = self.normalizer.normalize(row.raw_date, today)
        except DateFormatError as e:
            # Neither old nor new: leaves the stale counter alone.
            summary.skipped_rows += 1
            logging_bridge.error({
                "component": "vacancy_watch.engine",
                "op": "normalize_date",
                "page": page,
                "row": index,
                "raw_date": row.raw_date,
                "title": row.title,
                "error": str(e),
            })
            return

        if published <= state.last_known:
            state.consecutive_stale += 1
            summary.stale_rows += 1
            return

        state.consecutive_stale = 0
        if not self.relevance.is_relevant(row.title):
            return

        body = self.fetcher.fetch_detail(row.link)
        summary.detail_fetches += 1
        posting = Posting(name=row.title, body=body, link=row.link, published_at=published)
        if self.store.insert(posting):
            state.added += 1
            LOG.info("Added vacancy [%s]: %s", published.strftime("%d.%m.%y %H:%M"), posting.name)
        else:
            summary.duplicate_count += 1


# =============================================================================
# PRODUCTION WIRING
# =============================================================================
def _default_store(settings: Settings) -> PostingStore:
    return SqlPostingStore.connect(
        settings.driver,
        settings.url,
        settings.username,
        settings.password,
        tz=settings.tz,
    )


def build_engine(
    settings: Settings,
    fetcher: PageFetcher,
    store: PostingStore,
    *,
    locale: DateLocale = RU_LOCALE,
    clock: Callable[[], datetime] | None = None,
) -> CrawlEngine:
    return CrawlEngine(
        fetcher,
        store,
        DateNormalizer(locale),
        RelevanceFilter(settings.topic, settings.exclusions),
        lookback_bound=settings.lookback_bound,
        skip_rows=settings.skip_rows,
        tz=settings.tz,
        clock=clock,
    )


def run_once(
    settings: Settings,
    *,
    fetcher: PageFetcher | None = None,
    store_factory: Callable[[Settings], PostingStore] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> dict:
    """
    Run one complete crawl cycle.

    Args:
        settings: validated module settings (connection values + crawl options).
        fetcher: optional PageFetcher override (tests); default SqlRuFetcher.
        store_factory: optional PostingStore factory (tests); default SqlPostingStore.connect.
        clock: optional "now" provider in site-local time.

    Returns:
        CrawlSummary.to_dict()

    Raises:
        StorageConnectionError before any page is fetched if storage is unavailable;
        FetchError / StorageError abort the remainder of the run (committed rows stay).
    """
    make_store = store_factory or _default_store
    store = make_store(settings)
    own_fetcher = fetcher is None
    page_fetcher = fetcher or SqlRuFetcher(settings)

    logging_bridge.activity({
        "component": "vacancy_watch.engine",
        "op": "start",
        "base_url": settings.base_url,
        "driver": settings.driver,
        "lookback_bound": settings.lookback_bound,
    })

    try:
        summary = build_engine(settings, page_fetcher, store, clock=clock).run()
    except FetchError as e:
        logging_bridge.error({
            "component": "vacancy_watch.engine",
            "op": "fetch",
            "url": e.url,
            "error": str(e),
        })
        raise
    except Exception as e:
        logging_bridge.error({
            "component": "vacancy_watch.engine",
            "op": "run",
            "error": repr(e),
        })
        raise
    finally:
        store.close()
        if own_fetcher:
            page_fetcher.close()

    result = summary.to_dict()
    logging_bridge.activity({
        "component": "vacancy_watch.engine",
        "op": "summary",
        **result,
    })
    return result
