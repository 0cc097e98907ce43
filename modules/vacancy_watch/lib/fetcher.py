# modules/vacancy_watch/lib/fetcher.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from .config import Settings
from .http_client import HttpClient
from .models import ListingRow

log = logging.getLogger(__name__)


class FetchError(Exception):
    """Network or HTML-shape failure while reading the forum. Carries the URL."""

    def __init__(self, message: str, *, url: str) -> None:
        super().__init__(f"{message} [{url}]")
        self.url = url


class PageFetcher(ABC):
    """
    Read-only view of a paginated listing site.

    Contract:
      - total_pages() is called once per crawl; the engine assumes it is stable for the run.
      - fetch_page(n) returns EVERY table row in page order, including the leading
        header/info rows (the engine drops a fixed number of them).
      - Any failure surfaces as FetchError.
    """

    @abstractmethod
    def total_pages(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def fetch_page(self, page: int) -> list[ListingRow]:
        raise NotImplementedError

    @abstractmethod
    def fetch_detail(self, link: str) -> str:
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources, if any."""


class SqlRuFetcher(PageFetcher):
    """
    sql.ru forum scraper (requests + BeautifulSoup).

    Page layout it relies on:
      - pager: second ".sort_options" block; its last <a> holds the page count
      - listing: first "table.forumTable"; per row, <td>[1] > <a> is the topic,
        the last <td> is the "last message" date
      - topic page: second ".msgBody" is the opening post text
    """

    def __init__(self, settings: Settings, client: HttpClient | None = None) -> None:
        self.base_url = settings.base_url if settings.base_url.endswith("/") else settings.base_url + "/"
        self.encoding = settings.page_encoding
        self._client = client or HttpClient(
            timeout=settings.http_timeout,
            user_agent=settings.user_agent,
            retries=settings.http_retries,
            min_interval=settings.request_delay_seconds,
        )

    # ---- PageFetcher ----

    def total_pages(self) -> int:
        soup = self._soup(self.base_url)
        try:
            pager = soup.select(".sort_options")[1]
            text = pager.find_all("a")[-1].get_text(strip=True)
            return int(text)
        except (IndexError, ValueError) as e:
            raise FetchError(f"Could not read page count: {e!r}", url=self.base_url) from e

    def fetch_page(self, page: int) -> list[ListingRow]:
        url = f"{self.base_url}{page}"
        soup = self._soup(url)
        table = soup.select_one("table.forumTable")
        if table is None:
            raise FetchError("Listing table not found", url=url)
        rows = [self._parse_row(tr) for tr in table.find_all("tr")]
        log.debug("Page %d: %d rows", page, len(rows))
        return rows

    def fetch_detail(self, link: str) -> str:
        soup = self._soup(link)
        bodies = soup.select(".msgBody")
        if len(bodies) < 2:
            raise FetchError(f"Expected >= 2 .msgBody blocks, found {len(bodies)}", url=link)
        return bodies[1].get_text(" ", strip=True)

    def close(self) -> None:
        self._client.close()

    # ---- internals ----

    def _soup(self, url: str) -> BeautifulSoup:
        try:
            html = self._client.get_text(url, encoding=self.encoding)
        except requests.RequestException as e:
            raise FetchError(f"GET failed: {e!r}", url=url) from e
        return BeautifulSoup(html, "html.parser")

    def _parse_row(self, tr) -> ListingRow:
        tds = tr.find_all("td")
        if len(tds) < 2:
            return ListingRow(title="", link="", raw_date="")
        anchor = tds[1].find("a")
        title = anchor.get_text(" ", strip=True) if anchor else ""
        href = (anchor.get("href") or "").strip() if anchor else ""
        link = urljoin(self.base_url, href) if href else ""
        raw_date = tds[-1].get_text(" ", strip=True)
        return ListingRow(title=title, link=link, raw_date=raw_date)
