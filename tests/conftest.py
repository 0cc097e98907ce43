# tests/conftest.py
import os
from datetime import datetime

import pytest
from freezegun import freeze_time

from modules.vacancy_watch.lib import config as vw_config
from modules.vacancy_watch.lib.dates import from_millis
from modules.vacancy_watch.lib.db import SqlPostingStore
from modules.vacancy_watch.lib.fetcher import FetchError, PageFetcher
from modules.vacancy_watch.lib.models import ListingRow

SITE_TZ = "Europe/Moscow"
HEADER_ROWS = 4


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------
class FakeFetcher(PageFetcher):
    """
    In-memory forum. `pages` maps page number -> DATA rows; header rows are
    prepended automatically so the engine's skip logic is exercised.

    Records every call so tests can assert what the engine touched.
    """

    def __init__(self, pages, total=None, details=None, fail_detail_for=()):
        self.pages = {n: list(rows) for n, rows in pages.items()}
        self.total = total if total is not None else len(self.pages) + 1
        self.details = dict(details or {})
        self.fail_detail_for = set(fail_detail_for)
        self.page_calls: list[int] = []
        self.detail_calls: list[str] = []
        self.total_calls = 0

    def total_pages(self) -> int:
        self.total_calls += 1
        return self.total

    def fetch_page(self, page: int) -> list[ListingRow]:
        self.page_calls.append(page)
        header = [ListingRow(title="", link="", raw_date="")] + [
            ListingRow(title=f"Info {i}", link=f"https://forum.test/info/{i}", raw_date="01 янв 20, 00:00")
            for i in range(HEADER_ROWS - 1)
        ]
        return header + self.pages.get(page, [])

    def fetch_detail(self, link: str) -> str:
        self.detail_calls.append(link)
        if link in self.fail_detail_for:
            raise FetchError("boom", url=link)
        return self.details.get(link, f"Body of {link}")


def row(title: str, raw_date: str, slug: str | None = None) -> ListingRow:
    slug = slug or title.lower().replace(" ", "-")
    return ListingRow(title=title, link=f"https://forum.test/topic/{slug}", raw_date=raw_date)


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher


@pytest.fixture
def make_row():
    return row


# ---------------------------------------------------------------------
# Settings / storage
# ---------------------------------------------------------------------
@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "vacancies.db"


@pytest.fixture
def settings(db_path):
    """A brand-new Settings per test, backed by a per-test SQLite file."""
    return vw_config.Settings.from_env_and_kwargs({
        "driver": "sqlite",
        "url": str(db_path),
        "username": "",
        "password": "",
        "site_timezone": SITE_TZ,
        "request_delay_seconds": 0,
    })


@pytest.fixture
def store(settings):
    s = SqlPostingStore.connect(settings.driver, settings.url, settings.username, settings.password, tz=settings.tz)
    yield s
    s.close()


@pytest.fixture
def latest_dt(settings):
    """Read the newest stored publish time back as a naive site-local datetime."""

    def _read(st) -> datetime | None:
        ms = st.latest_timestamp()
        return from_millis(ms, settings.tz) if ms else None

    return _read


@pytest.fixture
def frozen_msk_noon():
    # 12:00 UTC == 15:00 Europe/Moscow
    with freeze_time("2026-03-10T12:00:00Z"):
        yield
