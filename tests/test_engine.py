import dataclasses
import json
import os
from datetime import datetime

import pytest
from freezegun import freeze_time

from modules.vacancy_watch.lib import engine as E
from modules.vacancy_watch.lib.db import SqlPostingStore, StorageConnectionError
from modules.vacancy_watch.lib.fetcher import FetchError
from modules.vacancy_watch.lib.models import Posting
from service import logging_utils

NOW = datetime(2024, 3, 15, 15, 0)
YESTERDAY_NOON = datetime(2024, 3, 14, 12, 0)
STALE = "13 мар 24, 10:00"


def clock():
    return NOW


def seed(store, when=YESTERDAY_NOON, name="Seed Java vacancy"):
    assert store.insert(Posting(name=name, body="seed", link="https://forum.test/seed", published_at=when))


def make_engine(settings, fetcher, store, **overrides):
    if overrides:
        settings = dataclasses.replace(settings, **overrides)
    return E.build_engine(settings, fetcher, store, clock=clock)


# ---------------------------------------------------------------------
# Basic scenario
# ---------------------------------------------------------------------
def test_only_new_relevant_rows_are_stored(settings, store, fake_fetcher_cls, make_row):
    seed(store)
    java = make_row("Java Dev", "сегодня, 09:00")
    js = make_row("JS Dev (JavaScript)", "сегодня, 08:00")
    fetcher = fake_fetcher_cls({1: [java, js]})

    summary = make_engine(settings, fetcher, store).run()

    assert summary.added_count == 1
    assert fetcher.detail_calls == [java.link]
    assert summary.stale_rows == 0
    assert store.count() == 2
    assert summary.stopped_by == "pages_exhausted"


def test_header_rows_are_never_evaluated(settings, store, fake_fetcher_cls):
    fetcher = fake_fetcher_cls({1: []})
    summary = make_engine(settings, fetcher, store).run()
    assert summary.rows_seen == 0
    assert summary.skipped_rows == 0
    assert fetcher.detail_calls == []


def test_stored_posting_carries_detail_body(settings, store, fake_fetcher_cls, make_row, latest_dt):
    java = make_row("Java Lead", "сегодня, 11:30")
    fetcher = fake_fetcher_cls({1: [java]}, details={java.link: "Spring, Kafka, 300k"})

    make_engine(settings, fetcher, store).run()

    row = store._conn.execute("SELECT name, text, link FROM vacancy").fetchone()
    assert row == ("Java Lead", "Spring, Kafka, 300k", java.link)
    assert latest_dt(store) == datetime(2024, 3, 15, 11, 30)


# ---------------------------------------------------------------------
# First run: cutoff is Jan 1 of the current year
# ---------------------------------------------------------------------
def test_first_run_uses_start_of_year(settings, store, fake_fetcher_cls, make_row):
    old = make_row("Java old", "31 дек 23, 23:59")
    boundary = make_row("Java boundary", "01 янв 24, 00:00")
    fresh = make_row("Java fresh", "01 янв 24, 00:01")
    fetcher = fake_fetcher_cls({1: [fresh, old, boundary]})

    summary = make_engine(settings, fetcher, store).run()

    assert summary.last_known == "2024-01-01T00:00:00"
    assert fetcher.detail_calls == [fresh.link]
    assert summary.stale_rows == 2


# ---------------------------------------------------------------------
# Lookback bound
# ---------------------------------------------------------------------
def test_lookback_bound_stops_before_later_new_rows(settings, store, fake_fetcher_cls, make_row):
    seed(store)
    first = make_row("Java A", "сегодня, 10:00")
    late = make_row("Java B", "сегодня, 09:00")
    stale = [make_row(f"Java stale {i}", STALE) for i in range(3)]
    fetcher = fake_fetcher_cls({1: [first, *stale, late]})

    summary = make_engine(settings, fetcher, store, lookback_bound=3).run()

    assert fetcher.detail_calls == [first.link]
    assert summary.stale_rows == 3
    assert summary.stopped_by == "lookback"


def test_stale_counter_carries_across_pages(settings, store, fake_fetcher_cls, make_row):
    seed(store)
    a = make_row("Java A", "сегодня, 10:00")
    b = make_row("Java B", "сегодня, 09:00")
    c = make_row("Java C", "сегодня, 08:00")
    fetcher = fake_fetcher_cls(
        {
            1: [a, make_row("x1", STALE), make_row("x2", STALE)],
            2: [make_row("x3", STALE), b],
            3: [c],
        },
        total=4,
    )

    summary = make_engine(settings, fetcher, store, lookback_bound=3).run()

    assert fetcher.page_calls == [1, 2]
    assert fetcher.detail_calls == [a.link]
    assert summary.pages_scanned == 2
    assert summary.stopped_by == "lookback"


def test_new_irrelevant_row_resets_counter(settings, store, fake_fetcher_cls, make_row):
    seed(store)
    target = make_row("Java X", "сегодня, 07:00")
    rows = [
        make_row("s1", STALE),
        make_row("s2", STALE),
        make_row("Python dev", "сегодня, 12:00"),
        make_row("s3", STALE),
        make_row("s4", STALE),
        target,
    ]
    fetcher = fake_fetcher_cls({1: rows})

    summary = make_engine(settings, fetcher, store, lookback_bound=3).run()

    assert fetcher.detail_calls == [target.link]
    assert summary.stale_rows == 4
    assert summary.stopped_by == "pages_exhausted"


def test_unparseable_dates_are_skipped_and_do_not_touch_counter(settings, store, fake_fetcher_cls, make_row):
    seed(store)
    rows = [
        make_row("s1", STALE),
        make_row("Java broken", "garbage"),
        make_row("Java odd month", "12 foo 24, 10:00"),
        make_row("s2", STALE),
        make_row("Java late", "сегодня, 10:00"),
    ]
    fetcher = fake_fetcher_cls({1: rows})

    summary = make_engine(settings, fetcher, store, lookback_bound=2).run()

    assert summary.skipped_rows == 2
    assert summary.stale_rows == 2
    assert summary.stopped_by == "lookback"
    assert fetcher.detail_calls == []

    with open(logging_utils.get_error_log_path(), encoding="utf-8") as f:
        records = [json.loads(line) for line in f]
    assert [r["raw_date"] for r in records if r.get("op") == "normalize_date"] == ["garbage", "12 foo 24, 10:00"]


# ---------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------
def test_last_reported_page_is_not_scanned(settings, store, fake_fetcher_cls, make_row):
    fetcher = fake_fetcher_cls(
        {1: [make_row("Java 1", "сегодня, 10:00")], 2: [make_row("Java 2", "сегодня, 09:00")], 3: [make_row("Java 3", "сегодня, 08:00")]},
        total=3,
    )

    summary = make_engine(settings, fetcher, store).run()

    assert fetcher.page_calls == [1, 2]
    assert fetcher.total_calls == 1
    assert summary.added_count == 2


def test_single_page_forum_scans_nothing(settings, store, fake_fetcher_cls, make_row):
    fetcher = fake_fetcher_cls({1: [make_row("Java 1", "сегодня, 10:00")]}, total=1)
    summary = make_engine(settings, fetcher, store).run()
    assert fetcher.page_calls == []
    assert summary.pages_scanned == 0


# ---------------------------------------------------------------------
# Idempotence / monotonicity
# ---------------------------------------------------------------------
def test_second_run_adds_nothing(settings, store, fake_fetcher_cls, make_row, latest_dt):
    rows = [
        make_row("Frontend JavaScript", "сегодня, 14:00"),
        make_row("Java 1", "сегодня, 10:00"),
        make_row("Java 2", "вчера, 18:00"),
        make_row("Java 3", "10 мар 24, 09:00"),
    ]
    fetcher = fake_fetcher_cls({1: rows})

    first = make_engine(settings, fetcher, store).run()
    after_first = latest_dt(store)
    count_first = store.count()

    second = make_engine(settings, fetcher, store).run()

    assert first.added_count == 3
    assert second.added_count == 0
    assert store.count() == count_first
    assert latest_dt(store) >= after_first
    assert after_first == datetime(2024, 3, 15, 10, 0)


def test_duplicate_names_are_counted_not_added(settings, store, fake_fetcher_cls, make_row):
    seed(store, when=datetime(2024, 3, 1, 12, 0), name="Java Dev")
    fetcher = fake_fetcher_cls({1: [make_row("Java Dev", "сегодня, 09:00", slug="repost")]})

    summary = make_engine(settings, fetcher, store).run()

    assert summary.added_count == 0
    assert summary.duplicate_count == 1
    assert store.count() == 1


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------
def test_fetch_error_aborts_but_keeps_committed_rows(settings, store, fake_fetcher_cls, make_row, db_path):
    a = make_row("Java A", "сегодня, 10:00")
    b = make_row("Java B", "сегодня, 09:00")
    fetcher = fake_fetcher_cls({1: [a, b]}, fail_detail_for={b.link})

    with pytest.raises(FetchError) as ei:
        E.run_once(settings, fetcher=fetcher, store_factory=lambda s: store, clock=clock)
    assert ei.value.url == b.link

    # run_once closed the store; reopen to check what was committed
    with SqlPostingStore.connect("sqlite", str(db_path), "", "", tz=settings.tz) as again:
        assert again.count() == 1


def test_storage_unavailable_fails_before_any_fetch(settings, fake_fetcher_cls):
    fetcher = fake_fetcher_cls({1: []})

    def broken(_settings):
        raise StorageConnectionError("db down")

    with pytest.raises(StorageConnectionError):
        E.run_once(settings, fetcher=fetcher, store_factory=broken)
    assert fetcher.total_calls == 0
    assert fetcher.page_calls == []


def test_lookback_bound_must_be_positive(store, fake_fetcher_cls):
    with pytest.raises(ValueError):
        E.CrawlEngine(fake_fetcher_cls({}), store, None, None, lookback_bound=0)


# ---------------------------------------------------------------------
# run_once wiring
# ---------------------------------------------------------------------
@freeze_time("2024-03-15T12:00:00Z")
def test_run_once_uses_site_clock_and_returns_summary(settings, fake_fetcher_cls, make_row):
    fetcher = fake_fetcher_cls({1: [make_row("Java Dev", "сегодня, 14:59")]})

    result = E.run_once(settings, fetcher=fetcher)

    assert result["added_count"] == 1
    assert result["last_known"] == "2024-01-01T00:00:00"
    assert set(result) >= {"added_count", "duplicate_count", "pages_scanned", "stopped_by", "duration_us"}
    assert os.path.exists(logging_utils.get_activity_log_path())
