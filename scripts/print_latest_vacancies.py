#!/usr/bin/env python3
"""
Print the newest vacancies stored by the crawler.

    python scripts/print_latest_vacancies.py app.properties [LIMIT]

Reads the same config file as the service, so it works for SQLite and Postgres alike.
Run from the project root (or with the package installed).
"""

import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from modules.vacancy_watch.lib.config import DEFAULT_SITE_TZ
from modules.vacancy_watch.lib.dates import from_millis
from modules.vacancy_watch.lib.db import SqlPostingStore, StorageError
from service.config_schema import ConfigError, load_config

DEFAULT_LIMIT = 15


def parse_limit(arg: str | None) -> int:
    if arg is None:
        return DEFAULT_LIMIT
    try:
        limit = int(arg)
        if limit <= 0:
            raise ValueError
    except ValueError:
        print(f"Invalid limit: {arg}. Using default ({DEFAULT_LIMIT}).", file=sys.stderr)
        return DEFAULT_LIMIT
    return limit


def format_entries(entries: list[tuple[str, str, int]], tz: ZoneInfo) -> list[str]:
    lines = []
    for i, (name, link, ms) in enumerate(entries, 1):
        lines.append(f"{i:2d}. [{from_millis(ms, tz):%Y-%m-%d %H:%M}]")
        lines.append(f"     Title: {name}")
        lines.append(f"     URL:   {link}")
        lines.append("")
    return lines


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: print_latest_vacancies.py CONFIG [LIMIT]", file=sys.stderr)
        return 2

    try:
        cfg = load_config(args[0])
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    limit = parse_limit(args[1] if len(args) > 1 else None)
    tz_name = str(cfg.crawl.get("site_timezone") or DEFAULT_SITE_TZ)
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        print(f"Invalid configuration: unknown site timezone {tz_name!r}", file=sys.stderr)
        return 1

    try:
        with SqlPostingStore.connect(cfg.driver, cfg.url, cfg.username, cfg.password, tz=tz) as store:
            total = store.count()
            entries = store.latest(limit)
    except StorageError as e:
        print(f"Error reading {cfg.driver} store: {e}", file=sys.stderr)
        return 1

    print("=" * 80)
    print(f"DRIVER: {cfg.driver}   TOTAL: {total}   SHOWING: {len(entries)}")
    print("-" * 80)
    if not entries:
        print("  No vacancies stored yet.")
        return 0
    print("\n".join(format_entries(entries, tz)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
