"""
Normalization of sql.ru forum dates.

The forum renders the two most recent days relatively ("сегодня, 14:30",
"вчера, 09:05") and everything older with a localized month abbreviation
("12 янв 24, 10:15"). Both shapes are rewritten into "DD MM YY, HH:MM" and
parsed with one fixed format. Times are site-local; no tz conversion here.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from types import MappingProxyType
from zoneinfo import ZoneInfo

DAY_FORMAT = "%d %m %y"
DATE_TIME_FORMAT = "%d %m %y, %H:%M"


class DateFormatError(ValueError):
    """Raised when a raw listing date has an unknown shape or month token."""


@dataclass(frozen=True)
class DateLocale:
    """
    Immutable locale table for one site.
    - today_word / yesterday_word: the relative-day words (without trailing comma)
    - months: lower-case 3-letter abbreviation -> "01".."12"
    """

    today_word: str
    yesterday_word: str
    months: Mapping[str, str]


RU_LOCALE = DateLocale(
    today_word="сегодня",
    yesterday_word="вчера",
    months=MappingProxyType({
        "янв": "01",
        "фев": "02",
        "мар": "03",
        "апр": "04",
        "май": "05",
        "июн": "06",
        "июл": "07",
        "авг": "08",
        "сен": "09",
        "окт": "10",
        "ноя": "11",
        "дек": "12",
    }),
)


class DateNormalizer:
    def __init__(self, locale: DateLocale = RU_LOCALE) -> None:
        self._locale = locale

    def normalize(self, raw: str, today: date) -> datetime:
        """
        Convert a raw forum date into a naive datetime.

        Raises DateFormatError if `raw` is not one of:
            "<today_word>, HH:MM" | "<yesterday_word>, HH:MM" | "DD <mon> YY, HH:MM"
        """
        text = _squash(raw)
        tokens = text.split(" ")
        if len(tokens) < 2:
            raise DateFormatError(f"Unrecognized date: {raw!r}")

        head = tokens[0].lower()
        if head == f"{self._locale.today_word},":
            tokens[0] = today.strftime(DAY_FORMAT) + ","
        elif head == f"{self._locale.yesterday_word},":
            tokens[0] = (today - timedelta(days=1)).strftime(DAY_FORMAT) + ","
        else:
            month = self._locale.months.get(tokens[1].lower())
            if month is None:
                raise DateFormatError(f"Unknown month token {tokens[1]!r} in {raw!r}")
            tokens[1] = month

        try:
            return datetime.strptime(" ".join(tokens), DATE_TIME_FORMAT)
        except ValueError as e:
            raise DateFormatError(f"Unrecognized date: {raw!r}") from e


def start_of_year(today: date) -> datetime:
    """Default cutoff for a store that has never been filled."""
    return datetime(today.year, 1, 1, 0, 0, 0)


def to_millis(dt: datetime, tz: ZoneInfo) -> int:
    """Naive site-local datetime -> epoch milliseconds."""
    return int(dt.replace(tzinfo=tz).timestamp() * 1000)


def from_millis(ms: int, tz: ZoneInfo) -> datetime:
    """Epoch milliseconds -> naive site-local datetime."""
    aware = datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone(tz)
    return aware.replace(tzinfo=None)


def _squash(raw: str | None) -> str:
    # sql.ru pads cells with &nbsp;
    return " ".join((raw or "").replace("\xa0", " ").split())
