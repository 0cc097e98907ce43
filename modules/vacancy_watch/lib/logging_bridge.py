from __future__ import annotations

import logging
from typing import Any

from service import logging_utils

# Connection payloads carry the DB password; never let it reach a log line.
_SECRET_KEYS = {"password", "db.password", "jdbc.password", "secret", "token", "authorization"}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Top-level scrub for the usual secrets. logging_utils does a deep pass
    before writing to disk; this one also protects the stdlib fallback path.
    """
    out = dict(record)
    for k in list(out.keys()):
        lk = str(k).lower()
        if lk in _SECRET_KEYS or lk.endswith("_password") or lk.endswith("_secret"):
            out[k] = "***REDACTED***"
    return out


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record to the JSONL activity log.
    Falls back to stdlib logging as structured info.
    """
    payload = _redact_record(record)
    try:
        logging_utils.write_activity_log(payload)
    except Exception:
        logging.getLogger("vacancy_watch.activity").info(payload)
        return
    logging.getLogger("vacancy_watch.activity").debug(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record to the JSONL error log.
    Always mirrored to stdlib logging at ERROR so it shows up on the console.
    """
    payload = _redact_record(record)
    logger = logging.getLogger("vacancy_watch.error")
    try:
        logging_utils.write_error_log(payload)
    except Exception:
        logger.debug("write_error_log failed", exc_info=True)
    logger.error(payload)
