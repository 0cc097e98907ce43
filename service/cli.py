# service/cli.py
"""
Command-line entrypoint.

    python -m service.cli CONFIG_PATH            # schedule the crawl and block
    python -m service.cli CONFIG_PATH --once     # run one crawl now and exit

Exit codes:
    0   clean shutdown / successful one-off run
    1   configuration or startup failure, or a failed one-off run
    2   no configuration path given
    130 interrupted
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Iterable
from datetime import datetime

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging(level: str = "INFO") -> None:
    """Initialize a reasonable logging setup if none exists yet; else just set the level."""
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=lvl,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(lvl)


def _now_iso():
    return datetime.now().astimezone().isoformat()


# ------------------------------ Commands -------------------------------------
def cmd_once(cfg: _config_schema.AppConfig) -> int:
    try:
        result, run_id = _runner.run_module_once(cfg.module, kwargs=cfg.job_payload(), trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.error("Crawl failed: %s", e, exc_info=True)
        return 1
    added = result.get("added_count") if isinstance(result, dict) else None
    LOG.info("Crawl finished (run_id=%s). New vacancies: %s", run_id, added)
    return 0


def cmd_serve(cfg: _config_schema.AppConfig) -> int:
    """
    Run the scheduler until SIGINT/SIGTERM, then stop it cleanly.
    """
    stop_event = threading.Event()

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    previous = {sig: signal.signal(sig, _graceful_shutdown) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        try:
            controller = _scheduler.start(cfg)
        except ValueError as e:
            LOG.error("Invalid schedule %r: %s", cfg.cron, e)
            return 1

        _write_activity({"ts": _now_iso(), "event": "serve_start", "cron": cfg.cron})
        try:
            while not stop_event.is_set():
                stop_event.wait(0.5)
        except KeyboardInterrupt:
            return 130
        finally:
            controller.stop()
            controller.join(timeout=10.0)
            _write_activity({"ts": _now_iso(), "event": "serve_stop"})
        return 0
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _write_activity(record: dict) -> None:
    try:
        L.write_activity_log(record)
    except Exception:
        LOG.debug("write_activity_log failed", exc_info=True)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vacancy-watch",
        description="Periodically collect new 'java' vacancies from the sql.ru job forum.",
    )
    p.add_argument("config", nargs="?", help="Path to the configuration file (.properties, .json or .yaml).")
    p.add_argument("--once", action="store_true", help="Run a single crawl immediately and exit.")
    p.add_argument("--log-level", default=None, help="Override log level (DEBUG, INFO, ...).")
    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    args = _build_parser().parse_args(args=list(argv) if argv is not None else None)
    _ensure_logging(args.log_level or "INFO")

    if not args.config:
        LOG.error("Missing path to the configuration file.")
        return 2

    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate_payload(cfg)
    except _config_schema.ConfigError as e:
        LOG.error("Invalid configuration: %s", e)
        return 1

    if not args.log_level:
        _ensure_logging(cfg.log_level)

    if args.once:
        return cmd_once(cfg)
    return cmd_serve(cfg)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
