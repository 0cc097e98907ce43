# service/scheduler.py
from __future__ import annotations

import logging
import re
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from . import runner
from .config_schema import AppConfig
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

JOB_ID = "vacancy_watch"

# Quartz day-of-week numbering: 1 = SUN .. 7 = SAT
_QUARTZ_DOW = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # "apscheduler.triggers.base.BaseTrigger"
    module: str
    kwargs: dict[str, Any]
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int | None = None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        """
        Promptly shut down APScheduler; an in-flight crawl is allowed to finish.
        """
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())

    def next_run_time(self, job_id: str = JOB_ID) -> datetime | None:
        job = self._scheduler.get_job(job_id)
        return getattr(job, "next_run_time", None) if job else None


# ---- Module API -------------------------------------------------------------


def start(cfg: AppConfig) -> SchedulerController:
    """
    Build an APScheduler instance with the single crawl job and start it.

    The crawl is not re-entrant: max_instances=1 + coalesce=True means a trigger
    that fires while the previous crawl is still running is skipped, and a burst
    of missed fires collapses into one run.

    Raises ValueError if the cron expression cannot be parsed.
    """
    tz = _resolve_timezone(cfg.timezone)
    spec = make_job_spec(cfg, tz)

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(1)},
        jobstores={"default": MemoryJobStore()},
    )
    _add_job(scheduler, spec)
    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


def make_job_spec(cfg: AppConfig, tz: Any) -> JobSpec:
    """Translate the loaded config into the one crawl JobSpec."""
    return JobSpec(
        id=JOB_ID,
        trigger=build_cron_trigger(cfg.cron, tz),
        module=cfg.module,
        kwargs=cfg.job_payload(),
    )


def build_cron_trigger(expr: str, tz: Any) -> CronTrigger:
    """
    Build a CronTrigger from either:
      - a standard 5-field crontab:  "0 12 * * *"         (min hour dom mon dow)
      - a Quartz-style 6/7 fields:   "0 0 12 * * ?"       (sec min hour dom mon dow [year])

    In the Quartz form "?" means "no specific value" and becomes "*", and numeric
    day_of_week values use Quartz numbering (1 = SUN .. 7 = SAT); they are rewritten
    to day names so APScheduler (0 = MON) fires on the same days. The 5-field form
    keeps APScheduler semantics.
    """
    if not isinstance(expr, str) or not expr.strip():
        raise ValueError("cron expression cannot be empty")
    fields = expr.strip().split()

    if len(fields) == 5:
        return CronTrigger.from_crontab(" ".join(fields), timezone=tz)

    if len(fields) in (6, 7):
        fields = ["*" if f == "?" else f for f in fields]
        second, minute, hour, day, month, day_of_week = fields[:6]
        day_of_week = _quartz_day_of_week(day_of_week)
        year = fields[6] if len(fields) == 7 else None
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            year=year,
            timezone=tz,
        )

    raise ValueError(f"cron string must have 5, 6 or 7 fields (got {len(fields)}): {expr!r}")


# ---- Helpers ----------------------------------------------------------------


def _quartz_day_of_week(field: str) -> str:
    """"2-6" -> "mon,tue,wed,thu,fri"; names and "*" pass through untouched."""
    out: list[str] = []
    for part in field.split(","):
        base, _, step = part.partition("/")
        m = re.fullmatch(r"(\d+)(?:-(\d+))?", base)
        if not m:
            out.append(part)
            continue
        first = int(m.group(1))
        last = int(m.group(2)) if m.group(2) else (7 if step else first)
        if not (1 <= first <= last <= 7):
            raise ValueError(f"Quartz day-of-week {part!r} out of range (1 = SUN .. 7 = SAT)")
        out.extend(_QUARTZ_DOW[d - 1] for d in range(first, last + 1, int(step) if step else 1))
    return ",".join(out)


def preview_trigger(trigger, tz, count: int = 3, start=None) -> list[datetime]:
    """
    Return next `count` fire times for visibility in logs.
    Seeds previous_fire_time = now = `start`, then advances by 1µs after each hit.
    """
    now = start or datetime.now(tz=tz)
    prev = now
    times = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def _resolve_timezone(tz_name: str | None):
    """
    APScheduler 3.x prefers a pytz timezone; unknown names fall back to UTC.
    """
    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid or missing tz '%s')", tz_name)
        return pytz.UTC


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register the APScheduler job with a wrapper that:

      - Logs start/finish + duration
      - Executes the module via ``runner.run_module_once()`` with the job payload
      - Writes a structured activity record per run
      - Never lets an exception escape into APScheduler (next fire is the retry)
    """

    def _job_wrapper():
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            result, _run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                trigger_type="scheduled",
                job_context=_build_job_context(spec),
            )
        except Exception:
            LOG.exception("Job[%s] raised an exception.", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started)
            return

        duration = _time.monotonic() - started
        added = result.get("added_count") if isinstance(result, dict) else None
        LOG.info("Job[%s] finished in %.3fs (new vacancies: %s)", spec.id, duration, added)
        _write_activity(spec, status="ok", duration_s=duration, result=result)

    scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )

    upcoming = preview_trigger(spec.trigger, scheduler.timezone)
    LOG.info(
        "Registered job[%s] (module=%s) next fires: %s",
        spec.id,
        spec.module,
        ", ".join(t.isoformat() for t in upcoming) or "(none)",
    )


def _write_activity(spec: JobSpec, status: str, duration_s: float, result: Any = None) -> None:
    """Best-effort activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "added_count": result.get("added_count") if isinstance(result, dict) else None,
            },
        })
    except Exception:
        LOG.debug("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _build_job_context(spec: JobSpec) -> dict:
    return {
        "job_id": spec.id,
        "module": spec.module,
        "now_iso": datetime.now(timezone.utc).isoformat(),
    }
