# service/runner.py
from __future__ import annotations

import importlib
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from service import logging_utils

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import module and return its `run` callable."""
    mod = importlib.import_module(module_path)
    if not hasattr(mod, "run") or not callable(mod.run):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return mod.run  # type: ignore[no-any-return]


def _emit(record: dict[str, Any], *, error: bool = False) -> None:
    """Write a structured record; a broken log sink never fails the run."""
    try:
        if error:
            logging_utils.write_error_log(record)
        else:
            logging_utils.write_activity_log(record)
    except Exception as e:
        log.warning("logging_utils write failed: %s", e)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    trigger_type: str = "scheduled",
    job_context: dict[str, object] | None = None,  # e.g., {"job_id": "...", "now_iso": "..."}
) -> tuple[Any, str]:
    """
    Execute a module's run(**kwargs) once, in the calling thread.

    Returns:
        (module_result, run_id)
    Raises:
        Propagates exceptions from module execution (caller/CLI will catch and log).
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
    }
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    run_callable = _resolve_callable(module)

    t0 = datetime.now()
    try:
        value = run_callable(**dict(kwargs or {}))
    except Exception as e:
        duration_ms = int((datetime.now() - t0).total_seconds() * 1000)
        _emit({
            "ts": now_iso(),
            "event": "module_run",
            "ok": False,
            "error": repr(e),
            "exception_type": type(e).__name__,
            "duration_ms": duration_ms,
            "context": context,
        }, error=True)
        raise

    duration_ms = int((datetime.now() - t0).total_seconds() * 1000)
    _emit({
        "ts": now_iso(),
        "event": "module_run",
        "ok": True,
        "duration_ms": duration_ms,
        "context": context,
        "result": value if isinstance(value, dict) else None,
    })
    return value, run_id
