import os
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from croniter import croniter

from folder_sync.job import SyncRuntime, run_folder_sync
from folder_sync.runtime_logger import emit, short_error


SCHEDULER_POLL_SECONDS = int(os.getenv("SCHEDULER_POLL_SECONDS", "30"))

_scheduler_status = {
    "running": False,
    "cron_expr": None,
    "last_tick": None,
    "next_run_at": None,
    "last_run_id": None,
    "last_status": None,
    "last_error": None,
}


def get_scheduler_status():
    return dict(_scheduler_status)


def compute_next_run(cron_expr: str, base: Optional[datetime] = None) -> datetime:
    itr = croniter(cron_expr, base or datetime.now(timezone.utc))
    return itr.get_next(datetime)


def start_scheduler_thread(
    runtime_factory: Callable[[], SyncRuntime],
    cron_expr: Optional[str] = None,
) -> Optional[threading.Thread]:
    cron_expr = (cron_expr if cron_expr is not None else os.getenv("FOLDER_SYNC_CRON", "")).strip()
    if not cron_expr:
        emit("INFO", "SCHEDULER", "Scheduler disabled: FOLDER_SYNC_CRON not set")
        return None
    try:
        compute_next_run(cron_expr)
    except Exception as exc:
        _scheduler_status["last_error"] = f"invalid_cron_expr: {exc}"
        emit("ERROR", "SCHEDULER", f"Disabled invalid schedule: cron_expr='{cron_expr}' error={short_error(exc)}")
        return None

    _scheduler_status["cron_expr"] = cron_expr
    thread = threading.Thread(target=_scheduler_loop, args=(runtime_factory, cron_expr), daemon=True)
    thread.start()
    emit("INFO", "SCHEDULER", f"Scheduler thread started: cron_expr='{cron_expr}'")
    return thread


def run_scheduled_sync(runtime_factory: Callable[[], SyncRuntime]):
    try:
        report = run_folder_sync(runtime_factory(), trigger="schedule")
    except Exception as exc:
        _scheduler_status["last_status"] = "failed"
        _scheduler_status["last_error"] = str(exc)
        emit("ERROR", "SCHEDULER", f"Scheduled sync could not run: error={short_error(exc)}")
        return None

    _scheduler_status["last_run_id"] = report.run_id
    _scheduler_status["last_status"] = report.status
    _scheduler_status["last_error"] = report.error
    emit(
        "INFO" if report.status != "failed" else "ERROR",
        "SCHEDULER",
        f"Scheduled sync finished: run_id={report.run_id} status={report.status} phase={report.phase}",
    )
    return report


def _scheduler_loop(runtime_factory: Callable[[], SyncRuntime], cron_expr: str):
    _scheduler_status["running"] = True
    next_run_at = compute_next_run(cron_expr)
    _scheduler_status["next_run_at"] = next_run_at.isoformat()
    while True:
        now = datetime.now(timezone.utc)
        _scheduler_status["last_tick"] = now.isoformat()
        if now >= next_run_at:
            run_scheduled_sync(runtime_factory)
            next_run_at = compute_next_run(cron_expr)
            _scheduler_status["next_run_at"] = next_run_at.isoformat()
            continue
        wait_seconds = (next_run_at - now).total_seconds()
        time.sleep(max(1.0, min(float(SCHEDULER_POLL_SECONDS), wait_seconds)))
