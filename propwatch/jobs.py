# propwatch/jobs.py
"""Job entry points shared by the scheduler, the API and `run_job.py`.

Each job opens its own session, runs one stage, records a `JobRun` row and
returns the run's stats. Failures are logged and recorded, never raised, so a
timer thread keeps running.
"""
import time

from . import crud
from .db import SessionLocal
from .health_check import PlaywrightHealthChecker
from .market_gap import run_market_gap_pass
from .matching import run_reconciliation
from .notifier import notify_pending
from .priority import refresh_days_on_market, update_priority_scores
from .refresh import reset_daily_counters_if_needed, run_batch_refresh, run_status
from .utils import logger, utcnow


def _refresh(db):
    with PlaywrightHealthChecker() as checker:
        stats = run_batch_refresh(db, checker)
    return run_status(stats), stats


def _reconcile(db):
    stats = run_reconciliation(db)
    return ("partial" if stats["errors"] else "success"), stats


def _market_gaps(db):
    stats = run_market_gap_pass(db)
    return stats.pop("status"), stats


def _notify(db):
    stats = notify_pending(db)
    return ("partial" if stats["failed"] else "success"), stats


def _priorities(db):
    stats = update_priority_scores(db)
    stats["days_on_market_updated"] = refresh_days_on_market(db)
    return "success", stats


def _reset_counters(db):
    if not reset_daily_counters_if_needed(db):
        return "skipped", {"reset": False}
    return "success", {"reset": True}


STAGES = {
    "refresh": _refresh,
    "reconcile": _reconcile,
    "market_gaps": _market_gaps,
    "notify": _notify,
    "priorities": _priorities,
    "reset_counters": _reset_counters,
}


def run_job(name: str, session_factory=SessionLocal) -> dict:
    """Run a named job and record it. Unknown names raise KeyError."""
    stage = STAGES[name]
    started_at = utcnow()
    started = time.monotonic()
    logger.info("Job %s started", name)
    db = session_factory()
    try:
        try:
            status, stats = stage(db)
            error = None
        except Exception as e:
            db.rollback()
            logger.exception("Job %s failed", name)
            status, stats, error = "error", {}, str(e) or type(e).__name__
        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            crud.record_job_run(db, name, status, stats=stats, error=error,
                                duration_ms=duration_ms, started_at=started_at)
        except Exception:
            db.rollback()
            logger.exception("Could not record run of job %s", name)
    finally:
        db.close()
    logger.info("Job %s finished: %s in %dms", name, status, duration_ms)
    return {"job": name, "status": status, "stats": stats, "error": error, "duration_ms": duration_ms}


def make_job(name: str):
    def job():
        return run_job(name)
    job.__name__ = f"{name}_job"
    return job


JOBS = {name: make_job(name) for name in STAGES}
