# propwatch/refresh.py
"""Priority-driven, budget-bounded re-check run.

One run: reset daily counters (at most once per calendar day), over-fetch
candidates in priority order, keep the ones that are due, then check them one
by one with a politeness delay until the batch or the wall-clock budget runs
out. Unfinished candidates keep their priority and lead the next run.
"""
import time
from typing import Callable

from sqlalchemy.orm import Session

from . import config
from .db import upsert_insert
from .lifecycle import (
    OUTCOME_ERROR, OUTCOME_PRICE_CHANGED, OUTCOME_REMOVED, OUTCOME_SKIPPED, OUTCOME_UNCHANGED,
    apply_health_result, effective_check_count,
)
from .models import DailyResetMarker, ListingStatus, Property
from .priority import rescore_property, should_check_now
from .schemas import HealthCheckResult, HealthCheckTarget
from .utils import logger, utcnow

OUTCOME_STATS = {
    OUTCOME_UNCHANGED: "unchanged",
    OUTCOME_PRICE_CHANGED: "price_changes",
    OUTCOME_REMOVED: "removed",
    OUTCOME_ERROR: "check_errors",
    OUTCOME_SKIPPED: "skipped",
}


def reset_daily_counters_if_needed(db: Session, today=None) -> bool:
    """Zero `check_count_today` once per day. Returns False when today's marker exists."""
    today = today or utcnow().date()
    stmt = upsert_insert(db, DailyResetMarker.__table__).values(reset_date=today, created_at=utcnow())
    stmt = stmt.on_conflict_do_nothing(index_elements=["reset_date"])
    if db.execute(stmt).rowcount != 1:
        db.commit()
        return False

    count = (
        db.query(Property)
        .filter(Property.check_count_today > 0)
        .update({Property.check_count_today: 0, Property.check_count_date: today},
                synchronize_session=False)
    )
    db.query(DailyResetMarker).filter(DailyResetMarker.reset_date == today).update(
        {DailyResetMarker.reset_count: count}, synchronize_session=False)
    db.commit()
    db.expire_all()
    logger.info("Reset daily check counters for %s (%d properties)", today, count)
    return True


def fetch_candidates(db: Session, limit: int):
    return (
        db.query(Property)
        .filter(Property.status == ListingStatus.ACTIVE, Property.source_url.isnot(None))
        .order_by(
            Property.priority_score.desc(),
            Property.last_checked_at.asc().nulls_first(),
            Property.id.asc(),
        )
        .limit(limit)
        .all()
    )


def select_due(db: Session, now=None, batch_size: int = None):
    now = now or utcnow()
    batch_size = batch_size or config.REFRESH_BATCH_SIZE
    today = now.date()
    candidates = fetch_candidates(db, batch_size * 2)
    due = [
        p for p in candidates
        if should_check_now(p.priority_score, effective_check_count(p, today), p.last_checked_at, now)
    ]
    return due[:batch_size]


def _lock_property(db: Session, property_id: int) -> Property:
    return (
        db.query(Property)
        .populate_existing()
        .with_for_update()
        .filter(Property.id == property_id)
        .one()
    )


def run_batch_refresh(db: Session, checker, now=None, batch_size: int = None,
                      delay_seconds: float = None, budget_seconds: float = None,
                      sleep: Callable = time.sleep, clock: Callable = time.monotonic) -> dict:
    """Check one batch of due properties with `checker` (a HealthChecker)."""
    delay_seconds = config.REFRESH_DELAY_SECONDS if delay_seconds is None else delay_seconds
    budget_seconds = config.REFRESH_BUDGET_SECONDS if budget_seconds is None else budget_seconds
    started = clock()
    run_started_at = now or utcnow()

    reset_daily_counters_if_needed(db, run_started_at.date())
    due = select_due(db, run_started_at, batch_size)
    stats = {
        "selected": len(due), "checked": 0, "unchanged": 0, "price_changes": 0, "removed": 0,
        "check_errors": 0, "skipped": 0, "errors": 0, "rescored": 0, "deferred": 0,
        "budget_exhausted": False,
    }
    if not due:
        logger.info("No properties need checking right now")
        return stats

    logger.info("Checking %d properties...", len(due))
    targets = [
        (p.id, HealthCheckTarget(id=p.id, source_url=p.source_url, source=p.source, price=p.price))
        for p in due
    ]
    for index, (property_id, target) in enumerate(targets):
        if index and delay_seconds:
            sleep(delay_seconds)
        if clock() - started >= budget_seconds:
            stats["budget_exhausted"] = True
            stats["deferred"] = len(targets) - index
            logger.info("Run budget of %ss exhausted, deferring %d properties", budget_seconds, stats["deferred"])
            break

        try:
            result = checker.check(target)
        except Exception as e:
            logger.exception("Health check failed for %s", property_id)
            result = HealthCheckResult(error=str(e) or type(e).__name__)

        try:
            prop = _lock_property(db, property_id)
            if prop.is_terminal:
                # closed by an overlapping run after selection
                db.commit()
                stats["skipped"] += 1
                continue
            outcome = apply_health_result(db, prop, result, run_started_at=run_started_at,
                                          now=now or utcnow())
            stats[OUTCOME_STATS[outcome]] += 1
            if outcome == OUTCOME_SKIPPED:
                continue
            stats["checked"] += 1
            # failed checks move the score only through the one-time threshold penalty
            if outcome in (OUTCOME_REMOVED, OUTCOME_ERROR):
                continue
            if rescore_property(db, prop, now=now) is not None:
                stats["rescored"] += 1
        except Exception:
            db.rollback()
            stats["errors"] += 1
            logger.exception("Error processing property %s", property_id)

    stats["duration_ms"] = int((clock() - started) * 1000)
    logger.info("Batch refresh complete: %s", stats)
    return stats


def run_status(stats: dict) -> str:
    failed = stats.get("errors", 0) + stats.get("check_errors", 0)
    if stats.get("checked", 0) and failed > stats["checked"] / 2:
        return "partial"
    return "success"
