# propwatch/lifecycle.py
"""Applies health-check outcomes to a property's status and price history.

ACTIVE is the only state a check can leave; SOLD and REMOVED are terminal.
Handing a terminal property to any handler below raises
`TerminalStateError`: callers are expected to re-read status before applying
a result, so reaching one here is a state-machine bug.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import config, crud
from .db import upsert_insert
from .errors import TerminalStateError
from .fingerprint import generate_and_save
from .market_gap import clear_stale_gap
from .models import ListingStatus, Property, PropertyLifecycle
from .schemas import HealthCheckResult
from .utils import days_between, logger, utcnow

SOLD_REASONS = {"sold", "predane", "predany"}

OUTCOME_REMOVED = "removed"
OUTCOME_PRICE_CHANGED = "price_changed"
OUTCOME_ERROR = "error"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_SKIPPED = "skipped"


def _guard(prop: Property):
    if prop.is_terminal:
        raise TerminalStateError(prop.id, prop.status.value)


def effective_check_count(prop: Property, today) -> int:
    """`check_count_today` only counts when its day bucket is today."""
    if prop.check_count_date != today:
        return 0
    return prop.check_count_today or 0


def _bump_check_count(prop: Property, now: datetime):
    today = now.date()
    prop.check_count_today = effective_check_count(prop, today) + 1
    prop.check_count_date = today


def already_checked(prop: Property, run_started_at: Optional[datetime]) -> bool:
    return (run_started_at is not None and prop.last_checked_at is not None
            and prop.last_checked_at >= run_started_at)


def status_for_reason(removal_reason) -> ListingStatus:
    if removal_reason and removal_reason.strip().lower() in SOLD_REASONS:
        return ListingStatus.SOLD
    return ListingStatus.REMOVED


def days_listed(prop: Property, now: datetime) -> int:
    if not prop.first_listed_at:
        return prop.days_on_market or 0
    return max(0, int(days_between(prop.first_listed_at, now)))


def upsert_lifecycle(db: Session, prop: Property, now: datetime):
    earliest = crud.earliest_price_point(db, prop.id)
    initial_price = earliest.price if earliest else prop.price
    change = prop.price - initial_price
    values = {
        "source": prop.source,
        "external_id": prop.external_id,
        "version": prop.generation,
        "property_id": prop.id,
        "city": prop.city,
        "title": prop.title,
        "status": prop.status,
        "removal_reason": prop.removal_reason,
        "initial_price": initial_price,
        "final_price": prop.price,
        "price_change": change,
        "price_change_percent": round(change / initial_price * 100, 1) if initial_price else 0,
        "days_on_market": prop.days_on_market,
        "first_seen_at": prop.first_listed_at,
        "last_seen_at": now,
    }
    stmt = upsert_insert(db, PropertyLifecycle.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["source", "external_id", "version"],
        set_={k: stmt.excluded[k] for k in (
            "property_id", "status", "removal_reason", "final_price", "price_change",
            "price_change_percent", "days_on_market", "last_seen_at",
        )},
    )
    db.execute(stmt)


def handle_removed(db: Session, prop: Property, removal_reason=None, now=None):
    _guard(prop)
    now = now or utcnow()
    prop.status = status_for_reason(removal_reason)
    prop.removal_reason = removal_reason or "unknown"
    prop.days_on_market = days_listed(prop, now)
    prop.last_checked_at = now
    _bump_check_count(prop, now)
    db.flush()
    upsert_lifecycle(db, prop, now)
    # unsent gap flags die with the listing
    clear_stale_gap(db, prop.id)
    db.commit()
    logger.info("Property %s closed as %s (%s)", prop.id, prop.status.value, prop.removal_reason)
    return prop


def handle_price_change(db: Session, prop: Property, new_price: float, now=None):
    _guard(prop)
    now = now or utcnow()
    logger.info("Price change: %s - %s -> %s", prop.id, prop.price, new_price)
    prop.price = new_price
    prop.price_per_m2 = crud.unit_price(new_price, prop.area_m2)
    prop.last_seen_at = now
    prop.last_checked_at = now
    prop.consecutive_failures = 0
    _bump_check_count(prop, now)
    crud.append_price_point(db, prop, recorded_at=now, commit=False)
    db.commit()
    # price band is part of the fingerprint
    generate_and_save(db, prop)
    return prop


def handle_check_error(db: Session, prop: Property, error=None, now=None):
    """Count a failed check; transient failures never touch status or price."""
    _guard(prop)
    now = now or utcnow()
    prop.consecutive_failures = (prop.consecutive_failures or 0) + 1
    prop.last_checked_at = now
    _bump_check_count(prop, now)
    # penalize once, on the check that reaches the threshold
    if prop.consecutive_failures == config.MAX_CONSECUTIVE_FAILURES:
        prop.priority_score = max(0, prop.priority_score - config.FAILURE_PENALTY)
        logger.warning("Property %s has %d consecutive failures (last: %s)",
                       prop.id, prop.consecutive_failures, error)
    db.commit()
    return prop


def mark_as_checked(db: Session, prop: Property, now=None):
    _guard(prop)
    now = now or utcnow()
    prop.last_seen_at = now
    prop.last_checked_at = now
    prop.consecutive_failures = 0
    _bump_check_count(prop, now)
    db.commit()
    return prop


def apply_health_result(db: Session, prop: Property, result: HealthCheckResult,
                        run_started_at=None, now=None) -> str:
    """Dispatch one health-check result. Returns the outcome name."""
    if already_checked(prop, run_started_at):
        logger.info("Property %s already checked since %s, skipping", prop.id, run_started_at)
        return OUTCOME_SKIPPED
    if not result.is_active:
        handle_removed(db, prop, result.removal_reason, now=now)
        return OUTCOME_REMOVED
    if result.price_changed and result.new_price and result.new_price != prop.price:
        handle_price_change(db, prop, result.new_price, now=now)
        return OUTCOME_PRICE_CHANGED
    if result.error:
        handle_check_error(db, prop, result.error, now=now)
        return OUTCOME_ERROR
    mark_as_checked(db, prop, now=now)
    return OUTCOME_UNCHANGED


def get_property_timeline(db: Session, prop: Property, now=None) -> dict:
    now = now or utcnow()
    history = crud.get_price_history(db, prop.id)
    points, events = [], []
    previous = None
    for point in history:
        change = None
        if previous is not None and previous.price:
            change = round((point.price - previous.price) / previous.price * 100, 1)
            events.append({
                "type": "PRICE_DROP" if point.price < previous.price else "PRICE_INCREASE",
                "date": point.recorded_at,
                "change_percent": change,
            })
        points.append({"price": point.price, "date": point.recorded_at, "change_percent": change})
        previous = point

    first_price = history[0].price if history else prop.price
    events.insert(0, {"type": "LISTED", "date": prop.first_listed_at, "change_percent": None})
    if prop.is_terminal:
        events.append({"type": prop.status.value, "date": prop.last_checked_at, "change_percent": None})
    total_change = prop.price - first_price
    return {
        "price_history": points,
        "events": events,
        "summary": {
            "total_price_change": total_change,
            "total_price_change_percent": round(total_change / first_price * 100, 1) if first_price else 0,
            "days_on_market": prop.days_on_market if prop.is_terminal else days_listed(prop, now),
            "price_drops": sum(1 for e in events if e["type"] == "PRICE_DROP"),
        },
    }
